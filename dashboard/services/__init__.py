"""
Dashboard business logic services.
"""
from .export import (
    build_handover_payload,
    render_handover_xml,
    spend_report_csv,
    DEFAULT_HANDOVER_XML_TEMPLATE,
)

__all__ = [
    "build_handover_payload",
    "render_handover_xml",
    "spend_report_csv",
    "DEFAULT_HANDOVER_XML_TEMPLATE",
]
