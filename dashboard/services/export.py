"""
Export service: goods-receipt XML for handovers and CSV reports.
"""
import csv
import io
from pathlib import Path
from typing import Iterable, Optional

from jinja2 import BaseLoader, Environment, FileSystemLoader

from models import Project, PurchaseRequisition, Supplier, ToolHandoverRecord

# Default handover export template
DEFAULT_HANDOVER_XML_TEMPLATE = """\
<?xml version="1.0" encoding="UTF-8"?>
<!--
  Handover export template. Edit config/handover_export.xml.j2 to customise.
  Template engine : Jinja2  (https://jinja.palletsprojects.com/)
  Values are XML-escaped automatically.  Use | safe only for trusted markup.

  Top-level variables available in every export:
    exported_at   ISO-8601 UTC timestamp
    handover      dict: id, status, tool_set, remarks, inspected_at, inspected_by,
                  items list, critical_spares list
    project       dict: id, customer_po, part_number, tool_number (may be empty)
    pr            dict: id, pr_type, awarded_quotation_id (may be empty)
    supplier      dict: id, code, name (may be empty)
-->
{% set p = project or {} %}
{% set r = pr or {} %}
{% set s = supplier or {} %}
<GoodsReceipt>
  <Meta>
    <HandoverId>{{ handover.id }}</HandoverId>
    <ExportedAt>{{ exported_at }}</ExportedAt>
    <Status>{{ handover.status }}</Status>
    <ToolSet>{{ handover.tool_set }}</ToolSet>
    {% if handover.inspected_at %}<InspectedAt>{{ handover.inspected_at }}</InspectedAt>
    {% endif %}
    {% if handover.inspected_by %}<InspectedBy>{{ handover.inspected_by }}</InspectedBy>
    {% endif %}
    {% if handover.remarks %}<Remarks>{{ handover.remarks }}</Remarks>
    {% endif %}
  </Meta>

  <Project>
    <Id>{{ handover.project_id }}</Id>
    {% if p.customer_po %}<CustomerPO>{{ p.customer_po }}</CustomerPO>
    {% endif %}
    {% if p.part_number %}<PartNumber>{{ p.part_number }}</PartNumber>
    {% endif %}
    {% if p.tool_number %}<ToolNumber>{{ p.tool_number }}</ToolNumber>
    {% endif %}
  </Project>

  <Requisition>
    <Id>{{ handover.pr_id }}</Id>
    {% if r.pr_type %}<Type>{{ r.pr_type }}</Type>
    {% endif %}
    {% if r.awarded_quotation_id %}<QuotationId>{{ r.awarded_quotation_id }}</QuotationId>
    {% endif %}
  </Requisition>

  {% if s.id %}
  <Supplier>
    <Id>{{ s.id }}</Id>
    <Code>{{ s.code }}</Code>
    <Name>{{ s.name }}</Name>
  </Supplier>
  {% endif %}

  <Items>
    {% for item in handover["items"] %}
    <Item number="{{ loop.index }}" id="{{ item.id }}">
      <Name>{{ item.name }}</Name>
      {% if item.specification %}<Specification>{{ item.specification }}</Specification>
      {% endif %}
      <Quantity>{{ item.quantity }}</Quantity>
      <UnitPrice>{{ item.unit_price }}</UnitPrice>
    </Item>
    {% endfor %}
  </Items>

  {% if handover.critical_spares %}
  <CriticalSpares>
    {% for spare in handover.critical_spares %}
    <Spare id="{{ spare.id }}">
      <PartNumber>{{ spare.part_number }}</PartNumber>
      <ToolNumber>{{ spare.tool_number }}</ToolNumber>
      <Name>{{ spare.name }}</Name>
      <Quantity>{{ spare.quantity }}</Quantity>
      {% if spare.inventory_item_id %}<InventoryItem>{{ spare.inventory_item_id }}</InventoryItem>
      {% endif %}
    </Spare>
    {% endfor %}
  </CriticalSpares>
  {% endif %}
</GoodsReceipt>
"""

SPEND_CSV_COLUMNS = ["supplier_id", "supplier_name", "orders", "total_spend"]


def build_handover_payload(
    handover: ToolHandoverRecord,
    exported_at: str,
    project: Optional[Project] = None,
    pr: Optional[PurchaseRequisition] = None,
    supplier: Optional[Supplier] = None,
) -> dict:
    """Plain-dict view of a handover and its context for the export template."""
    return {
        "exported_at": exported_at,
        "handover": handover.model_dump(mode="json"),
        "project": project.model_dump(mode="json") if project else {},
        "pr": pr.model_dump(mode="json", exclude={"quotations"}) if pr else {},
        "supplier": supplier.model_dump(mode="json") if supplier else {},
    }


def render_handover_xml(payload: dict, template_file: Path | None = None) -> str:
    """
    Render *payload* as XML using the operator template (or built-in default).

    Args:
        payload: dict from build_handover_payload()
        template_file: Optional path to custom Jinja2 template file
    """
    if template_file and template_file.exists():
        env = Environment(
            loader=FileSystemLoader(str(template_file.parent)),
            autoescape=True,
            keep_trailing_newline=True,
        )
        tmpl = env.get_template(template_file.name)
    else:
        env = Environment(loader=BaseLoader(), autoescape=True, keep_trailing_newline=True)
        tmpl = env.from_string(DEFAULT_HANDOVER_XML_TEMPLATE)
    return tmpl.render(**payload)


def spend_report_csv(rows: Iterable[dict]) -> str:
    """Spend-by-supplier rows as CSV text with a header line."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=SPEND_CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({**row, "total_spend": f"{row['total_spend']:.2f}"})
    return buf.getvalue()
