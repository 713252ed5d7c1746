from .statuses import (
    Role, ProjectStatus, PRType, PRStatus, QuotationStatus, HandoverStatus,
    InventoryStatus, RequestStatus, SupplierStatus, derive_inventory_status,
)
from .base import revise, to_cents
from .project import Project
from .purchase_requisition import (
    PRItem, CriticalSpareAllocation, QuotationItem, Quotation, PurchaseRequisition,
    PRItemDraft, QuotationLineDraft,
)
from .handover import CriticalSpare, ToolHandoverRecord
from .inventory import InventoryItem, ReorderSuggestion
from .spares_request import SparesRequest
from .supplier import Supplier
from .result import (
    Actor, WorkflowEffects, AuditEntry, AwardOutcome, HandoverOutcome,
    FulfillmentOutcome, QuotationComparison,
)

__all__ = [
    "Role", "ProjectStatus", "PRType", "PRStatus", "QuotationStatus", "HandoverStatus",
    "InventoryStatus", "RequestStatus", "SupplierStatus", "derive_inventory_status",
    "revise", "to_cents",
    "Project",
    "PRItem", "CriticalSpareAllocation", "QuotationItem", "Quotation", "PurchaseRequisition",
    "PRItemDraft", "QuotationLineDraft",
    "CriticalSpare", "ToolHandoverRecord",
    "InventoryItem", "ReorderSuggestion",
    "SparesRequest",
    "Supplier",
    "Actor", "WorkflowEffects", "AuditEntry", "AwardOutcome", "HandoverOutcome",
    "FulfillmentOutcome", "QuotationComparison",
]
