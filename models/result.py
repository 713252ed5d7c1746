from pydantic import BaseModel, Field
from typing import Any, Optional, List

from .handover import ToolHandoverRecord
from .inventory import InventoryItem, ReorderSuggestion
from .project import Project
from .purchase_requisition import PurchaseRequisition, Quotation
from .spares_request import SparesRequest
from .statuses import Role
from .supplier import Supplier


class Actor(BaseModel):
    """The acting user and role, as supplied by the identity provider."""
    user: str
    role: Role


class WorkflowEffects(BaseModel):
    """
    Every entity a single transition writes.

    The engine computes one of these per command and hands it to the store,
    which upserts all of it in one transaction or none of it.
    """
    projects: List[Project] = Field(default_factory=list)
    prs: List[PurchaseRequisition] = Field(default_factory=list)
    handovers: List[ToolHandoverRecord] = Field(default_factory=list)
    inventory_items: List[InventoryItem] = Field(default_factory=list)
    spares_requests: List[SparesRequest] = Field(default_factory=list)
    suppliers: List[Supplier] = Field(default_factory=list)


class AuditEntry(BaseModel):
    """One line of the workflow history."""
    entity_type: str                        # project | pr | quotation | handover | ...
    entity_id: str
    action: str                             # created | approved | awarded | fulfilled | ...
    actor: str = "system"
    role: Optional[str] = None
    timestamp: str
    detail: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Command outcomes that touch more than one aggregate
# ---------------------------------------------------------------------------

class AwardOutcome(BaseModel):
    pr: PurchaseRequisition
    handover: ToolHandoverRecord
    supplier: Supplier


class HandoverOutcome(BaseModel):
    handover: ToolHandoverRecord
    inventory_items: List[InventoryItem] = Field(default_factory=list)


class FulfillmentOutcome(BaseModel):
    request: SparesRequest
    inventory_item: InventoryItem
    reorder_suggestion: Optional[ReorderSuggestion] = None


class QuotationComparison(BaseModel):
    """Side-by-side view of the quotations received for one PR."""
    pr_id: str
    quotations: List[Quotation] = Field(default_factory=list)
    lowest_price: Optional[Quotation] = None
    fastest_delivery: Optional[Quotation] = None
    best_rating: Optional[Quotation] = None
