from pydantic import BaseModel, Field
from typing import Optional, List

from .purchase_requisition import PRItem
from .statuses import HandoverStatus


class CriticalSpare(BaseModel):
    """
    A critical-spare line carried from the PR allocation into the handover.
    inventory_item_id is filled in when the handover is approved and the
    spare is booked into stock.
    """
    id: str
    item_id: str                            # PR item the allocation came from
    part_number: str
    tool_number: str
    name: str
    quantity: int = Field(ge=1)
    inventory_item_id: Optional[str] = None

    @property
    def inventory_key(self) -> tuple[str, str, str]:
        return (self.part_number, self.tool_number, self.name)


class ToolHandoverRecord(BaseModel):
    """
    Transfer of awarded tooling to Maintenance for inspection.
    Linked to its Project and PR by id only.
    """
    id: str
    project_id: str
    pr_id: str
    tool_set: str                           # Tool-set label shown to Maintenance
    items: List[PRItem] = Field(default_factory=list)   # Snapshot of PR items at award
    critical_spares: List[CriticalSpare] = Field(default_factory=list)
    status: HandoverStatus = HandoverStatus.PENDING_INSPECTION
    remarks: Optional[str] = None
    created_at: str
    inspected_at: Optional[str] = None
    inspected_by: Optional[str] = None
