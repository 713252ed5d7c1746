from pydantic import BaseModel, Field, computed_field
from typing import Optional

from .statuses import InventoryStatus, derive_inventory_status


class InventoryItem(BaseModel):
    """
    A stocked spare, keyed by (part_number, tool_number, name).

    status is derived from stock_level and min_stock_level on every read;
    it is serialised for consumers but any supplied value is ignored.
    """
    id: str
    part_number: str
    tool_number: str
    name: str
    quantity: int = Field(ge=0)
    stock_level: int = Field(ge=0)          # Current on-hand count
    min_stock_level: int = Field(ge=0)      # Reorder threshold
    project_id: Optional[str] = None        # Project of first receipt
    source_handover_id: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None

    @computed_field
    @property
    def status(self) -> InventoryStatus:
        return derive_inventory_status(self.stock_level, self.min_stock_level)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.part_number, self.tool_number, self.name)


class ReorderSuggestion(BaseModel):
    """A low or empty stock line that should be replenished through a new PR."""
    inventory_item_id: str
    name: str
    part_number: str
    tool_number: str
    stock_level: int
    min_stock_level: int
    status: InventoryStatus
    suggested_quantity: int
    project_id: Optional[str] = None
