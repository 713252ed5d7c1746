from pydantic import BaseModel, Field, model_validator
from typing import Optional

from .statuses import RequestStatus


class SparesRequest(BaseModel):
    """
    An Indentor's request to draw spares from inventory.

    quantity_fulfilled only grows.  A partly served request stays Pending;
    it becomes Fulfilled exactly when the full quantity has been issued.
    """
    id: str
    requester: str
    item_name: str
    part_number: str
    tool_number: str
    inventory_item_id: str
    quantity_requested: int = Field(ge=1)
    quantity_fulfilled: int = Field(default=0, ge=0)
    status: RequestStatus = RequestStatus.PENDING
    purpose: Optional[str] = None
    project_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None

    @model_validator(mode="after")
    def _check_quantities(self) -> "SparesRequest":
        if self.quantity_fulfilled > self.quantity_requested:
            raise ValueError(
                f"Request {self.id}: fulfilled {self.quantity_fulfilled} exceeds "
                f"requested {self.quantity_requested}"
            )
        complete = self.quantity_fulfilled == self.quantity_requested
        if (self.status == RequestStatus.FULFILLED) != complete:
            raise ValueError(
                f"Request {self.id}: status Fulfilled requires the full quantity to be issued"
            )
        return self

    @property
    def quantity_remaining(self) -> int:
        return self.quantity_requested - self.quantity_fulfilled
