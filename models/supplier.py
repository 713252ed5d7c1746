from pydantic import BaseModel, Field
from typing import Optional, List

from .statuses import SupplierStatus


class Supplier(BaseModel):
    """
    A supplier from the supplier master list.
    aliases is a list of alternative names / trading names used when a
    quotation names its supplier rather than quoting the id.
    """
    id: str
    code: str
    name: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    status: SupplierStatus = SupplierStatus.ACTIVE
    categories: List[str] = Field(default_factory=list)
    rating: float = Field(default=0.0, ge=0, le=5)
    total_orders: int = Field(default=0, ge=0)   # Awarded PRs won by this supplier
    aliases: List[str] = Field(default_factory=list)
    created_at: str

    @property
    def all_names(self) -> List[str]:
        """Return the canonical name plus all aliases for matching."""
        return [self.name] + self.aliases

    @property
    def is_active(self) -> bool:
        return self.status == SupplierStatus.ACTIVE
