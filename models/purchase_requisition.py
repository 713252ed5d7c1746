from pydantic import BaseModel, Field, computed_field, model_validator
from typing import Optional, List

from .base import to_cents
from .statuses import PRStatus, PRType, QuotationStatus


class PRItem(BaseModel):
    """A single tooling line on a Purchase Requisition."""
    id: str
    name: str
    specification: Optional[str] = None
    quantity: int = Field(ge=1)
    unit_price: float = Field(default=0.0, ge=0)   # BOM unit price
    requirements: Optional[str] = None
    critical_spare: bool = False

    @property
    def line_value(self) -> float:
        return to_cents(self.unit_price * self.quantity)


class CriticalSpareAllocation(BaseModel):
    """Quantity of a PR item earmarked as a critical spare."""
    item_id: str
    quantity: int = Field(ge=1)


class QuotationItem(BaseModel):
    """A priced line of a supplier quotation, pointing at a PR item."""
    item_id: str
    unit_price: float = Field(ge=0)
    quantity: int = Field(ge=1)

    @computed_field
    @property
    def total(self) -> float:
        return to_cents(self.unit_price * self.quantity)


class Quotation(BaseModel):
    """
    A supplier's priced response to a PR.
    price is always the cent-rounded sum of the item totals.
    """
    id: str
    pr_id: str
    supplier_id: str
    supplier_name: str
    price: float = Field(ge=0)
    items: List[QuotationItem] = Field(default_factory=list)
    delivery_terms: Optional[str] = None
    delivery_date: Optional[str] = None     # YYYY-MM-DD
    validity_date: Optional[str] = None     # YYYY-MM-DD
    status: QuotationStatus = QuotationStatus.PENDING
    notes: Optional[str] = None
    created_at: Optional[str] = None
    evaluated_at: Optional[str] = None

    @model_validator(mode="after")
    def _price_matches_items(self) -> "Quotation":
        expected = to_cents(sum(item.total for item in self.items))
        if to_cents(self.price) != expected:
            raise ValueError(
                f"Quotation {self.id} price {self.price:.2f} does not equal "
                f"the sum of its item totals {expected:.2f}"
            )
        return self


class PurchaseRequisition(BaseModel):
    """
    A request to procure tooling for a Project.

    Items, critical-spare allocations and quotations are embedded by value.
    awarded_supplier_id is set exactly when status is Awarded.
    """
    id: str
    project_id: str
    pr_type: PRType = PRType.NEW_SET
    items: List[PRItem] = Field(default_factory=list)
    candidate_suppliers: List[str] = Field(default_factory=list)   # supplier ids
    status: PRStatus = PRStatus.SUBMITTED_FOR_APPROVAL
    created_by: str
    created_at: str
    mod_ref_reason: Optional[str] = None    # required for Modification / Refurbished
    approver_comments: Optional[str] = None
    awarded_supplier_id: Optional[str] = None
    awarded_quotation_id: Optional[str] = None
    critical_spares: List[CriticalSpareAllocation] = Field(default_factory=list)
    quotations: List[Quotation] = Field(default_factory=list)
    approved_at: Optional[str] = None
    rejected_at: Optional[str] = None
    awarded_at: Optional[str] = None
    updated_at: Optional[str] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "PurchaseRequisition":
        awarded = self.status == PRStatus.AWARDED
        if awarded != (self.awarded_supplier_id is not None):
            raise ValueError(
                f"PR {self.id}: awarded supplier must be set if and only if status is Awarded"
            )

        item_qty: dict[str, int] = {}
        for item in self.items:
            if item.id in item_qty:
                raise ValueError(f"PR {self.id}: duplicate item id {item.id}")
            item_qty[item.id] = item.quantity

        for alloc in self.critical_spares:
            if alloc.item_id not in item_qty:
                raise ValueError(
                    f"PR {self.id}: critical spare references unknown item {alloc.item_id}"
                )
            if alloc.quantity > item_qty[alloc.item_id]:
                raise ValueError(
                    f"PR {self.id}: critical spare quantity {alloc.quantity} exceeds "
                    f"item {alloc.item_id} quantity {item_qty[alloc.item_id]}"
                )

        selected = [q.id for q in self.quotations if q.status == QuotationStatus.SELECTED]
        if len(selected) > 1:
            raise ValueError(f"PR {self.id}: more than one quotation selected: {selected}")
        return self

    @property
    def total_value(self) -> float:
        """BOM value of the PR (sum of item unit price x quantity)."""
        return to_cents(sum(item.line_value for item in self.items))

    def get_item(self, item_id: str) -> Optional[PRItem]:
        return next((i for i in self.items if i.id == item_id), None)

    def get_quotation(self, quotation_id: str) -> Optional[Quotation]:
        return next((q for q in self.quotations if q.id == quotation_id), None)

    def selected_quotations(self) -> List[Quotation]:
        return [q for q in self.quotations if q.status == QuotationStatus.SELECTED]


# ---------------------------------------------------------------------------
# Command inputs
# ---------------------------------------------------------------------------

class PRItemDraft(BaseModel):
    """A PR line as supplied by NPD; id is generated when omitted."""
    id: Optional[str] = None
    name: str
    specification: Optional[str] = None
    quantity: int = Field(ge=1)
    unit_price: float = Field(default=0.0, ge=0)
    requirements: Optional[str] = None
    critical_spare: bool = False


class QuotationLineDraft(BaseModel):
    item_id: str
    unit_price: float = Field(ge=0)
    quantity: int = Field(ge=1)
