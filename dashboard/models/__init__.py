"""
Pydantic models for dashboard API requests.
"""
from pydantic import BaseModel, Field
from typing import Optional

from models import CriticalSpareAllocation, PRItemDraft, QuotationLineDraft


class ProjectCreate(BaseModel):
    customer_po: str
    part_number: str
    tool_number: str
    price: float = Field(ge=0)
    target_date: Optional[str] = None
    description: Optional[str] = None


class ProjectUpdate(BaseModel):
    customer_po: Optional[str] = None
    part_number: Optional[str] = None
    tool_number: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    target_date: Optional[str] = None
    description: Optional[str] = None


class PRCreate(BaseModel):
    project_id: str
    pr_type: str = "New Set"
    items: list[PRItemDraft]
    candidate_suppliers: list[str]          # supplier ids, codes or names
    critical_spares: list[CriticalSpareAllocation] = Field(default_factory=list)
    mod_ref_reason: Optional[str] = None


class PRUpdate(BaseModel):
    pr_type: Optional[str] = None
    items: Optional[list[PRItemDraft]] = None
    candidate_suppliers: Optional[list[str]] = None
    critical_spares: Optional[list[CriticalSpareAllocation]] = None
    mod_ref_reason: Optional[str] = None


class Comments(BaseModel):
    comments: Optional[str] = None


class QuotationCreate(BaseModel):
    supplier: str                           # supplier id, code, name or alias
    items: list[QuotationLineDraft]
    price: Optional[float] = None           # must equal the line total when given
    delivery_terms: Optional[str] = None
    delivery_date: Optional[str] = None
    validity_date: Optional[str] = None
    notes: Optional[str] = None


class Notes(BaseModel):
    notes: Optional[str] = None


class Reason(BaseModel):
    reason: Optional[str] = None


class Remarks(BaseModel):
    remarks: Optional[str] = None


class InventoryItemCreate(BaseModel):
    name: str
    part_number: str
    tool_number: str
    stock_level: int = Field(ge=0)
    min_stock_level: Optional[int] = Field(default=None, ge=0)   # default: configured policy
    project_id: Optional[str] = None


class StockAdjustment(BaseModel):
    delta: int
    reason: Optional[str] = None


class MinStockUpdate(BaseModel):
    min_stock_level: int


class ReorderCreate(BaseModel):
    candidate_suppliers: list[str]
    quantity: Optional[int] = Field(default=None, ge=1)
    project_id: Optional[str] = None
    unit_price: float = Field(default=0.0, ge=0)


class RequestCreate(BaseModel):
    item_name: str
    part_number: str
    tool_number: str
    quantity: int
    purpose: Optional[str] = None
    project_id: Optional[str] = None


class Fulfilment(BaseModel):
    quantity: Optional[int] = None          # defaults to the outstanding quantity


class SupplierCreate(BaseModel):
    code: str
    name: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    rating: float = 0.0
    aliases: list[str] = Field(default_factory=list)


class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    categories: Optional[list[str]] = None
    aliases: Optional[list[str]] = None


class SupplierStatusUpdate(BaseModel):
    status: str   # Active | Inactive


class SupplierRating(BaseModel):
    rating: float
