"""
Status vocabularies for every workflow entity.

Each enum carries exactly one canonical label per semantic state.  Labels
are matched case-insensitively on input, and labels that older screens and
imports still use ("Submitted", "Pending Approval") are mapped onto the
canonical member.
"""
from enum import Enum


class Label(str, Enum):
    """str enum that also accepts its labels in any case."""

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        return None


class Role(Label):
    APPROVER    = "Approver"
    NPD         = "NPD"
    MAINTENANCE = "Maintenance"
    SPARES      = "Spares"
    INDENTOR    = "Indentor"


class ProjectStatus(Label):
    ACTIVE    = "Active"
    COMPLETED = "Completed"


class PRType(Label):
    NEW_SET      = "New Set"
    MODIFICATION = "Modification"
    REFURBISHED  = "Refurbished"


# Alias label (lower-cased) -> canonical PRStatus value
_PR_STATUS_ALIASES = {
    "submitted":              "Submitted for Approval",
    "pending approval":       "Submitted for Approval",
    "submittedforapproval":   "Submitted for Approval",
    "sent to suppliers":      "Sent To Supplier",
    "senttosupplier":         "Sent To Supplier",
}


class PRStatus(Label):
    SUBMITTED_FOR_APPROVAL = "Submitted for Approval"
    APPROVED               = "Approved"
    SENT_TO_SUPPLIER       = "Sent To Supplier"
    AWARDED                = "Awarded"
    REJECTED               = "Rejected"

    @classmethod
    def _missing_(cls, value):
        member = super()._missing_(value)
        if member is None and isinstance(value, str):
            canonical = _PR_STATUS_ALIASES.get(value.strip().lower())
            if canonical:
                return cls(canonical)
        return member

    @property
    def is_terminal(self) -> bool:
        return self in (PRStatus.AWARDED, PRStatus.REJECTED)


class QuotationStatus(Label):
    PENDING   = "Pending"
    EVALUATED = "Evaluated"
    SELECTED  = "Selected"
    REJECTED  = "Rejected"


class HandoverStatus(Label):
    PENDING_INSPECTION = "Pending Inspection"
    APPROVED           = "Approved"
    REJECTED           = "Rejected"


class InventoryStatus(Label):
    IN_STOCK     = "In Stock"
    LOW_STOCK    = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"


class RequestStatus(Label):
    PENDING   = "Pending"
    FULFILLED = "Fulfilled"
    REJECTED  = "Rejected"


class SupplierStatus(Label):
    ACTIVE   = "Active"
    INACTIVE = "Inactive"


def derive_inventory_status(stock_level: int, min_stock_level: int) -> InventoryStatus:
    """The only way an InventoryItem status is ever produced."""
    if stock_level == 0:
        return InventoryStatus.OUT_OF_STOCK
    if stock_level < min_stock_level:
        return InventoryStatus.LOW_STOCK
    return InventoryStatus.IN_STOCK
