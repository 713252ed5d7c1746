"""
Per-entity state machines and role gates.

Transition tables
-----------------
  PR          Submitted for Approval -> Approved -> Sent To Supplier -> Awarded
              Rejected from any non-terminal state (Approver only)
  Quotation   Pending -> Evaluated;  Pending|Evaluated -> Selected;
              any live state -> Rejected (human decision only)
  Handover    Pending Inspection -> Approved | Rejected
  Request     Pending -> Pending (partial) | Fulfilled;  Pending -> Rejected

Operations that create entities or edit them without a status change are
gated through OPERATION_ROLES instead.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models.statuses import (
    HandoverStatus, PRStatus, QuotationStatus, RequestStatus, Role,
)
from .errors import Forbidden, InvalidState

APPROVER    = Role.APPROVER
NPD         = Role.NPD
MAINTENANCE = Role.MAINTENANCE
SPARES      = Role.SPARES
INDENTOR    = Role.INDENTOR


@dataclass(frozen=True)
class Transition:
    trigger: str
    roles: frozenset
    sources: frozenset          # empty = any non-terminal state
    target: Optional[Enum]      # None = target decided by the operation


class StateMachine:
    """
    Legal transitions for one entity type.

    authorize() and advance() are split so a command can reject the role
    before it loads anything, then check the state of what it loaded.
    """

    def __init__(self, entity: str, transitions: list[Transition], terminal: set) -> None:
        self.entity = entity
        self.transitions = {t.trigger: t for t in transitions}
        self.terminal = frozenset(terminal)

    def get(self, trigger: str) -> Transition:
        try:
            return self.transitions[trigger]
        except KeyError:
            raise ValueError(f"Unknown {self.entity} trigger {trigger!r}") from None

    def authorize(self, trigger: str, role: Role) -> None:
        t = self.get(trigger)
        if role not in t.roles:
            allowed = ", ".join(sorted(r.value for r in t.roles))
            raise Forbidden(f"Role {role.value} may not {trigger} a {self.entity} (allowed: {allowed})")

    def advance(self, trigger: str, current: Enum, entity_id: Optional[str] = None) -> Transition:
        """Return the transition for *trigger* from *current*, or raise InvalidState."""
        t = self.get(trigger)
        label = f"{self.entity} {entity_id}" if entity_id else self.entity
        if current in self.terminal:
            raise InvalidState(
                f"Cannot {trigger} {label}: already {current.value}", entity_id=entity_id,
            )
        if t.sources and current not in t.sources:
            expected = " or ".join(s.value for s in t.sources)
            raise InvalidState(
                f"Cannot {trigger} {label} in status {current.value} (must be {expected})",
                entity_id=entity_id,
            )
        return t

    def allowed_triggers(self, role: Role, current: Enum) -> list[str]:
        """Triggers *role* could use on an entity in status *current*."""
        if current in self.terminal:
            return []
        return [
            t.trigger for t in self.transitions.values()
            if role in t.roles and (not t.sources or current in t.sources)
        ]


PR_MACHINE = StateMachine(
    "PR",
    [
        Transition("approve", frozenset({APPROVER}),
                   frozenset({PRStatus.SUBMITTED_FOR_APPROVAL}), PRStatus.APPROVED),
        Transition("send_to_supplier", frozenset({NPD}),
                   frozenset({PRStatus.APPROVED}), PRStatus.SENT_TO_SUPPLIER),
        Transition("award", frozenset({NPD, APPROVER}),
                   frozenset({PRStatus.SENT_TO_SUPPLIER}), PRStatus.AWARDED),
        Transition("reject", frozenset({APPROVER}), frozenset(), PRStatus.REJECTED),
    ],
    terminal={PRStatus.AWARDED, PRStatus.REJECTED},
)

QUOTATION_MACHINE = StateMachine(
    "quotation",
    [
        Transition("evaluate", frozenset({NPD}),
                   frozenset({QuotationStatus.PENDING}), QuotationStatus.EVALUATED),
        Transition("select", frozenset({NPD, APPROVER}),
                   frozenset({QuotationStatus.PENDING, QuotationStatus.EVALUATED}),
                   QuotationStatus.SELECTED),
        Transition("reject", frozenset({NPD, APPROVER}), frozenset(), QuotationStatus.REJECTED),
    ],
    terminal={QuotationStatus.REJECTED},
)

HANDOVER_MACHINE = StateMachine(
    "handover",
    [
        Transition("approve", frozenset({MAINTENANCE}),
                   frozenset({HandoverStatus.PENDING_INSPECTION}), HandoverStatus.APPROVED),
        Transition("reject", frozenset({MAINTENANCE}),
                   frozenset({HandoverStatus.PENDING_INSPECTION}), HandoverStatus.REJECTED),
    ],
    terminal={HandoverStatus.APPROVED, HandoverStatus.REJECTED},
)

REQUEST_MACHINE = StateMachine(
    "spares request",
    [
        Transition("fulfill", frozenset({SPARES}), frozenset({RequestStatus.PENDING}), None),
        Transition("reject", frozenset({SPARES}),
                   frozenset({RequestStatus.PENDING}), RequestStatus.REJECTED),
    ],
    terminal={RequestStatus.FULFILLED, RequestStatus.REJECTED},
)


# Operations without a status transition of their own
OPERATION_ROLES: dict[str, frozenset] = {
    "create_project":        frozenset({APPROVER}),
    "update_project":        frozenset({APPROVER}),
    "complete_project":      frozenset({APPROVER}),
    "create_pr":             frozenset({NPD}),
    "update_pr":             frozenset({NPD}),
    "submit_quotation":      frozenset({NPD}),
    "create_supplier":       frozenset({NPD, APPROVER}),
    "update_supplier":       frozenset({NPD, APPROVER}),
    "create_request":        frozenset({INDENTOR}),
    "create_inventory_item": frozenset({SPARES}),
    "adjust_stock":          frozenset({SPARES}),
    "set_min_stock_level":   frozenset({SPARES}),
    "raise_reorder_pr":      frozenset({SPARES, NPD}),
}


def authorize(operation: str, role: Role) -> None:
    """Raise Forbidden unless *role* may perform *operation*."""
    roles = OPERATION_ROLES.get(operation)
    if roles is None:
        raise ValueError(f"Unknown operation {operation!r}")
    if role not in roles:
        allowed = ", ".join(sorted(r.value for r in roles))
        raise Forbidden(f"Role {role.value} may not {operation.replace('_', ' ')} (allowed: {allowed})")
