"""
Workflow engine: the command surface over the entity store.

Every command follows the same shape:

  1. authorize the acting role (before anything is loaded, so an
     unauthorized caller learns nothing about which ids exist)
  2. load the entities involved (NotFound)
  3. check the status transition (InvalidState) and the inputs
     (ValidationFailed, InsufficientStock)
  4. compute the complete set of changes with workflow.propagation
  5. commit them, with their audit entries, in one store.apply()

Commands are serialized by one engine-wide re-entrant lock and run inside
store.transaction(), so no command ever sees another half-applied, even
one issued by a different engine on the same database.  Failed commands
raise a WorkflowError and write nothing.
"""
import functools
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

from pydantic import ValidationError

from config import Config
from models import (
    Actor, AuditEntry, AwardOutcome, CriticalSpareAllocation, FulfillmentOutcome,
    HandoverOutcome, HandoverStatus, InventoryItem, InventoryStatus, PRItem, PRItemDraft,
    PRStatus, PRType, Project, ProjectStatus, PurchaseRequisition, Quotation, QuotationItem,
    QuotationLineDraft, QuotationStatus, RequestStatus, SparesRequest, Supplier, SupplierStatus,
    ToolHandoverRecord, WorkflowEffects, revise, to_cents,
)
from . import numbering, propagation
from .errors import (
    InsufficientStock, InvalidState, NotFound, ValidationFailed, describe_validation_error,
)
from .store import Collection, EntityStore
from .supplier_directory import SupplierDirectory, load_suppliers_csv
from .transitions import (
    HANDOVER_MACHINE, PR_MACHINE, QUOTATION_MACHINE, REQUEST_MACHINE, authorize,
)

logger = logging.getLogger(__name__)

# Statuses in which a PR accepts and weighs quotations
_QUOTING_STATUSES = (PRStatus.APPROVED, PRStatus.SENT_TO_SUPPLIER)

_PROJECT_FIELDS = {"customer_po", "part_number", "tool_number", "price", "target_date", "description"}
_SUPPLIER_FIELDS = {
    "name", "contact_person", "email", "phone", "address", "categories", "rating", "aliases",
}

_ENTITY_LABELS = {
    Collection.PROJECTS:        "Project",
    Collection.PRS:             "PR",
    Collection.HANDOVERS:       "Handover",
    Collection.INVENTORY:       "Inventory item",
    Collection.SPARES_REQUESTS: "Spares request",
    Collection.SUPPLIERS:       "Supplier",
}

_STATUS_ENUMS = {
    Collection.PROJECTS:        ProjectStatus,
    Collection.PRS:             PRStatus,
    Collection.HANDOVERS:       HandoverStatus,
    Collection.INVENTORY:       InventoryStatus,
    Collection.SPARES_REQUESTS: RequestStatus,
    Collection.SUPPLIERS:       SupplierStatus,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def command(fn: Callable) -> Callable:
    """Serialize a command and report model validation failures as ValidationFailed."""
    @functools.wraps(fn)
    def wrapper(self: "WorkflowEngine", *args, **kwargs):
        with self._lock, self.store.transaction():
            try:
                return fn(self, *args, **kwargs)
            except ValidationError as exc:
                raise ValidationFailed(describe_validation_error(exc)) from exc
    return wrapper


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _coerce(model: type, value: Any):
    return value if isinstance(value, model) else model.model_validate(value)


def _parse_enum(enum_cls: type, value: Any, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationFailed(f"Unknown {label} {value!r} (expected one of: {allowed})") from None


class WorkflowEngine:
    """Role-gated commands over projects, PRs, quotations, handovers, inventory and requests."""

    def __init__(
        self,
        store: EntityStore,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config or Config()
        self._clock = clock or utc_now
        self._last_timestamp = ""
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now(self) -> str:
        """ISO-8601 timestamp, never earlier than the previous one issued."""
        stamp = self._clock().astimezone(timezone.utc).isoformat(timespec="milliseconds")
        if stamp < self._last_timestamp:
            stamp = self._last_timestamp
        self._last_timestamp = stamp
        return stamp

    @staticmethod
    def _year(now: str) -> int:
        return int(now[:4])

    def _sequence(self, prefix: str, collection: Collection, now: str) -> numbering.NumberSequence:
        return numbering.NumberSequence(prefix, self.store.ids(collection), self._year(now))

    def _require(self, collection: Collection, entity_id: str):
        entity = self.store.get(collection, entity_id)
        if entity is None:
            raise NotFound(f"{_ENTITY_LABELS[collection]} {entity_id} not found", entity_id=entity_id)
        return entity

    def _find_quotation(self, quotation_id: str) -> tuple[PurchaseRequisition, Quotation]:
        for pr in self.store.list(Collection.PRS):
            quotation = pr.get_quotation(quotation_id)
            if quotation is not None:
                return pr, quotation
        raise NotFound(f"Quotation {quotation_id} not found", entity_id=quotation_id)

    def _quotation_ids(self) -> List[str]:
        return [q.id for pr in self.store.list(Collection.PRS) for q in pr.quotations]

    def _directory(self) -> SupplierDirectory:
        return SupplierDirectory(
            self.store.list(Collection.SUPPLIERS), self.config.supplier_fuzzy_threshold,
        )

    @staticmethod
    def _audit(
        entity_type: str, entity_id: str, action: str, actor: Actor, now: str, **detail,
    ) -> AuditEntry:
        return AuditEntry(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor.user,
            role=actor.role.value,
            timestamp=now,
            detail=detail or None,
        )

    def _commit(self, effects: WorkflowEffects, audit: Iterable[AuditEntry]) -> None:
        entries = list(audit)
        self.store.apply(effects, entries)
        for entry in entries:
            logger.info(
                "%s %s %s by %s (%s)",
                entry.entity_type, entry.entity_id, entry.action, entry.actor, entry.role,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, collection: Collection, entity_id: str):
        return self._require(collection, entity_id)

    def list(self, collection: Collection, status: Optional[str] = None) -> List:
        """Entities of *collection*; *status* may be any accepted label or alias."""
        if status is not None:
            status = _parse_enum(_STATUS_ENUMS[collection], status, "status").value
        return self.store.list(collection, status)

    def get_quotation(self, quotation_id: str) -> Quotation:
        return self._find_quotation(quotation_id)[1]

    def history(self, entity_id: str) -> List[AuditEntry]:
        return self.store.audit_log(entity_id)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    @command
    def create_project(
        self,
        actor: Actor,
        customer_po: str,
        part_number: str,
        tool_number: str,
        price: float,
        target_date: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Project:
        authorize("create_project", actor.role)
        for label, value in (("customer_po", customer_po), ("part_number", part_number),
                             ("tool_number", tool_number)):
            if _blank(value):
                raise ValidationFailed(f"{label} is required")

        now = self._now()
        project = Project(
            id=self._sequence(numbering.PROJECT_PREFIX, Collection.PROJECTS, now)(),
            customer_po=customer_po.strip(),
            part_number=part_number.strip(),
            tool_number=tool_number.strip(),
            price=to_cents(price),
            target_date=target_date,
            description=description,
            created_by=actor.user,
            created_at=now,
        )
        self._commit(
            WorkflowEffects(projects=[project]),
            [self._audit("project", project.id, "created", actor, now,
                         customer_po=project.customer_po)],
        )
        return project

    @command
    def update_project(self, actor: Actor, project_id: str, **changes) -> Project:
        authorize("update_project", actor.role)
        project = self._require(Collection.PROJECTS, project_id)
        if project.status == ProjectStatus.COMPLETED:
            raise InvalidState(f"Project {project_id} is Completed and read-only", entity_id=project_id)

        unknown = set(changes) - _PROJECT_FIELDS
        if unknown:
            raise ValidationFailed(f"Cannot update project field(s): {', '.join(sorted(unknown))}")

        frozen = [f for f in ("part_number", "tool_number")
                  if f in changes and changes[f] != getattr(project, f)]
        if frozen and any(pr.project_id == project_id for pr in self.store.list(Collection.PRS)):
            raise InvalidState(
                f"Project {project_id}: {' and '.join(frozen)} cannot change once PRs reference it",
                entity_id=project_id,
            )
        if "price" in changes:
            changes["price"] = to_cents(changes["price"])

        now = self._now()
        updated = revise(project, **changes, updated_at=now)
        self._commit(
            WorkflowEffects(projects=[updated]),
            [self._audit("project", project_id, "updated", actor, now, fields=sorted(changes))],
        )
        return updated

    @command
    def complete_project(self, actor: Actor, project_id: str) -> Project:
        authorize("complete_project", actor.role)
        project = self._require(Collection.PROJECTS, project_id)
        if project.status == ProjectStatus.COMPLETED:
            raise InvalidState(f"Project {project_id} is already Completed", entity_id=project_id)

        prs = [pr for pr in self.store.list(Collection.PRS) if pr.project_id == project_id]
        if not prs:
            raise InvalidState(f"Project {project_id} has no PRs to complete", entity_id=project_id)
        open_prs = [pr.id for pr in prs if not pr.status.is_terminal]
        if open_prs:
            raise InvalidState(
                f"Project {project_id} still has open PRs: {', '.join(open_prs)}",
                entity_id=project_id,
            )

        now = self._now()
        completed = revise(project, status=ProjectStatus.COMPLETED, updated_at=now)
        self._commit(
            WorkflowEffects(projects=[completed]),
            [self._audit("project", project_id, "completed", actor, now)],
        )
        return completed

    # ------------------------------------------------------------------
    # Purchase requisitions
    # ------------------------------------------------------------------

    def _active_project(self, project_id: str) -> Project:
        project = self._require(Collection.PROJECTS, project_id)
        if project.status != ProjectStatus.ACTIVE:
            raise InvalidState(
                f"Project {project_id} is {project.status.value}; PRs need an Active project",
                entity_id=project_id,
            )
        return project

    def _resolve_candidates(self, references: Iterable[str]) -> List[str]:
        directory = self._directory()
        resolved: List[str] = []
        for ref in references:
            supplier = directory.resolve(ref)
            if supplier is None:
                raise NotFound(f"Supplier {ref!r} not found", entity_id=ref)
            if not supplier.is_active:
                raise ValidationFailed(
                    f"Supplier {supplier.code} ({supplier.name}) is Inactive", entity_id=supplier.id,
                )
            if supplier.id not in resolved:
                resolved.append(supplier.id)
        if not resolved:
            raise ValidationFailed("A PR needs at least one candidate supplier")
        return resolved

    @staticmethod
    def _build_items(pr_id: str, drafts: Iterable[Any]) -> List[PRItem]:
        items = []
        for position, raw in enumerate(drafts, start=1):
            draft = _coerce(PRItemDraft, raw)
            if _blank(draft.name):
                raise ValidationFailed(f"Item {position}: name is required")
            data = draft.model_dump()
            data["id"] = draft.id or numbering.item_id(pr_id, position)
            items.append(PRItem(**data))
        if not items:
            raise ValidationFailed("A PR needs at least one item")
        return items

    @staticmethod
    def _build_allocations(items: List[PRItem], allocations: Iterable[Any]) -> tuple[List, List]:
        allocs = [_coerce(CriticalSpareAllocation, a) for a in allocations or ()]
        allocated = {a.item_id for a in allocs}
        flagged = [revise(item, critical_spare=item.id in allocated) for item in items]
        return flagged, allocs

    @staticmethod
    def _check_reason(pr_type: PRType, mod_ref_reason: Optional[str]) -> None:
        if pr_type in (PRType.MODIFICATION, PRType.REFURBISHED) and _blank(mod_ref_reason):
            raise ValidationFailed(f"A {pr_type.value} PR needs a modification/refurbishment reason")

    def _new_pr(
        self,
        actor: Actor,
        project: Project,
        pr_type: PRType,
        items: Iterable[Any],
        candidate_suppliers: Iterable[str],
        critical_spares: Optional[Iterable[Any]],
        mod_ref_reason: Optional[str],
        now: str,
    ) -> PurchaseRequisition:
        self._check_reason(pr_type, mod_ref_reason)
        pr_id = self._sequence(numbering.PR_PREFIX, Collection.PRS, now)()
        built = self._build_items(pr_id, items)
        candidates = self._resolve_candidates(candidate_suppliers or ())
        flagged, allocs = self._build_allocations(built, critical_spares)
        return PurchaseRequisition(
            id=pr_id,
            project_id=project.id,
            pr_type=pr_type,
            items=flagged,
            candidate_suppliers=candidates,
            status=PRStatus.SUBMITTED_FOR_APPROVAL,
            created_by=actor.user,
            created_at=now,
            mod_ref_reason=mod_ref_reason,
            critical_spares=allocs,
        )

    @command
    def create_pr(
        self,
        actor: Actor,
        project_id: str,
        items: Iterable[Any],
        candidate_suppliers: Iterable[str],
        pr_type: Any = PRType.NEW_SET,
        critical_spares: Optional[Iterable[Any]] = None,
        mod_ref_reason: Optional[str] = None,
    ) -> PurchaseRequisition:
        """Submit a new PR; it starts life Submitted for Approval."""
        authorize("create_pr", actor.role)
        project = self._active_project(project_id)
        kind = _parse_enum(PRType, pr_type, "PR type")

        now = self._now()
        pr = self._new_pr(
            actor, project, kind, items, candidate_suppliers, critical_spares, mod_ref_reason, now,
        )
        self._commit(
            WorkflowEffects(prs=[pr]),
            [self._audit("pr", pr.id, "submitted", actor, now,
                         project_id=project.id, pr_type=kind.value, items=len(pr.items))],
        )
        return pr

    @command
    def update_pr(
        self,
        actor: Actor,
        pr_id: str,
        items: Optional[Iterable[Any]] = None,
        candidate_suppliers: Optional[Iterable[str]] = None,
        critical_spares: Optional[Iterable[Any]] = None,
        pr_type: Any = None,
        mod_ref_reason: Optional[str] = None,
    ) -> PurchaseRequisition:
        """Edit a PR that has not yet been decided by the Approver."""
        authorize("update_pr", actor.role)
        pr = self._require(Collection.PRS, pr_id)
        if pr.status != PRStatus.SUBMITTED_FOR_APPROVAL:
            raise InvalidState(
                f"PR {pr_id} can only be edited while {PRStatus.SUBMITTED_FOR_APPROVAL.value} "
                f"(is {pr.status.value})",
                entity_id=pr_id,
            )

        changes: dict[str, Any] = {}
        kind = _parse_enum(PRType, pr_type, "PR type") if pr_type is not None else pr.pr_type
        reason = mod_ref_reason if mod_ref_reason is not None else pr.mod_ref_reason
        self._check_reason(kind, reason)
        changes["pr_type"] = kind
        changes["mod_ref_reason"] = reason

        new_items = self._build_items(pr_id, items) if items is not None else pr.items
        if items is not None or critical_spares is not None:
            allocs = critical_spares if critical_spares is not None else pr.critical_spares
            changes["items"], changes["critical_spares"] = self._build_allocations(new_items, allocs)
        if candidate_suppliers is not None:
            changes["candidate_suppliers"] = self._resolve_candidates(candidate_suppliers)

        now = self._now()
        updated = revise(pr, **changes, updated_at=now)
        self._commit(
            WorkflowEffects(prs=[updated]),
            [self._audit("pr", pr_id, "updated", actor, now)],
        )
        return updated

    @command
    def approve_pr(self, actor: Actor, pr_id: str, comments: Optional[str] = None) -> PurchaseRequisition:
        PR_MACHINE.authorize("approve", actor.role)
        pr = self._require(Collection.PRS, pr_id)
        t = PR_MACHINE.advance("approve", pr.status, pr_id)

        now = self._now()
        approved = revise(pr, status=t.target, approver_comments=comments or pr.approver_comments,
                          approved_at=now, updated_at=now)
        self._commit(
            WorkflowEffects(prs=[approved]),
            [self._audit("pr", pr_id, "approved", actor, now, comments=comments)],
        )
        return approved

    @command
    def reject_pr(self, actor: Actor, pr_id: str, comments: Optional[str] = None) -> PurchaseRequisition:
        PR_MACHINE.authorize("reject", actor.role)
        pr = self._require(Collection.PRS, pr_id)
        t = PR_MACHINE.advance("reject", pr.status, pr_id)

        now = self._now()
        rejected = revise(pr, status=t.target, approver_comments=comments or pr.approver_comments,
                          rejected_at=now, updated_at=now)
        self._commit(
            WorkflowEffects(prs=[rejected]),
            [self._audit("pr", pr_id, "rejected", actor, now, comments=comments,
                         previous_status=pr.status.value)],
        )
        return rejected

    @command
    def send_to_supplier(self, actor: Actor, pr_id: str) -> PurchaseRequisition:
        PR_MACHINE.authorize("send_to_supplier", actor.role)
        pr = self._require(Collection.PRS, pr_id)
        t = PR_MACHINE.advance("send_to_supplier", pr.status, pr_id)

        quoted = [
            q for q in pr.quotations
            if q.supplier_id in pr.candidate_suppliers and q.status != QuotationStatus.REJECTED
        ]
        if not quoted:
            raise ValidationFailed(
                f"PR {pr_id} has no quotation recorded from its candidate suppliers", entity_id=pr_id,
            )

        now = self._now()
        sent = revise(pr, status=t.target, updated_at=now)
        self._commit(
            WorkflowEffects(prs=[sent]),
            [self._audit("pr", pr_id, "sent_to_supplier", actor, now, quotations=len(quoted))],
        )
        return sent

    @command
    def award_pr(self, actor: Actor, pr_id: str) -> AwardOutcome:
        """
        Award the PR to its single Selected quotation.

        Writes the Awarded PR, a new Pending Inspection handover and the
        winning supplier's order count in one transaction.
        """
        PR_MACHINE.authorize("award", actor.role)
        pr = self._require(Collection.PRS, pr_id)
        PR_MACHINE.advance("award", pr.status, pr_id)

        selected = pr.selected_quotations()
        if len(selected) != 1:
            raise ValidationFailed(
                f"PR {pr_id} needs exactly one Selected quotation to award (has {len(selected)})",
                entity_id=pr_id,
            )
        quotation = selected[0]
        project = self._require(Collection.PROJECTS, pr.project_id)
        supplier = self._require(Collection.SUPPLIERS, quotation.supplier_id)

        now = self._now()
        handover_id = self._sequence(numbering.HANDOVER_PREFIX, Collection.HANDOVERS, now)()
        effects = propagation.award_effects(pr, quotation, project, supplier, handover_id, now)
        awarded, handover, winner = effects.prs[0], effects.handovers[0], effects.suppliers[0]

        self._commit(effects, [
            self._audit("pr", pr_id, "awarded", actor, now,
                        supplier_id=supplier.id, quotation_id=quotation.id, price=quotation.price),
            self._audit("handover", handover.id, "created", actor, now,
                        pr_id=pr_id, critical_spares=len(handover.critical_spares)),
            self._audit("supplier", supplier.id, "order_awarded", actor, now,
                        pr_id=pr_id, total_orders=winner.total_orders),
        ])
        return AwardOutcome(pr=awarded, handover=handover, supplier=winner)

    # ------------------------------------------------------------------
    # Quotations
    # ------------------------------------------------------------------

    @command
    def submit_quotation(
        self,
        actor: Actor,
        pr_id: str,
        supplier: str,
        items: Iterable[Any],
        price: Optional[float] = None,
        delivery_terms: Optional[str] = None,
        delivery_date: Optional[str] = None,
        validity_date: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Quotation:
        """
        Record a supplier's quotation on a PR.

        *supplier* may be the supplier id, code, name or a known alias.
        When *price* is given it must equal the sum of the line totals.
        """
        authorize("submit_quotation", actor.role)
        pr = self._require(Collection.PRS, pr_id)
        if pr.status not in _QUOTING_STATUSES:
            raise InvalidState(
                f"PR {pr_id} is {pr.status.value}; quotations are accepted while "
                f"{' or '.join(s.value for s in _QUOTING_STATUSES)}",
                entity_id=pr_id,
            )

        vendor = self._directory().resolve(supplier)
        if vendor is None:
            raise NotFound(f"Supplier {supplier!r} not found", entity_id=supplier)
        if vendor.id not in pr.candidate_suppliers:
            raise ValidationFailed(
                f"Supplier {vendor.code} is not a candidate supplier on PR {pr_id}", entity_id=pr_id,
            )
        if not vendor.is_active:
            raise ValidationFailed(f"Supplier {vendor.code} is Inactive", entity_id=vendor.id)
        live = [q.id for q in pr.quotations
                if q.supplier_id == vendor.id and q.status != QuotationStatus.REJECTED]
        if live:
            raise InvalidState(
                f"Supplier {vendor.code} already has live quotation {live[0]} on PR {pr_id}",
                entity_id=live[0],
            )

        lines = [_coerce(QuotationLineDraft, raw) for raw in items]
        if not lines:
            raise ValidationFailed("A quotation needs at least one priced line")
        seen: set[str] = set()
        for line in lines:
            if pr.get_item(line.item_id) is None:
                raise ValidationFailed(f"Quotation line references unknown item {line.item_id}")
            if line.item_id in seen:
                raise ValidationFailed(f"Quotation prices item {line.item_id} more than once")
            seen.add(line.item_id)

        quoted_items = [QuotationItem(**line.model_dump()) for line in lines]
        total = to_cents(sum(i.total for i in quoted_items))
        if price is not None and to_cents(price) != total:
            raise ValidationFailed(
                f"Declared price {float(price):.2f} does not equal the line total {total:.2f}"
            )

        now = self._now()
        quotation = Quotation(
            id=numbering.next_number(numbering.QUOTATION_PREFIX, self._quotation_ids(), self._year(now)),
            pr_id=pr_id,
            supplier_id=vendor.id,
            supplier_name=vendor.name,
            price=total,
            items=quoted_items,
            delivery_terms=delivery_terms,
            delivery_date=delivery_date,
            validity_date=validity_date,
            notes=notes,
            created_at=now,
        )
        updated = propagation.replace_quotation(pr, quotation, now)
        self._commit(
            WorkflowEffects(prs=[updated]),
            [self._audit("quotation", quotation.id, "submitted", actor, now,
                         pr_id=pr_id, supplier_id=vendor.id, price=total)],
        )
        return quotation

    def _quotation_for_decision(self, quotation_id: str) -> tuple[PurchaseRequisition, Quotation]:
        pr, quotation = self._find_quotation(quotation_id)
        if pr.status not in _QUOTING_STATUSES:
            raise InvalidState(
                f"PR {pr.id} is {pr.status.value}; its quotations can no longer change",
                entity_id=quotation_id,
            )
        return pr, quotation

    @command
    def evaluate_quotation(self, actor: Actor, quotation_id: str, notes: Optional[str] = None) -> Quotation:
        QUOTATION_MACHINE.authorize("evaluate", actor.role)
        pr, quotation = self._quotation_for_decision(quotation_id)
        t = QUOTATION_MACHINE.advance("evaluate", quotation.status, quotation_id)

        now = self._now()
        evaluated = revise(quotation, status=t.target, evaluated_at=now, notes=notes or quotation.notes)
        self._commit(
            WorkflowEffects(prs=[propagation.replace_quotation(pr, evaluated, now)]),
            [self._audit("quotation", quotation_id, "evaluated", actor, now, pr_id=pr.id)],
        )
        return evaluated

    @command
    def select_quotation(self, actor: Actor, quotation_id: str) -> PurchaseRequisition:
        """Select one quotation; live siblings drop back to Evaluated.  Returns the PR."""
        QUOTATION_MACHINE.authorize("select", actor.role)
        pr, quotation = self._find_quotation(quotation_id)
        if pr.status != PRStatus.SENT_TO_SUPPLIER:
            raise InvalidState(
                f"PR {pr.id} must be {PRStatus.SENT_TO_SUPPLIER.value} to select a quotation "
                f"(is {pr.status.value})",
                entity_id=quotation_id,
            )
        QUOTATION_MACHINE.advance("select", quotation.status, quotation_id)

        now = self._now()
        effects = propagation.select_quotation_effects(pr, quotation_id, now)
        demoted = [q.id for q in pr.quotations
                   if q.id != quotation_id and q.status in (QuotationStatus.PENDING, QuotationStatus.SELECTED)]
        self._commit(effects, [
            self._audit("quotation", quotation_id, "selected", actor, now,
                        pr_id=pr.id, demoted=demoted or None),
        ])
        return effects.prs[0]

    @command
    def reject_quotation(self, actor: Actor, quotation_id: str, reason: Optional[str] = None) -> Quotation:
        QUOTATION_MACHINE.authorize("reject", actor.role)
        pr, quotation = self._quotation_for_decision(quotation_id)
        t = QUOTATION_MACHINE.advance("reject", quotation.status, quotation_id)

        now = self._now()
        rejected = revise(quotation, status=t.target, evaluated_at=quotation.evaluated_at or now,
                          notes=reason or quotation.notes)
        self._commit(
            WorkflowEffects(prs=[propagation.replace_quotation(pr, rejected, now)]),
            [self._audit("quotation", quotation_id, "rejected", actor, now,
                         pr_id=pr.id, reason=reason)],
        )
        return rejected

    # ------------------------------------------------------------------
    # Handovers
    # ------------------------------------------------------------------

    @command
    def approve_handover(self, actor: Actor, handover_id: str, remarks: Optional[str] = None) -> HandoverOutcome:
        """Accept the delivered tooling and book its critical spares into inventory."""
        HANDOVER_MACHINE.authorize("approve", actor.role)
        handover = self._require(Collection.HANDOVERS, handover_id)
        HANDOVER_MACHINE.advance("approve", handover.status, handover_id)

        now = self._now()
        effects = propagation.handover_approval_effects(
            handover,
            self.store.list(Collection.INVENTORY),
            inspected_by=actor.user,
            now=now,
            new_inventory_id=self._sequence(numbering.INVENTORY_PREFIX, Collection.INVENTORY, now),
            initial_min_stock=self.config.initial_min_stock,
            remarks=remarks,
        )
        approved = effects.handovers[0]
        audit = [self._audit("handover", handover_id, "approved", actor, now,
                             inventory_items=[i.id for i in effects.inventory_items])]
        audit += [
            self._audit("inventory", item.id, "received", actor, now,
                        handover_id=handover_id, stock_level=item.stock_level)
            for item in effects.inventory_items
        ]
        self._commit(effects, audit)
        return HandoverOutcome(handover=approved, inventory_items=effects.inventory_items)

    @command
    def reject_handover(self, actor: Actor, handover_id: str, remarks: str) -> ToolHandoverRecord:
        HANDOVER_MACHINE.authorize("reject", actor.role)
        handover = self._require(Collection.HANDOVERS, handover_id)
        HANDOVER_MACHINE.advance("reject", handover.status, handover_id)
        if _blank(remarks):
            raise ValidationFailed("Rejecting a handover requires remarks", entity_id=handover_id)

        now = self._now()
        effects = propagation.handover_rejection_effects(handover, remarks.strip(), actor.user, now)
        self._commit(effects, [
            self._audit("handover", handover_id, "rejected", actor, now, remarks=remarks.strip()),
        ])
        return effects.handovers[0]

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    @command
    def create_inventory_item(
        self,
        actor: Actor,
        name: str,
        part_number: str,
        tool_number: str,
        stock_level: int,
        min_stock_level: Optional[int] = None,
        project_id: Optional[str] = None,
    ) -> InventoryItem:
        """
        Record stock that did not arrive through a handover (opening balances,
        spares bought outside the system).  The minimum defaults to the
        configured initial policy applied to *stock_level*.
        """
        authorize("create_inventory_item", actor.role)
        for label, value in (("name", name), ("part_number", part_number), ("tool_number", tool_number)):
            if _blank(value):
                raise ValidationFailed(f"{label} is required")

        key = (part_number.strip(), tool_number.strip(), name.strip())
        existing = next((i for i in self.store.list(Collection.INVENTORY) if i.key == key), None)
        if existing is not None:
            raise InvalidState(
                f"Inventory item {existing.id} already holds part {key[0]}, tool {key[1]}, "
                f"name {key[2]!r}; adjust its stock instead",
                entity_id=existing.id,
            )
        if project_id:
            self._require(Collection.PROJECTS, project_id)

        now = self._now()
        item = InventoryItem(
            id=self._sequence(numbering.INVENTORY_PREFIX, Collection.INVENTORY, now)(),
            part_number=key[0],
            tool_number=key[1],
            name=key[2],
            quantity=stock_level,
            stock_level=stock_level,
            min_stock_level=(
                min_stock_level if min_stock_level is not None
                else self.config.initial_min_stock(stock_level)
            ),
            project_id=project_id,
            created_at=now,
        )
        self._commit(
            WorkflowEffects(inventory_items=[item]),
            [self._audit("inventory", item.id, "created", actor, now,
                         stock_level=item.stock_level, min_stock_level=item.min_stock_level)],
        )
        return item

    @command
    def adjust_stock(self, actor: Actor, item_id: str, delta: int, reason: Optional[str] = None) -> InventoryItem:
        """Apply a signed manual correction to an item's stock level."""
        authorize("adjust_stock", actor.role)
        item = self._require(Collection.INVENTORY, item_id)
        if int(delta) == 0:
            raise ValidationFailed("Stock adjustment must be non-zero", entity_id=item_id)
        if item.stock_level + int(delta) < 0:
            raise InsufficientStock(
                f"Cannot remove {-int(delta)} from {item_id}: only {item.stock_level} in stock",
                entity_id=item_id,
            )

        now = self._now()
        adjusted = propagation.stock_adjustment(item, int(delta), now)
        self._commit(
            WorkflowEffects(inventory_items=[adjusted]),
            [self._audit("inventory", item_id, "stock_adjusted", actor, now,
                         delta=int(delta), stock_level=adjusted.stock_level, reason=reason)],
        )
        return adjusted

    @command
    def set_min_stock_level(self, actor: Actor, item_id: str, min_stock_level: int) -> InventoryItem:
        authorize("set_min_stock_level", actor.role)
        item = self._require(Collection.INVENTORY, item_id)
        if int(min_stock_level) < 0:
            raise ValidationFailed("Minimum stock level cannot be negative", entity_id=item_id)

        now = self._now()
        updated = revise(item, min_stock_level=int(min_stock_level), updated_at=now)
        self._commit(
            WorkflowEffects(inventory_items=[updated]),
            [self._audit("inventory", item_id, "min_stock_changed", actor, now,
                         previous=item.min_stock_level, min_stock_level=updated.min_stock_level)],
        )
        return updated

    @command
    def raise_reorder_pr(
        self,
        actor: Actor,
        item_id: str,
        candidate_suppliers: Iterable[str],
        quantity: Optional[int] = None,
        project_id: Optional[str] = None,
        unit_price: float = 0.0,
    ) -> PurchaseRequisition:
        """
        Raise a New Set PR to replenish a stocked spare.

        The PR goes against *project_id* or, when omitted, the project the
        item was first received for.  Quantity defaults to the shortfall
        below the minimum stock level (at least 1).
        """
        authorize("raise_reorder_pr", actor.role)
        item = self._require(Collection.INVENTORY, item_id)
        target = project_id or item.project_id
        if not target:
            raise ValidationFailed(f"Inventory item {item_id} has no project; give one", entity_id=item_id)
        project = self._active_project(target)

        now = self._now()
        draft = PRItemDraft(
            name=item.name,
            specification=f"Reorder of {item.part_number} / {item.tool_number}",
            quantity=quantity if quantity is not None else propagation.reorder_quantity(item),
            unit_price=unit_price,
            requirements=f"Replenish inventory item {item.id}",
        )
        pr = self._new_pr(actor, project, PRType.NEW_SET, [draft], candidate_suppliers, None, None, now)
        self._commit(
            WorkflowEffects(prs=[pr]),
            [
                self._audit("pr", pr.id, "submitted", actor, now,
                            project_id=project.id, reorder_of=item_id),
                self._audit("inventory", item_id, "reorder_raised", actor, now, pr_id=pr.id),
            ],
        )
        return pr

    # ------------------------------------------------------------------
    # Spares requests
    # ------------------------------------------------------------------

    @command
    def create_request(
        self,
        actor: Actor,
        item_name: str,
        part_number: str,
        tool_number: str,
        quantity: int,
        purpose: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> SparesRequest:
        authorize("create_request", actor.role)
        for label, value in (("item_name", item_name), ("part_number", part_number),
                             ("tool_number", tool_number)):
            if _blank(value):
                raise ValidationFailed(f"{label} is required")
        if int(quantity) < 1:
            raise ValidationFailed("Requested quantity must be at least 1")

        key = (part_number.strip(), tool_number.strip(), item_name.strip())
        item = next((i for i in self.store.list(Collection.INVENTORY) if i.key == key), None)
        if item is None:
            raise NotFound(f"No inventory item for part {key[0]}, tool {key[1]}, name {key[2]!r}")
        if project_id:
            self._require(Collection.PROJECTS, project_id)

        now = self._now()
        request = SparesRequest(
            id=self._sequence(numbering.REQUEST_PREFIX, Collection.SPARES_REQUESTS, now)(),
            requester=actor.user,
            item_name=item.name,
            part_number=item.part_number,
            tool_number=item.tool_number,
            inventory_item_id=item.id,
            quantity_requested=int(quantity),
            purpose=purpose,
            project_id=project_id or item.project_id,
            created_at=now,
        )
        self._commit(
            WorkflowEffects(spares_requests=[request]),
            [self._audit("request", request.id, "created", actor, now,
                         inventory_item_id=item.id, quantity=request.quantity_requested)],
        )
        return request

    @command
    def fulfill_request(self, actor: Actor, request_id: str, quantity: Optional[int] = None) -> FulfillmentOutcome:
        """
        Issue stock against a request; *quantity* defaults to what is still owed.

        A partial issue leaves the request Pending.  The outcome carries a
        reorder suggestion when the item ends below its minimum.
        """
        REQUEST_MACHINE.authorize("fulfill", actor.role)
        request = self._require(Collection.SPARES_REQUESTS, request_id)
        REQUEST_MACHINE.advance("fulfill", request.status, request_id)

        qty = request.quantity_remaining if quantity is None else int(quantity)
        if qty <= 0:
            raise ValidationFailed("Fulfilment quantity must be at least 1", entity_id=request_id)
        if qty > request.quantity_remaining:
            raise ValidationFailed(
                f"Request {request_id} only has {request.quantity_remaining} outstanding",
                entity_id=request_id,
            )
        item = self._require(Collection.INVENTORY, request.inventory_item_id)
        if item.stock_level < qty:
            raise InsufficientStock(
                f"{item.name} ({item.id}) has {item.stock_level} in stock, {qty} requested",
                entity_id=item.id,
            )

        now = self._now()
        effects = propagation.fulfillment_effects(request, item, qty, now)
        updated_request, updated_item = effects.spares_requests[0], effects.inventory_items[0]
        self._commit(effects, [
            self._audit("request", request_id, "fulfilled" if updated_request.status == RequestStatus.FULFILLED
                        else "partially_fulfilled", actor, now,
                        quantity=qty, quantity_fulfilled=updated_request.quantity_fulfilled),
            self._audit("inventory", item.id, "issued", actor, now,
                        request_id=request_id, quantity=qty, stock_level=updated_item.stock_level),
        ])
        return FulfillmentOutcome(
            request=updated_request,
            inventory_item=updated_item,
            reorder_suggestion=propagation.reorder_suggestion(updated_item),
        )

    @command
    def reject_request(self, actor: Actor, request_id: str, reason: str) -> SparesRequest:
        REQUEST_MACHINE.authorize("reject", actor.role)
        request = self._require(Collection.SPARES_REQUESTS, request_id)
        t = REQUEST_MACHINE.advance("reject", request.status, request_id)
        if _blank(reason):
            raise ValidationFailed("Rejecting a request requires a reason", entity_id=request_id)

        now = self._now()
        rejected = revise(request, status=t.target, rejection_reason=reason.strip(), updated_at=now)
        self._commit(
            WorkflowEffects(spares_requests=[rejected]),
            [self._audit("request", request_id, "rejected", actor, now, reason=reason.strip())],
        )
        return rejected

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------

    @command
    def create_supplier(
        self,
        actor: Actor,
        code: str,
        name: str,
        contact_person: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        categories: Optional[List[str]] = None,
        rating: float = 0.0,
        aliases: Optional[List[str]] = None,
    ) -> Supplier:
        authorize("create_supplier", actor.role)
        if _blank(code) or _blank(name):
            raise ValidationFailed("Supplier code and name are required")
        if self._directory().by_code(code) is not None:
            raise ValidationFailed(f"Supplier code {code.strip()} is already in use")

        now = self._now()
        supplier = Supplier(
            id=self._sequence(numbering.SUPPLIER_PREFIX, Collection.SUPPLIERS, now)(),
            code=code.strip(),
            name=name.strip(),
            contact_person=contact_person,
            email=email,
            phone=phone,
            address=address,
            categories=categories or [],
            rating=rating,
            aliases=aliases or [],
            created_at=now,
        )
        self._commit(
            WorkflowEffects(suppliers=[supplier]),
            [self._audit("supplier", supplier.id, "created", actor, now, code=supplier.code)],
        )
        return supplier

    @command
    def update_supplier(self, actor: Actor, supplier_id: str, **changes) -> Supplier:
        authorize("update_supplier", actor.role)
        supplier = self._require(Collection.SUPPLIERS, supplier_id)
        unknown = set(changes) - _SUPPLIER_FIELDS
        if unknown:
            raise ValidationFailed(f"Cannot update supplier field(s): {', '.join(sorted(unknown))}")

        now = self._now()
        updated = revise(supplier, **changes)
        self._commit(
            WorkflowEffects(suppliers=[updated]),
            [self._audit("supplier", supplier_id, "updated", actor, now, fields=sorted(changes))],
        )
        return updated

    def rate_supplier(self, actor: Actor, supplier_id: str, rating: float) -> Supplier:
        return self.update_supplier(actor, supplier_id, rating=rating)

    @command
    def set_supplier_status(self, actor: Actor, supplier_id: str, status: Any) -> Supplier:
        authorize("update_supplier", actor.role)
        supplier = self._require(Collection.SUPPLIERS, supplier_id)
        new_status = _parse_enum(SupplierStatus, status, "supplier status")

        now = self._now()
        updated = revise(supplier, status=new_status)
        self._commit(
            WorkflowEffects(suppliers=[updated]),
            [self._audit("supplier", supplier_id, "status_changed", actor, now,
                         previous=supplier.status.value, status=new_status.value)],
        )
        return updated

    @command
    def import_suppliers(self, actor: Actor, csv_path: Path) -> tuple[int, int]:
        """
        Load a supplier master CSV.  Rows whose code already exists update
        that supplier's contact details; the rest are created, keeping the
        CSV id when it is free and numbering them otherwise.
        Returns (created, updated).
        """
        authorize("create_supplier", actor.role)
        now = self._now()
        rows = load_suppliers_csv(csv_path, created_at=now)
        directory = self._directory()
        taken = set(self.store.ids(Collection.SUPPLIERS))
        new_id = numbering.NumberSequence(
            numbering.SUPPLIER_PREFIX, list(taken) + [r.id for r in rows if r.id], self._year(now),
        )

        written: List[Supplier] = []
        audit: List[AuditEntry] = []
        created = updated = 0
        for row in rows:
            existing = directory.by_code(row.code)
            if existing is None:
                supplier = row if row.id and row.id not in taken else revise(row, id=new_id())
                taken.add(supplier.id)
                directory.suppliers.append(supplier)
                created += 1
                audit.append(self._audit("supplier", supplier.id, "imported", actor, now, code=supplier.code))
            else:
                supplier = revise(
                    existing,
                    **row.model_dump(include={"name", "contact_person", "email", "phone",
                                              "address", "categories", "rating", "aliases"}),
                )
                updated += 1
                audit.append(self._audit("supplier", supplier.id, "updated", actor, now, source="import"))
            written.append(supplier)

        if written:
            self._commit(WorkflowEffects(suppliers=written), audit)
        return created, updated
