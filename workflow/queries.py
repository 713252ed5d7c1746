"""
Read-only views derived from the entity collections.

Nothing here is cached: every call recomputes from the store, so counts can
never drift from the entities they describe.  Year filters apply to the
timestamp the view is about (creation for counts, award for spend).
"""
from collections import Counter, defaultdict
from typing import Optional

from models import (
    HandoverStatus, InventoryItem, InventoryStatus, PRStatus, PRType, ProjectStatus,
    QuotationComparison, QuotationStatus, ReorderSuggestion, RequestStatus, Role, to_cents,
)
from .errors import NotFound, ValidationFailed
from .propagation import reorder_suggestion
from .store import Collection, EntityStore

PERIOD_MONTH = "month"
PERIOD_YEAR  = "year"

# Which pending counters each role sees
ROLE_SCOPES: dict[Role, tuple[str, ...]] = {
    Role.APPROVER:    ("active_projects", "prs_pending_approval", "prs_awaiting_award"),
    Role.NPD:         ("active_projects", "prs_ready_to_send", "quotations_awaiting_decision",
                       "prs_awaiting_award"),
    Role.MAINTENANCE: ("handovers_pending_inspection",),
    Role.SPARES:      ("inventory_alerts", "pending_requests"),
    Role.INDENTOR:    ("my_pending_requests",),
}


def _in_year(timestamp: Optional[str], year: Optional[int]) -> bool:
    if year is None:
        return True
    return bool(timestamp) and timestamp[:4] == str(year)


def pending_counts(
    store: EntityStore, role: Optional[Role] = None, requester: Optional[str] = None,
) -> dict[str, int]:
    """
    Work waiting on each role.  With no role, every counter is returned.
    Indentors only count their own requests when *requester* is given.
    """
    prs = store.list(Collection.PRS)
    requests = store.list(Collection.SPARES_REQUESTS, RequestStatus.PENDING.value)

    counts = {
        "active_projects": len(store.list(Collection.PROJECTS, ProjectStatus.ACTIVE.value)),
        "prs_pending_approval": sum(1 for pr in prs if pr.status == PRStatus.SUBMITTED_FOR_APPROVAL),
        "prs_ready_to_send": sum(1 for pr in prs if pr.status == PRStatus.APPROVED),
        "quotations_awaiting_decision": sum(
            1 for pr in prs
            if pr.status in (PRStatus.APPROVED, PRStatus.SENT_TO_SUPPLIER)
            for q in pr.quotations if q.status == QuotationStatus.PENDING
        ),
        "prs_awaiting_award": sum(1 for pr in prs if pr.status == PRStatus.SENT_TO_SUPPLIER),
        "handovers_pending_inspection": len(
            store.list(Collection.HANDOVERS, HandoverStatus.PENDING_INSPECTION.value)
        ),
        "inventory_alerts": len(low_stock_items(store)),
        "pending_requests": len(requests),
        "my_pending_requests": sum(
            1 for r in requests if requester is None or r.requester == requester
        ),
    }
    if role is None:
        return counts
    return {key: counts[key] for key in ROLE_SCOPES[role]}


def low_stock_items(store: EntityStore) -> list[InventoryItem]:
    """Items that are Low Stock or Out of Stock, emptiest first."""
    alerts = [i for i in store.list(Collection.INVENTORY) if i.status != InventoryStatus.IN_STOCK]
    return sorted(alerts, key=lambda i: (i.stock_level, i.name))


def reorder_suggestions(store: EntityStore) -> list[ReorderSuggestion]:
    return [s for s in (reorder_suggestion(i) for i in low_stock_items(store)) if s is not None]


def compare_quotations(store: EntityStore, pr_id: str) -> QuotationComparison:
    """Live quotations on a PR with the cheapest, quickest and best-rated picked out."""
    pr = store.get(Collection.PRS, pr_id)
    if pr is None:
        raise NotFound(f"PR {pr_id} not found", entity_id=pr_id)

    live = [q for q in pr.quotations if q.status != QuotationStatus.REJECTED]
    comparison = QuotationComparison(pr_id=pr_id, quotations=live)
    if not live:
        return comparison

    comparison.lowest_price = min(live, key=lambda q: (q.price, q.id))
    dated = [q for q in live if q.delivery_date]
    if dated:
        comparison.fastest_delivery = min(dated, key=lambda q: (q.delivery_date, q.id))

    ratings = {}
    for q in live:
        supplier = store.get(Collection.SUPPLIERS, q.supplier_id)
        ratings[q.id] = supplier.rating if supplier is not None else 0.0
    comparison.best_rating = max(live, key=lambda q: (ratings[q.id], -q.price))
    return comparison


def spend_by_supplier(store: EntityStore, year: Optional[int] = None) -> list[dict]:
    """Awarded value per supplier, largest first."""
    totals: dict[str, dict] = {}
    for pr in store.list(Collection.PRS, PRStatus.AWARDED.value):
        if not _in_year(pr.awarded_at, year):
            continue
        quotation = pr.get_quotation(pr.awarded_quotation_id) if pr.awarded_quotation_id else None
        if quotation is None:
            continue
        row = totals.setdefault(pr.awarded_supplier_id, {
            "supplier_id": pr.awarded_supplier_id,
            "supplier_name": quotation.supplier_name,
            "orders": 0,
            "total_spend": 0.0,
        })
        row["orders"] += 1
        row["total_spend"] = to_cents(row["total_spend"] + quotation.price)
    return sorted(totals.values(), key=lambda r: (-r["total_spend"], r["supplier_name"]))


def pr_throughput(
    store: EntityStore, period: str = PERIOD_MONTH, year: Optional[int] = None,
) -> list[dict]:
    """
    PRs submitted, approved, awarded and rejected per month (YYYY-MM) or
    per year (YYYY), oldest period first.
    """
    if period not in (PERIOD_MONTH, PERIOD_YEAR):
        raise ValidationFailed(f"Unknown period {period!r} (expected month or year)")
    width = 7 if period == PERIOD_MONTH else 4

    buckets: dict[str, Counter] = defaultdict(Counter)
    for pr in store.list(Collection.PRS):
        for event, stamp in (("submitted", pr.created_at), ("approved", pr.approved_at),
                             ("awarded", pr.awarded_at), ("rejected", pr.rejected_at)):
            if stamp and _in_year(stamp, year):
                buckets[stamp[:width]][event] += 1

    return [
        {"period": key, **{e: buckets[key][e] for e in ("submitted", "approved", "awarded", "rejected")}}
        for key in sorted(buckets)
    ]


def _by_status(entities) -> dict[str, int]:
    return dict(Counter(e.status.value for e in entities))


def dashboard_stats(store: EntityStore, year: Optional[int] = None) -> dict:
    """Counts by status for every collection, plus PRs by type."""
    def created(collection: Collection) -> list:
        return [e for e in store.list(collection) if _in_year(e.created_at, year)]

    prs = created(Collection.PRS)
    return {
        "year": year,
        "projects": _by_status(created(Collection.PROJECTS)),
        "prs": _by_status(prs),
        "prs_by_type": {t.value: sum(1 for pr in prs if pr.pr_type == t) for t in PRType},
        "quotations": dict(Counter(q.status.value for pr in prs for q in pr.quotations)),
        "handovers": _by_status(created(Collection.HANDOVERS)),
        "inventory": _by_status(store.list(Collection.INVENTORY)),
        "spares_requests": _by_status(created(Collection.SPARES_REQUESTS)),
        "suppliers": _by_status(store.list(Collection.SUPPLIERS)),
    }


def pr_summary(store: EntityStore, year: Optional[int] = None) -> dict:
    prs = [pr for pr in store.list(Collection.PRS) if _in_year(pr.created_at, year)]
    total_value = to_cents(sum(pr.total_value for pr in prs))
    return {
        "total": len(prs),
        "by_status": _by_status(prs),
        "by_type": dict(Counter(pr.pr_type.value for pr in prs)),
        "total_value": total_value,
        "average_value": to_cents(total_value / len(prs)) if prs else 0.0,
    }


def inventory_summary(store: EntityStore) -> dict:
    items = store.list(Collection.INVENTORY)
    return {
        "total_items": len(items),
        "total_stock": sum(i.stock_level for i in items),
        "by_status": _by_status(items),
        "alerts": len([i for i in items if i.status != InventoryStatus.IN_STOCK]),
    }


def project_summary(store: EntityStore) -> list[dict]:
    """Per project: PR counts and the BOM value of its PRs."""
    prs_by_project: dict[str, list] = defaultdict(list)
    for pr in store.list(Collection.PRS):
        prs_by_project[pr.project_id].append(pr)

    rows = []
    for project in store.list(Collection.PROJECTS):
        prs = prs_by_project.get(project.id, [])
        rows.append({
            "project_id": project.id,
            "customer_po": project.customer_po,
            "status": project.status.value,
            "prs": len(prs),
            "awarded": sum(1 for pr in prs if pr.status == PRStatus.AWARDED),
            "open": sum(1 for pr in prs if not pr.status.is_terminal),
            "pr_value": to_cents(sum(pr.total_value for pr in prs)),
        })
    return rows
