"""
Cross-entity side effects of workflow transitions.

Every function here is pure: it takes the entities a transition touches
(already loaded and already checked by the engine) and returns a
WorkflowEffects value holding the full set of entities to upsert.  Nothing
is written until the engine hands that value to the store.

  award            PR -> Awarded, new Pending Inspection handover,
                   winning supplier total_orders + 1
  approve handover critical spares upserted into inventory by
                   (part_number, tool_number, name)
  fulfill request  inventory decremented, request quantity_fulfilled grown
"""
from typing import Callable, Iterable, Optional

from models import (
    CriticalSpare, HandoverStatus, InventoryItem, InventoryStatus, PRStatus, Project,
    PurchaseRequisition, Quotation, QuotationStatus, ReorderSuggestion, RequestStatus,
    SparesRequest, Supplier, ToolHandoverRecord, WorkflowEffects, revise,
)
from .numbering import critical_spare_id


# ---------------------------------------------------------------------------
# Quotations
# ---------------------------------------------------------------------------

def select_quotation_effects(
    pr: PurchaseRequisition, quotation_id: str, now: str,
) -> WorkflowEffects:
    """
    Mark one quotation Selected and demote every live sibling to Evaluated.
    Siblings are never rejected here; rejection stays a human decision.
    """
    quotations = []
    for q in pr.quotations:
        if q.id == quotation_id:
            quotations.append(revise(q, status=QuotationStatus.SELECTED, evaluated_at=q.evaluated_at or now))
        elif q.status in (QuotationStatus.PENDING, QuotationStatus.SELECTED):
            quotations.append(revise(q, status=QuotationStatus.EVALUATED, evaluated_at=q.evaluated_at or now))
        else:
            quotations.append(q)
    return WorkflowEffects(prs=[revise(pr, quotations=quotations, updated_at=now)])


def replace_quotation(pr: PurchaseRequisition, quotation: Quotation, now: str) -> PurchaseRequisition:
    """Return *pr* with *quotation* swapped in by id (or appended when new)."""
    quotations = [q for q in pr.quotations if q.id != quotation.id]
    position = next((i for i, q in enumerate(pr.quotations) if q.id == quotation.id), len(quotations))
    quotations.insert(position, quotation)
    return revise(pr, quotations=quotations, updated_at=now)


# ---------------------------------------------------------------------------
# Award
# ---------------------------------------------------------------------------

def tool_set_label(project: Project, pr: PurchaseRequisition) -> str:
    return f"{project.tool_number} {pr.pr_type.value}"


def award_effects(
    pr: PurchaseRequisition,
    quotation: Quotation,
    project: Project,
    supplier: Supplier,
    handover_id: str,
    now: str,
) -> WorkflowEffects:
    """
    Freeze the PR as Awarded to *quotation*'s supplier and seed its handover.

    The handover receives a deep copy of the PR items as they stand now and
    one critical spare per allocation, identified by the project's part and
    tool numbers and the allocated item's name.
    """
    awarded = revise(
        pr,
        status=PRStatus.AWARDED,
        awarded_supplier_id=supplier.id,
        awarded_quotation_id=quotation.id,
        awarded_at=now,
        updated_at=now,
    )

    spares = []
    for position, alloc in enumerate(pr.critical_spares, start=1):
        item = pr.get_item(alloc.item_id)
        spares.append(CriticalSpare(
            id=critical_spare_id(handover_id, position),
            item_id=alloc.item_id,
            part_number=project.part_number,
            tool_number=project.tool_number,
            name=item.name,
            quantity=alloc.quantity,
        ))

    handover = ToolHandoverRecord(
        id=handover_id,
        project_id=project.id,
        pr_id=pr.id,
        tool_set=tool_set_label(project, pr),
        items=[item.model_copy(deep=True) for item in pr.items],
        critical_spares=spares,
        status=HandoverStatus.PENDING_INSPECTION,
        created_at=now,
    )

    winner = revise(supplier, total_orders=supplier.total_orders + 1)
    return WorkflowEffects(prs=[awarded], handovers=[handover], suppliers=[winner])


# ---------------------------------------------------------------------------
# Handover inspection
# ---------------------------------------------------------------------------

def handover_approval_effects(
    handover: ToolHandoverRecord,
    inventory: Iterable[InventoryItem],
    inspected_by: str,
    now: str,
    new_inventory_id: Callable[[], str],
    initial_min_stock: Callable[[int], int],
    remarks: Optional[str] = None,
) -> WorkflowEffects:
    """
    Book every critical spare of *handover* into inventory.

    A spare whose (part, tool, name) key already exists adds its quantity to
    that item's quantity and stock level; otherwise a new item is created
    with stock level = quantity and a minimum from *initial_min_stock*.
    Spares on the same handover sharing a key merge into one item.
    """
    by_key: dict[tuple[str, str, str], InventoryItem] = {item.key: item for item in inventory}
    touched: dict[str, InventoryItem] = {}
    spares = []

    for spare in handover.critical_spares:
        key = spare.inventory_key
        current = by_key.get(key)
        if current is None:
            updated = InventoryItem(
                id=new_inventory_id(),
                part_number=spare.part_number,
                tool_number=spare.tool_number,
                name=spare.name,
                quantity=spare.quantity,
                stock_level=spare.quantity,
                min_stock_level=initial_min_stock(spare.quantity),
                project_id=handover.project_id,
                source_handover_id=handover.id,
                created_at=now,
            )
        else:
            updated = revise(
                current,
                quantity=current.quantity + spare.quantity,
                stock_level=current.stock_level + spare.quantity,
                updated_at=now,
            )
        by_key[key] = updated
        touched[updated.id] = updated
        spares.append(revise(spare, inventory_item_id=updated.id))

    approved = revise(
        handover,
        status=HandoverStatus.APPROVED,
        critical_spares=spares,
        remarks=remarks if remarks is not None else handover.remarks,
        inspected_at=now,
        inspected_by=inspected_by,
    )
    return WorkflowEffects(handovers=[approved], inventory_items=list(touched.values()))


def handover_rejection_effects(
    handover: ToolHandoverRecord, remarks: str, inspected_by: str, now: str,
) -> WorkflowEffects:
    rejected = revise(
        handover,
        status=HandoverStatus.REJECTED,
        remarks=remarks,
        inspected_at=now,
        inspected_by=inspected_by,
    )
    return WorkflowEffects(handovers=[rejected])


# ---------------------------------------------------------------------------
# Inventory and spares requests
# ---------------------------------------------------------------------------

def stock_adjustment(item: InventoryItem, delta: int, now: str) -> InventoryItem:
    """Apply a signed delta to stock level and quantity (caller checks the floor)."""
    return revise(
        item,
        stock_level=item.stock_level + delta,
        quantity=max(item.quantity + delta, 0),
        updated_at=now,
    )


def fulfillment_effects(
    request: SparesRequest, item: InventoryItem, quantity: int, now: str,
) -> WorkflowEffects:
    """Issue *quantity* from *item* against *request*."""
    issued = request.quantity_fulfilled + quantity
    status = RequestStatus.FULFILLED if issued == request.quantity_requested else RequestStatus.PENDING
    updated_request = revise(request, quantity_fulfilled=issued, status=status, updated_at=now)
    updated_item = stock_adjustment(item, -quantity, now)
    return WorkflowEffects(spares_requests=[updated_request], inventory_items=[updated_item])


def reorder_quantity(item: InventoryItem) -> int:
    return max(item.min_stock_level - item.stock_level, 1)


def reorder_suggestion(item: InventoryItem) -> Optional[ReorderSuggestion]:
    """Suggest replenishment when *item* is Low Stock or Out of Stock."""
    if item.status == InventoryStatus.IN_STOCK:
        return None
    return ReorderSuggestion(
        inventory_item_id=item.id,
        name=item.name,
        part_number=item.part_number,
        tool_number=item.tool_number,
        stock_level=item.stock_level,
        min_stock_level=item.min_stock_level,
        status=item.status,
        suggested_quantity=reorder_quantity(item),
        project_id=item.project_id,
    )
