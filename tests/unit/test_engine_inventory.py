"""
Unit tests for handover inspection and inventory commands.
"""
import pytest

from conftest import PART_NUMBER, TOOL_NUMBER
from models import HandoverStatus, InventoryStatus, PRStatus, PRType
from workflow import (
    Collection, Forbidden, InsufficientStock, InvalidState, NotFound, ValidationFailed,
)


def award_another_punch_pr(engine, approver, npd, project, suppliers, quantity=1):
    """Run a second PR for spare Punches through to award; returns the AwardOutcome."""
    acme = suppliers[0]
    pr = engine.create_pr(npd, project.id, [{"name": "Punch", "quantity": quantity, "unit_price": 30}], [acme.id])
    pr = engine.update_pr(npd, pr.id, critical_spares=[{"item_id": pr.items[0].id, "quantity": quantity}])
    engine.approve_pr(approver, pr.id)
    q = engine.submit_quotation(npd, pr.id, acme.id,
                                [{"item_id": pr.items[0].id, "unit_price": 30, "quantity": quantity}])
    engine.send_to_supplier(npd, pr.id)
    engine.select_quotation(npd, q.id)
    return engine.award_pr(npd, pr.id)


@pytest.mark.unit
class TestHandoverInspection:

    def test_approve_books_critical_spares(self, engine, maintenance, awarded):
        outcome = engine.approve_handover(maintenance, awarded.handover.id, "All dimensions OK")
        handover = outcome.handover

        assert handover.status == HandoverStatus.APPROVED
        assert handover.inspected_by == "mohan"
        assert handover.remarks == "All dimensions OK"
        assert handover.critical_spares[0].inventory_item_id == "INV-2024-001"

        [item] = outcome.inventory_items
        assert item.id == "INV-2024-001"
        assert (item.part_number, item.tool_number, item.name) == (PART_NUMBER, TOOL_NUMBER, "Punch")
        assert item.stock_level == 2
        assert item.min_stock_level == 2
        assert item.status == InventoryStatus.IN_STOCK
        assert item.project_id == awarded.pr.project_id
        assert engine.get(Collection.INVENTORY, item.id) == item
        assert engine.get(Collection.HANDOVERS, handover.id) == handover
        assert [e.action for e in engine.history(item.id)] == ["received"]

    def test_fixed_min_stock_policy(self, engine, maintenance, awarded):
        engine.config.initial_min_stock_policy = "fixed"
        engine.config.initial_min_stock_level = 5
        [item] = engine.approve_handover(maintenance, awarded.handover.id).inventory_items
        assert item.min_stock_level == 5
        assert item.status == InventoryStatus.LOW_STOCK

    def test_second_delivery_tops_up_same_item(self, engine, approver, npd, maintenance, project,
                                               suppliers, awarded):
        engine.approve_handover(maintenance, awarded.handover.id)
        second = award_another_punch_pr(engine, approver, npd, project, suppliers, quantity=3)
        assert second.handover.id == "HO-2024-002"
        assert second.supplier.total_orders == 2

        [item] = engine.approve_handover(maintenance, second.handover.id).inventory_items
        assert item.id == "INV-2024-001"
        assert item.stock_level == 5
        assert item.quantity == 5
        assert len(engine.list(Collection.INVENTORY)) == 1

    def test_approve_once(self, engine, maintenance, awarded):
        engine.approve_handover(maintenance, awarded.handover.id)
        with pytest.raises(InvalidState):
            engine.approve_handover(maintenance, awarded.handover.id)
        with pytest.raises(InvalidState):
            engine.reject_handover(maintenance, awarded.handover.id, "Too late")
        assert engine.get(Collection.INVENTORY, "INV-2024-001").stock_level == 2

    def test_only_maintenance_inspects(self, engine, spares, approver, awarded):
        for actor in (spares, approver):
            with pytest.raises(Forbidden):
                engine.approve_handover(actor, awarded.handover.id)

    def test_unknown_handover(self, engine, maintenance):
        with pytest.raises(NotFound):
            engine.approve_handover(maintenance, "HO-2024-404")

    def test_reject_needs_remarks(self, engine, maintenance, awarded):
        with pytest.raises(ValidationFailed, match="remarks"):
            engine.reject_handover(maintenance, awarded.handover.id, "   ")
        rejected = engine.reject_handover(maintenance, awarded.handover.id, "Cracked die block")
        assert rejected.status == HandoverStatus.REJECTED
        assert rejected.remarks == "Cracked die block"
        assert engine.list(Collection.INVENTORY) == []
        # The award stands; rejection only concerns the delivered tooling
        assert engine.get(Collection.PRS, awarded.pr.id).status == PRStatus.AWARDED


@pytest.mark.unit
class TestCreateInventoryItem:

    def test_create_with_delivered_policy(self, engine, spares, project):
        item = engine.create_inventory_item(spares, " Stripper Plate ", PART_NUMBER, TOOL_NUMBER, 4,
                                            project_id=project.id)
        assert item.id == "INV-2024-001"
        assert item.name == "Stripper Plate"
        assert (item.quantity, item.stock_level, item.min_stock_level) == (4, 4, 4)
        assert item.status == InventoryStatus.IN_STOCK
        assert item.project_id == project.id
        assert engine.get(Collection.INVENTORY, item.id) == item
        [entry] = engine.history(item.id)
        assert entry.action == "created"
        assert entry.detail["min_stock_level"] == 4

    def test_fixed_policy_and_explicit_min(self, engine, spares, stocked_item):
        engine.config.initial_min_stock_policy = "fixed"
        engine.config.initial_min_stock_level = 5
        fixed = engine.create_inventory_item(spares, "Guide Pillar", PART_NUMBER, TOOL_NUMBER, 2)
        explicit = engine.create_inventory_item(spares, "Guide Bush", PART_NUMBER, TOOL_NUMBER, 0,
                                                min_stock_level=1)

        assert fixed.id == "INV-2024-002"
        assert (fixed.min_stock_level, fixed.status) == (5, InventoryStatus.LOW_STOCK)
        assert (explicit.min_stock_level, explicit.status) == (1, InventoryStatus.OUT_OF_STOCK)

    def test_existing_key_is_rejected(self, engine, spares, stocked_item):
        with pytest.raises(InvalidState, match="adjust its stock instead") as exc_info:
            engine.create_inventory_item(spares, "Punch", PART_NUMBER, TOOL_NUMBER, 1)
        assert exc_info.value.entity_id == stocked_item.id
        assert len(engine.list(Collection.INVENTORY)) == 1

    def test_bad_input(self, engine, spares):
        with pytest.raises(ValidationFailed, match="part_number"):
            engine.create_inventory_item(spares, "Punch", " ", TOOL_NUMBER, 1)
        with pytest.raises(ValidationFailed, match="stock_level"):
            engine.create_inventory_item(spares, "Punch", PART_NUMBER, TOOL_NUMBER, -1)
        with pytest.raises(NotFound):
            engine.create_inventory_item(spares, "Punch", PART_NUMBER, TOOL_NUMBER, 1,
                                         project_id="PRJ-2024-404")
        assert engine.list(Collection.INVENTORY) == []

    def test_only_spares_creates(self, engine, indentor, maintenance):
        for actor in (indentor, maintenance):
            with pytest.raises(Forbidden):
                engine.create_inventory_item(actor, "Punch", PART_NUMBER, TOOL_NUMBER, 1)


@pytest.mark.unit
class TestStockCommands:

    def test_adjust_stock(self, engine, spares, stocked_item):
        assert stocked_item.status == InventoryStatus.LOW_STOCK
        item = engine.adjust_stock(spares, stocked_item.id, 2, "Cycle count")
        assert item.stock_level == 5
        assert item.status == InventoryStatus.IN_STOCK
        item = engine.adjust_stock(spares, stocked_item.id, -5)
        assert item.stock_level == 0
        assert item.status == InventoryStatus.OUT_OF_STOCK
        assert [e.detail["delta"] for e in engine.history(stocked_item.id)] == [2, -5]

    def test_adjust_below_zero(self, engine, spares, stocked_item):
        with pytest.raises(InsufficientStock):
            engine.adjust_stock(spares, stocked_item.id, -4)
        assert engine.get(Collection.INVENTORY, stocked_item.id).stock_level == 3

    def test_zero_adjustment(self, engine, spares, stocked_item):
        with pytest.raises(ValidationFailed):
            engine.adjust_stock(spares, stocked_item.id, 0)

    def test_only_spares_adjusts(self, engine, indentor, stocked_item):
        with pytest.raises(Forbidden):
            engine.adjust_stock(indentor, stocked_item.id, 1)

    def test_set_min_stock_level(self, engine, spares, stocked_item):
        item = engine.set_min_stock_level(spares, stocked_item.id, 3)
        assert item.min_stock_level == 3
        assert item.status == InventoryStatus.IN_STOCK
        with pytest.raises(ValidationFailed):
            engine.set_min_stock_level(spares, stocked_item.id, -1)

    def test_reorder_pr(self, engine, spares, project, suppliers, stocked_item):
        pr = engine.raise_reorder_pr(spares, stocked_item.id, [suppliers[0].code], project_id=project.id)
        assert pr.status == PRStatus.SUBMITTED_FOR_APPROVAL
        assert pr.pr_type == PRType.NEW_SET
        assert pr.project_id == project.id
        assert [(i.name, i.quantity) for i in pr.items] == [("Punch", 2)]
        assert engine.history(stocked_item.id)[-1].action == "reorder_raised"

    def test_reorder_needs_a_project(self, engine, spares, suppliers, stocked_item):
        """The seeded item was never received through a handover, so it has no project."""
        with pytest.raises(ValidationFailed, match="no project"):
            engine.raise_reorder_pr(spares, stocked_item.id, [suppliers[0].id])

    def test_reorder_uses_receiving_project(self, engine, npd, maintenance, awarded, suppliers):
        engine.approve_handover(maintenance, awarded.handover.id)
        pr = engine.raise_reorder_pr(npd, "INV-2024-001", [suppliers[1].id], quantity=6, unit_price=32)
        assert pr.project_id == awarded.pr.project_id
        assert pr.items[0].quantity == 6
        assert pr.total_value == 192.0

    def test_indentor_cannot_reorder(self, engine, indentor, suppliers, stocked_item):
        with pytest.raises(Forbidden):
            engine.raise_reorder_pr(indentor, stocked_item.id, [suppliers[0].id])
