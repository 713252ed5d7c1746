"""
Unit tests for the in-memory entity store.
"""
import threading

import pytest

from models import InventoryItem, Supplier, WorkflowEffects
from workflow import Collection, InMemoryStore
from workflow.store import EntityStore

NOW = "2024-03-01T09:00:00.000+00:00"


def _item(item_id="INV-2024-001", stock=3):
    return InventoryItem(id=item_id, part_number="PN-1", tool_number="TL-1", name="Punch",
                         quantity=stock, stock_level=stock, min_stock_level=2, created_at=NOW)


@pytest.mark.unit
class TestInMemoryStore:

    def test_count(self, store):
        assert store.count(Collection.INVENTORY) == 0
        store.apply(WorkflowEffects(inventory_items=[_item(), _item("INV-2024-002")]))
        store.put(Collection.INVENTORY, _item(stock=1))
        assert store.count(Collection.INVENTORY) == 2
        assert store.count(Collection.SUPPLIERS) == 0

    def test_default_count_uses_list(self):
        class ListOnly(InMemoryStore):
            count = EntityStore.count

        listed = ListOnly()
        listed.put(Collection.SUPPLIERS, Supplier(id="SUP-2024-001", code="ACM", name="Acme", created_at=NOW))
        assert listed.count(Collection.SUPPLIERS) == 1

    def test_returns_copies(self, store):
        store.put(Collection.INVENTORY, _item())
        fetched = store.get(Collection.INVENTORY, "INV-2024-001")
        fetched.stock_level = 0
        assert store.get(Collection.INVENTORY, "INV-2024-001").stock_level == 3

    def test_transaction_is_reentrant_and_exclusive(self, store):
        entered = threading.Event()

        def other_writer():
            with store.transaction():
                entered.set()

        with store.transaction():
            with store.transaction():
                worker = threading.Thread(target=other_writer)
                worker.start()
                assert not entered.wait(timeout=0.2)
        worker.join(timeout=5)
        assert entered.is_set()
