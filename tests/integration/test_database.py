"""
Integration tests for the SQLite entity store.
"""
import sqlite3
import threading

import pytest

from conftest import SteppingClock, quotation_lines
from models import (
    Actor, AuditEntry, InventoryItem, InventoryStatus, PRStatus, Project, RequestStatus, Role,
    Supplier,
    WorkflowEffects,
)
from workflow import Collection, InsufficientStock, SqliteStore, WorkflowEngine

NOW = "2024-03-01T09:00:00.000+00:00"


def _project(project_id="PRJ-2024-001", created_at=NOW, **overrides):
    data = dict(id=project_id, customer_po="CPO-1", part_number="PN-1", tool_number="TL-1",
                price=500, created_by="asha", created_at=created_at)
    data.update(overrides)
    return Project(**data)


def _audit(entity_id, action, timestamp=NOW):
    return AuditEntry(entity_type="project", entity_id=entity_id, action=action, actor="asha",
                      role="Approver", timestamp=timestamp, detail={"note": action})


@pytest.mark.integration
class TestSqliteStore:
    """Integration tests for SqliteStore."""

    def test_schema_created(self, sqlite_store):
        assert sqlite_store.db_path.exists()
        with sqlite3.connect(sqlite_store.db_path) as conn:
            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {c.value for c in Collection} | {"audit_log"} <= tables

    def test_put_and_get(self, sqlite_store):
        project = _project(description="Bracket tool")
        sqlite_store.put(Collection.PROJECTS, project)

        assert sqlite_store.get(Collection.PROJECTS, project.id) == project
        assert sqlite_store.get(Collection.PROJECTS, "PRJ-2024-404") is None
        assert sqlite_store.count(Collection.PROJECTS) == 1

    def test_put_is_an_upsert(self, sqlite_store):
        sqlite_store.put(Collection.PROJECTS, _project())
        sqlite_store.put(Collection.PROJECTS, _project(description="Revised"))
        assert sqlite_store.count(Collection.PROJECTS) == 1
        assert sqlite_store.get(Collection.PROJECTS, "PRJ-2024-001").description == "Revised"

    def test_list_oldest_first_with_status_filter(self, sqlite_store):
        sqlite_store.put(Collection.PROJECTS, _project("PRJ-2024-002", "2024-03-02T00:00:00.000+00:00"))
        sqlite_store.put(Collection.PROJECTS, _project("PRJ-2024-001", "2024-03-01T00:00:00.000+00:00",
                                                       status="Completed"))

        assert sqlite_store.ids(Collection.PROJECTS) == ["PRJ-2024-001", "PRJ-2024-002"]
        assert [p.id for p in sqlite_store.list(Collection.PROJECTS, "Active")] == ["PRJ-2024-002"]

    def test_inventory_status_column_tracks_stock(self, sqlite_store):
        item = InventoryItem(id="INV-2024-001", part_number="PN-1", tool_number="TL-1", name="Punch",
                             quantity=2, stock_level=0, min_stock_level=2, created_at=NOW)
        sqlite_store.put(Collection.INVENTORY, item)

        assert [i.id for i in sqlite_store.list(Collection.INVENTORY, "Out of Stock")] == ["INV-2024-001"]
        assert sqlite_store.get(Collection.INVENTORY, item.id).status == InventoryStatus.OUT_OF_STOCK

    def test_put_wrong_type(self, sqlite_store):
        with pytest.raises(TypeError):
            sqlite_store.put(Collection.SUPPLIERS, _project())

    def test_apply_writes_entities_and_audit(self, sqlite_store):
        supplier = Supplier(id="SUP-2024-001", code="ACM", name="Acme", created_at=NOW)
        sqlite_store.apply(
            WorkflowEffects(projects=[_project()], suppliers=[supplier]),
            [_audit("PRJ-2024-001", "created")],
        )
        assert sqlite_store.get(Collection.SUPPLIERS, supplier.id) == supplier
        [entry] = sqlite_store.audit_log("PRJ-2024-001")
        assert entry.action == "created"
        assert entry.detail == {"note": "created"}

    def test_apply_rolls_back_on_failure(self, sqlite_store):
        """A failure part-way through leaves neither entities nor audit entries behind."""
        effects = WorkflowEffects.model_construct(
            projects=[_project()],
            prs=[], handovers=[], spares_requests=[], suppliers=[],
            inventory_items=[_project("PRJ-2024-002")],
        )
        with pytest.raises(TypeError):
            sqlite_store.apply(effects, [_audit("PRJ-2024-001", "created")])

        assert sqlite_store.get(Collection.PROJECTS, "PRJ-2024-001") is None
        assert sqlite_store.audit_log() == []

    def test_audit_log_ordering(self, sqlite_store):
        sqlite_store.apply(WorkflowEffects(), [
            _audit("PRJ-2024-001", "created", "2024-03-01T09:00:00.000+00:00"),
            _audit("PRJ-2024-002", "created", "2024-03-01T09:05:00.000+00:00"),
        ])
        sqlite_store.apply(WorkflowEffects(), [_audit("PRJ-2024-001", "updated", "2024-03-01T09:10:00.000+00:00")])

        assert [e.action for e in sqlite_store.audit_log("PRJ-2024-001")] == ["created", "updated"]
        recent = sqlite_store.audit_log(limit=2)
        assert [(e.entity_id, e.action) for e in recent] == [
            ("PRJ-2024-001", "updated"), ("PRJ-2024-002", "created"),
        ]

    def test_transaction_commits_once(self, sqlite_store):
        other = SqliteStore(sqlite_store.db_path)
        with sqlite_store.transaction():
            sqlite_store.put(Collection.PROJECTS, _project())
            with sqlite_store.transaction():
                sqlite_store.put(Collection.PROJECTS, _project("PRJ-2024-002"))
            # not visible to another connection until the outer block ends
            assert other.count(Collection.PROJECTS) == 0
        assert other.count(Collection.PROJECTS) == 2

    def test_transaction_rolls_back(self, sqlite_store):
        with pytest.raises(RuntimeError):
            with sqlite_store.transaction():
                sqlite_store.put(Collection.PROJECTS, _project())
                raise RuntimeError("boom")
        assert sqlite_store.count(Collection.PROJECTS) == 0


@pytest.mark.integration
class TestEngineOnSqlite:
    """The full procurement flow against a database file."""

    def test_award_and_receive_persist(self, test_config):
        store = SqliteStore(test_config.db_path)
        engine = WorkflowEngine(store, test_config, clock=SteppingClock())
        approver = Actor(user="asha", role=Role.APPROVER)
        npd = Actor(user="nikhil", role=Role.NPD)
        maintenance = Actor(user="mohan", role=Role.MAINTENANCE)

        acme = engine.create_supplier(npd, code="ACM", name="Acme Tooling Pvt Ltd")
        project = engine.create_project(approver, customer_po="CPO-9", part_number="PN-9",
                                        tool_number="TL-9", price=1000)
        pr = engine.create_pr(npd, project.id,
                              [{"name": "Punch", "quantity": 2, "unit_price": 30},
                               {"name": "Die Block", "quantity": 1, "unit_price": 40}],
                              [acme.id], critical_spares=[{"item_id": "PR-2024-001-01", "quantity": 2}])
        engine.approve_pr(approver, pr.id)
        q = engine.submit_quotation(npd, pr.id, "acm", quotation_lines(pr, 30, 40))
        engine.send_to_supplier(npd, pr.id)
        engine.select_quotation(npd, q.id)
        award = engine.award_pr(npd, pr.id)
        engine.approve_handover(maintenance, award.handover.id)

        reopened = SqliteStore(test_config.db_path)
        saved = reopened.get(Collection.PRS, pr.id)
        assert saved.status == PRStatus.AWARDED
        assert saved.quotations[0].items[0].total == 60.0
        assert reopened.get(Collection.SUPPLIERS, acme.id).total_orders == 1
        [item] = reopened.list(Collection.INVENTORY)
        assert (item.name, item.stock_level, item.status) == ("Punch", 2, InventoryStatus.IN_STOCK)
        assert reopened.get(Collection.HANDOVERS, award.handover.id).critical_spares[0].inventory_item_id == item.id
        assert [e.action for e in reopened.audit_log(pr.id)] == ["submitted", "approved", "sent_to_supplier", "awarded"]

    def test_two_engines_cannot_oversell(self, test_config):
        """Two engines on one file fulfil against the same 3 in stock; only one issue of 2 fits."""
        item = InventoryItem(
            id="INV-2024-001", part_number="PN-9", tool_number="TL-9", name="Punch",
            quantity=3, stock_level=3, min_stock_level=0, created_at=NOW,
        )
        SqliteStore(test_config.db_path).put(Collection.INVENTORY, item)
        first = WorkflowEngine(SqliteStore(test_config.db_path), test_config, clock=SteppingClock())
        second = WorkflowEngine(SqliteStore(test_config.db_path), test_config, clock=SteppingClock())
        indentor = Actor(user="ravi", role=Role.INDENTOR)
        spares = Actor(user="sara", role=Role.SPARES)

        requests = [first.create_request(indentor, "Punch", "PN-9", "TL-9", 2) for _ in range(2)]

        barrier = threading.Barrier(2)
        outcomes, failures = [], []

        def fulfil(engine, request_id):
            barrier.wait()
            try:
                outcomes.append(engine.fulfill_request(spares, request_id))
            except InsufficientStock as exc:
                failures.append(exc)

        threads = [
            threading.Thread(target=fulfil, args=(engine, request.id))
            for engine, request in zip((first, second), requests)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert (len(outcomes), len(failures)) == (1, 1)
        reopened = SqliteStore(test_config.db_path)
        assert reopened.get(Collection.INVENTORY, "INV-2024-001").stock_level == 1
        statuses = sorted(r.status.value for r in reopened.list(Collection.SPARES_REQUESTS))
        assert statuses == [RequestStatus.FULFILLED.value, RequestStatus.PENDING.value]
