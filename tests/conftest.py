"""
Pytest configuration and shared fixtures for the workflow test suite.
"""
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)

PART_NUMBER = "PN-7781"
TOOL_NUMBER = "TL-42"


class SteppingClock:
    """Deterministic clock: each call returns the previous instant plus *step*."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
                 step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current += self.step
        return now


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="workflow_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    config = Config(
        db_path=temp_dir / "output" / "workflow.db",
        config_dir=temp_dir / "config",
        suppliers_csv=temp_dir / "data" / "suppliers.csv",
        initial_min_stock_policy="delivered",
        initial_min_stock_level=2,
        supplier_fuzzy_threshold=85,
    )
    config.suppliers_csv.parent.mkdir(parents=True, exist_ok=True)
    return config


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def store() -> "InMemoryStore":
    from workflow import InMemoryStore
    return InMemoryStore()


@pytest.fixture
def sqlite_store(test_config) -> "SqliteStore":
    """Provide a test database instance."""
    from workflow import SqliteStore
    return SqliteStore(test_config.db_path)


@pytest.fixture
def engine(store, test_config, clock) -> "WorkflowEngine":
    from workflow import WorkflowEngine
    return WorkflowEngine(store, test_config, clock=clock)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

def _actor(user: str, role: str):
    from models import Actor, Role
    return Actor(user=user, role=Role(role))


@pytest.fixture
def approver():
    return _actor("asha", "Approver")


@pytest.fixture
def npd():
    return _actor("nikhil", "NPD")


@pytest.fixture
def maintenance():
    return _actor("mohan", "Maintenance")


@pytest.fixture
def spares():
    return _actor("sara", "Spares")


@pytest.fixture
def indentor():
    return _actor("ravi", "Indentor")


# ---------------------------------------------------------------------------
# Seeded workflow states
# ---------------------------------------------------------------------------

@pytest.fixture
def suppliers(engine, npd):
    """Two active suppliers: Acme (SUP-2024-001, rating 4.5) and Beta (SUP-2024-002, rating 3.8)."""
    acme = engine.create_supplier(
        npd, code="ACM", name="Acme Tooling Pvt Ltd", email="sales@acme-tooling.example",
        categories=["Press Tools"], rating=4.5, aliases=["Acme Tools"],
    )
    beta = engine.create_supplier(
        npd, code="BPW", name="Beta Precision Works", categories=["Dies", "Fixtures"], rating=3.8,
    )
    return acme, beta


@pytest.fixture
def project(engine, approver):
    return engine.create_project(
        approver, customer_po="CPO-5521", part_number=PART_NUMBER, tool_number=TOOL_NUMBER,
        price=250000, target_date="2024-06-30", description="Bracket progressive tool",
    )


@pytest.fixture
def pr(engine, npd, project, suppliers):
    """
    PR-2024-001: two items (Punch x2 @ 30, Die Block x1 @ 40), both suppliers
    as candidates, 2 Punches allocated as critical spares.
    """
    acme, beta = suppliers
    return engine.create_pr(
        npd,
        project_id=project.id,
        items=[
            {"name": "Punch", "specification": "D2, 58-60 HRC", "quantity": 2, "unit_price": 30},
            {"name": "Die Block", "quantity": 1, "unit_price": 40},
        ],
        candidate_suppliers=[acme.id, beta.id],
        critical_spares=[{"item_id": "PR-2024-001-01", "quantity": 2}],
    )


def quotation_lines(pr, punch_price: float, die_price: float) -> list[dict]:
    return [
        {"item_id": pr.items[0].id, "unit_price": punch_price, "quantity": 2},
        {"item_id": pr.items[1].id, "unit_price": die_price, "quantity": 1},
    ]


@pytest.fixture
def quoted_pr(engine, approver, npd, pr, suppliers):
    """
    pr approved and sent to supplier with two quotations:
    QT-2024-001 from Acme at 100.00 and QT-2024-002 from Beta at 120.00.
    """
    acme, beta = suppliers
    engine.approve_pr(approver, pr.id, "Go ahead")
    engine.submit_quotation(npd, pr.id, acme.id, quotation_lines(pr, 30, 40),
                            price=100, delivery_date="2024-04-20")
    engine.submit_quotation(npd, pr.id, "Beta Precision Works", quotation_lines(pr, 35, 50),
                            delivery_date="2024-04-10")
    return engine.send_to_supplier(npd, pr.id)


@pytest.fixture
def awarded(engine, npd, quoted_pr):
    """quoted_pr with Acme's quotation selected and awarded; returns the AwardOutcome."""
    engine.select_quotation(npd, "QT-2024-001")
    return engine.award_pr(npd, quoted_pr.id)


@pytest.fixture
def stocked_item(store):
    """INV-2024-001: Punch with stock 3 against a minimum of 5 (Low Stock)."""
    from models import InventoryItem
    from workflow import Collection

    item = InventoryItem(
        id="INV-2024-001", part_number=PART_NUMBER, tool_number=TOOL_NUMBER, name="Punch",
        quantity=3, stock_level=3, min_stock_level=5, created_at="2024-02-01T08:00:00.000+00:00",
    )
    store.put(Collection.INVENTORY, item)
    return item


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
