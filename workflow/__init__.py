from .errors import (
    WorkflowError, NotFound, InvalidState, Forbidden, ValidationFailed, InsufficientStock,
)
from .store import Collection, EntityStore, InMemoryStore
from .database import SqliteStore
from .supplier_directory import SupplierDirectory, load_suppliers_csv
from .engine import WorkflowEngine

__all__ = [
    "WorkflowError", "NotFound", "InvalidState", "Forbidden", "ValidationFailed",
    "InsufficientStock",
    "Collection", "EntityStore", "InMemoryStore", "SqliteStore",
    "SupplierDirectory", "load_suppliers_csv",
    "WorkflowEngine",
]
