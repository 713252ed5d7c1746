"""
Store abstraction over the entity collections.

The engine depends only on EntityStore.  InMemoryStore backs tests and
embedded use; SqliteStore (workflow.database) persists to a file.  Both
apply a WorkflowEffects value atomically: every upsert plus its audit
entries land together, or nothing does.
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Iterable, Iterator, List, Optional

from pydantic import BaseModel

from models import (
    AuditEntry, InventoryItem, Project, PurchaseRequisition, SparesRequest,
    Supplier, ToolHandoverRecord, WorkflowEffects,
)

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    PROJECTS        = "projects"
    PRS             = "prs"
    HANDOVERS       = "handovers"
    INVENTORY       = "inventory"
    SPARES_REQUESTS = "spares_requests"
    SUPPLIERS       = "suppliers"


MODEL_FOR: dict[Collection, type[BaseModel]] = {
    Collection.PROJECTS:        Project,
    Collection.PRS:             PurchaseRequisition,
    Collection.HANDOVERS:       ToolHandoverRecord,
    Collection.INVENTORY:       InventoryItem,
    Collection.SPARES_REQUESTS: SparesRequest,
    Collection.SUPPLIERS:       Supplier,
}

# WorkflowEffects field -> collection it is written to
_EFFECT_FIELDS: dict[str, Collection] = {
    "projects":        Collection.PROJECTS,
    "prs":             Collection.PRS,
    "handovers":       Collection.HANDOVERS,
    "inventory_items": Collection.INVENTORY,
    "spares_requests": Collection.SPARES_REQUESTS,
    "suppliers":       Collection.SUPPLIERS,
}


def iter_effects(effects: WorkflowEffects) -> Iterator[tuple[Collection, BaseModel]]:
    """Yield (collection, entity) for every entity in *effects*."""
    for field_name, collection in _EFFECT_FIELDS.items():
        for entity in getattr(effects, field_name):
            yield collection, entity


class EntityStore(ABC):
    """get / list / put per collection, plus atomic multi-collection apply."""

    @abstractmethod
    def get(self, collection: Collection, entity_id: str) -> Optional[BaseModel]:
        ...

    @abstractmethod
    def list(self, collection: Collection, status: Optional[str] = None) -> List:
        """All entities of *collection*, oldest first, optionally filtered by status."""

    @abstractmethod
    def put(self, collection: Collection, entity: BaseModel) -> None:
        ...

    @abstractmethod
    def apply(self, effects: WorkflowEffects, audit: Iterable[AuditEntry] = ()) -> None:
        """Upsert every entity in *effects* and append *audit* as one transaction."""

    @abstractmethod
    def audit_log(self, entity_id: Optional[str] = None, limit: int = 200) -> List[AuditEntry]:
        """Audit entries for one entity (oldest first) or the most recent overall."""

    @abstractmethod
    def transaction(self):
        """
        Context manager holding exclusive write access to the store.  Reads
        and apply() calls made inside it see one consistent state, and no
        other transaction on the same data can interleave.  Re-entrant.
        """

    def ids(self, collection: Collection) -> List[str]:
        return [e.id for e in self.list(collection)]

    def count(self, collection: Collection) -> int:
        return len(self.list(collection))


class InMemoryStore(EntityStore):
    """
    Dict-backed store.  Entities are deep-copied on the way in and out so
    callers never share state with the store or with each other.
    """

    def __init__(self) -> None:
        self._data: dict[Collection, dict[str, BaseModel]] = {c: {} for c in Collection}
        self._audit: List[AuditEntry] = []
        self._lock = threading.Lock()
        self._tx_lock = threading.RLock()

    @contextmanager
    def transaction(self):
        with self._tx_lock:
            yield

    def get(self, collection: Collection, entity_id: str) -> Optional[BaseModel]:
        with self._lock:
            entity = self._data[collection].get(entity_id)
            return entity.model_copy(deep=True) if entity is not None else None

    def list(self, collection: Collection, status: Optional[str] = None) -> List:
        with self._lock:
            entities = [e.model_copy(deep=True) for e in self._data[collection].values()]
        if status is not None:
            entities = [e for e in entities if _status_of(e) == status]
        return sorted(entities, key=lambda e: (getattr(e, "created_at", "") or "", e.id))

    def put(self, collection: Collection, entity: BaseModel) -> None:
        self._check_type(collection, entity)
        with self._lock:
            self._data[collection][entity.id] = entity.model_copy(deep=True)

    def apply(self, effects: WorkflowEffects, audit: Iterable[AuditEntry] = ()) -> None:
        staged = []
        for collection, entity in iter_effects(effects):
            self._check_type(collection, entity)
            staged.append((collection, entity.model_copy(deep=True)))
        entries = [copy.deepcopy(a) for a in audit]

        with self._lock:
            for collection, entity in staged:
                self._data[collection][entity.id] = entity
            self._audit.extend(entries)
        logger.debug("Applied %d entities, %d audit entries", len(staged), len(entries))

    def count(self, collection: Collection) -> int:
        with self._lock:
            return len(self._data[collection])

    def audit_log(self, entity_id: Optional[str] = None, limit: int = 200) -> List[AuditEntry]:
        with self._lock:
            entries = list(self._audit)
        if entity_id is not None:
            return [e for e in entries if e.entity_id == entity_id]
        return list(reversed(entries))[:limit]

    @staticmethod
    def _check_type(collection: Collection, entity: BaseModel) -> None:
        expected = MODEL_FOR[collection]
        if not isinstance(entity, expected):
            raise TypeError(
                f"{collection.value} holds {expected.__name__}, got {type(entity).__name__}"
            )


def _status_of(entity: BaseModel) -> Optional[str]:
    status = getattr(entity, "status", None)
    return status.value if isinstance(status, Enum) else status
