"""
SQLite persistence layer for the workflow engine.

One database file (output/workflow.db) holds every collection plus the
audit trail:

  - One table per collection, keyed by document number, with the status
    and creation time denormalised for filtering and ordering
  - The full entity (pydantic model dumped by alias) stored as JSON
  - audit_log: who did what to which entity, and when

apply() writes all entities of one transition and their audit entries
inside a single transaction, so a failure part-way leaves nothing behind.
transaction() takes the write lock up front (BEGIN IMMEDIATE) so a whole
command, reads included, runs against one state even when several
processes share the file.
"""
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import BaseModel

from models import AuditEntry, WorkflowEffects
from .store import MODEL_FOR, Collection, EntityStore, iter_effects

logger = logging.getLogger(__name__)

_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id          TEXT PRIMARY KEY,
    status      TEXT,
    created_at  TEXT,
    data        TEXT NOT NULL       -- entity serialised as JSON (by alias)
);
CREATE INDEX IF NOT EXISTS idx_{table}_status  ON {table} (status);
CREATE INDEX IF NOT EXISTS idx_{table}_created ON {table} (created_at);
"""

_AUDIT_DDL = """
CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT    NOT NULL,   -- project | pr | quotation | handover | inventory | request | supplier
    entity_id   TEXT    NOT NULL,
    timestamp   TEXT    NOT NULL,   -- ISO-8601
    action      TEXT    NOT NULL,
    actor       TEXT    NOT NULL DEFAULT 'system',
    role        TEXT,
    detail      TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log (entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""

_SCHEMA = "".join(_TABLE_DDL.format(table=c.value) for c in Collection) + _AUDIT_DDL


class SqliteStore(EntityStore):
    """Thin wrapper around an SQLite database file implementing EntityStore."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _conn(self):
        shared = getattr(self._local, "conn", None)
        if shared is not None:
            # inside transaction(): commit or rollback happens there
            yield shared
            return
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """
        Hold the database write lock (BEGIN IMMEDIATE) for the whole block.
        Every read and write on this thread goes through the same connection,
        so a second process or engine on the same file waits until commit.
        """
        if getattr(self._local, "conn", None) is not None:
            yield
            return
        conn = self._connect()
        conn.execute("BEGIN IMMEDIATE")
        self._local.conn = conn
        try:
            yield
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def put(self, collection: Collection, entity: BaseModel) -> None:
        with self._conn() as conn:
            self._upsert(conn, collection, entity)

    def apply(self, effects: WorkflowEffects, audit: Iterable[AuditEntry] = ()) -> None:
        entries = list(audit)
        written = 0
        with self._conn() as conn:
            for collection, entity in iter_effects(effects):
                self._upsert(conn, collection, entity)
                written += 1
            for entry in entries:
                self._insert_audit(conn, entry)
        logger.debug("Committed %d entities, %d audit entries", written, len(entries))

    @staticmethod
    def _upsert(conn: sqlite3.Connection, collection: Collection, entity: BaseModel) -> None:
        expected = MODEL_FOR[collection]
        if not isinstance(entity, expected):
            raise TypeError(
                f"{collection.value} holds {expected.__name__}, got {type(entity).__name__}"
            )
        conn.execute(
            f"""INSERT INTO {collection.value} (id, status, created_at, data)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    data   = excluded.data""",
            (
                entity.id,
                _status_value(entity),
                getattr(entity, "created_at", None),
                entity.model_dump_json(by_alias=True),
            ),
        )

    @staticmethod
    def _insert_audit(conn: sqlite3.Connection, entry: AuditEntry) -> None:
        conn.execute(
            """INSERT INTO audit_log (entity_type, entity_id, timestamp, action, actor, role, detail)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                entry.entity_type,
                entry.entity_id,
                entry.timestamp,
                entry.action,
                entry.actor,
                entry.role,
                json.dumps(entry.detail) if entry.detail is not None else None,
            ),
        )

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, collection: Collection, entity_id: str) -> Optional[BaseModel]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT data FROM {collection.value} WHERE id = ?", (entity_id,)
            ).fetchone()
        if row is None:
            return None
        return MODEL_FOR[collection].model_validate_json(row["data"])

    def list(self, collection: Collection, status: Optional[str] = None) -> List:
        params: list = []
        where = ""
        if status is not None:
            where = "WHERE status = ?"
            params.append(status)
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT data FROM {collection.value} {where} ORDER BY created_at ASC, id ASC",
                params,
            ).fetchall()
        model = MODEL_FOR[collection]
        return [model.model_validate_json(r["data"]) for r in rows]

    def count(self, collection: Collection) -> int:
        with self._conn() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {collection.value}").fetchone()[0]

    def audit_log(self, entity_id: Optional[str] = None, limit: int = 200) -> List[AuditEntry]:
        with self._conn() as conn:
            if entity_id is not None:
                rows = conn.execute(
                    """SELECT entity_type, entity_id, timestamp, action, actor, role, detail
                       FROM audit_log WHERE entity_id = ?
                       ORDER BY timestamp ASC, id ASC""",
                    (entity_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """SELECT entity_type, entity_id, timestamp, action, actor, role, detail
                       FROM audit_log
                       ORDER BY timestamp DESC, id DESC
                       LIMIT ?""",
                    (limit,),
                ).fetchall()
        return [_row_to_audit(r) for r in rows]


def _status_value(entity: BaseModel) -> Optional[str]:
    status = getattr(entity, "status", None)
    return status.value if isinstance(status, Enum) else status


def _row_to_audit(row: sqlite3.Row) -> AuditEntry:
    data = dict(row)
    data["detail"] = json.loads(data["detail"]) if data["detail"] else None
    return AuditEntry(**data)
