"""
Durable stores — the Sent Ledger and the device key-value store.

Behavioral Contract (Sent Ledger):
- Keyed by (tenant, entity id, target status). One row per key, ever.
- try_record() is an atomic check-and-set: INSERT OR IGNORE reports whether
  this caller created the row. Only the creator may invoke the transport.
- Rows are never deleted. A row whose send never confirmed stays as a
  delivery gap for manual follow-up; it is not a licence to resend.

Both stores default to SQLite in memory; pass a file path to survive
process restarts (the equivalent of the browser's local storage).
"""

import sqlite3
import threading
from datetime import datetime
from typing import List, Optional

from ops_kernel.models.ledger import SentLedgerEntry


class _SQLiteStore:
    """Shared connection handling for the SQLite-backed stores."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


class SentLedger(_SQLiteStore):
    """At-most-once ledger for customer-facing notifications."""

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS sent_ledger (
                tenant_id TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                target_status TEXT NOT NULL,
                sent_at TEXT NOT NULL,
                delivered INTEGER,
                error TEXT,
                PRIMARY KEY (tenant_id, entity_id, target_status)
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_sent_ledger_delivered
            ON sent_ledger(tenant_id, delivered)
        """)
        self._conn.commit()

    def try_record(
        self,
        tenant_id: str,
        entity_id: str,
        target_status: str,
        sent_at: Optional[datetime] = None,
    ) -> bool:
        """
        Record intent to send. Returns True if this call created the entry,
        False if the key was already present.
        """
        sent_at = sent_at or datetime.utcnow()
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO sent_ledger (
                    tenant_id, entity_id, target_status, sent_at
                ) VALUES (?, ?, ?, ?)
                """,
                (tenant_id, entity_id, target_status, sent_at.isoformat()),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def mark_delivered(self, tenant_id: str, entity_id: str, target_status: str) -> None:
        self._set_outcome(tenant_id, entity_id, target_status, True, None)

    def mark_failed(
        self, tenant_id: str, entity_id: str, target_status: str, error: str
    ) -> None:
        self._set_outcome(tenant_id, entity_id, target_status, False, error)

    def _set_outcome(
        self,
        tenant_id: str,
        entity_id: str,
        target_status: str,
        delivered: bool,
        error: Optional[str],
    ) -> None:
        with self._lock:
            self._conn.execute(
                """
                UPDATE sent_ledger SET delivered = ?, error = ?
                WHERE tenant_id = ? AND entity_id = ? AND target_status = ?
                """,
                (int(delivered), error, tenant_id, entity_id, target_status),
            )
            self._conn.commit()

    def _deserialize(self, row: sqlite3.Row) -> SentLedgerEntry:
        delivered = row["delivered"]
        return SentLedgerEntry(
            tenant_id=row["tenant_id"],
            entity_id=row["entity_id"],
            target_status=row["target_status"],
            sent_at=datetime.fromisoformat(row["sent_at"]),
            delivered=None if delivered is None else bool(delivered),
            error=row["error"],
        )

    def get(
        self, tenant_id: str, entity_id: str, target_status: str
    ) -> Optional[SentLedgerEntry]:
        row = self._conn.execute(
            """
            SELECT * FROM sent_ledger
            WHERE tenant_id = ? AND entity_id = ? AND target_status = ?
            """,
            (tenant_id, entity_id, target_status),
        ).fetchone()
        return self._deserialize(row) if row else None

    def contains(self, tenant_id: str, entity_id: str, target_status: str) -> bool:
        return self.get(tenant_id, entity_id, target_status) is not None

    def query_gaps(self, tenant_id: str) -> List[SentLedgerEntry]:
        """Entries that failed or never confirmed delivery."""
        rows = self._conn.execute(
            """
            SELECT * FROM sent_ledger
            WHERE tenant_id = ? AND (delivered IS NULL OR delivered = 0)
            ORDER BY sent_at
            """,
            (tenant_id,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_by_entity(self, tenant_id: str, entity_id: str) -> List[SentLedgerEntry]:
        rows = self._conn.execute(
            "SELECT * FROM sent_ledger WHERE tenant_id = ? AND entity_id = ? ORDER BY sent_at",
            (tenant_id, entity_id),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def count(self, tenant_id: Optional[str] = None) -> int:
        if tenant_id is None:
            row = self._conn.execute("SELECT COUNT(*) AS cnt FROM sent_ledger").fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) AS cnt FROM sent_ledger WHERE tenant_id = ?",
                (tenant_id,),
            ).fetchone()
        return row["cnt"]


class KeyValueStore(_SQLiteStore):
    """Durable string key-value store, partitioned by namespace (tenant:device)."""

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (namespace, key)
            )
        """)
        self._conn.commit()

    def get(self, namespace: str, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self._conn.execute(
            "SELECT value FROM kv WHERE namespace = ? AND key = ?",
            (namespace, key),
        ).fetchone()
        return row["value"] if row else default

    def set(self, namespace: str, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO kv (namespace, key, value, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value = excluded.value, updated_at = excluded.updated_at
                """,
                (namespace, key, value, datetime.utcnow().isoformat()),
            )
            self._conn.commit()

    def delete(self, namespace: str, key: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM kv WHERE namespace = ? AND key = ?", (namespace, key)
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def get_bool(self, namespace: str, key: str, default: bool = False) -> bool:
        value = self.get(namespace, key)
        if value is None:
            return default
        return value == "true"

    def set_bool(self, namespace: str, key: str, value: bool) -> None:
        self.set(namespace, key, "true" if value else "false")
