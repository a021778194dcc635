"""
Audit Ledger — append-only, hash-chained record of every world-state mutation.

Behavioral Contract:
- Append-only. No entry is ever modified or deleted.
- Each record is hashed and chained to the previous record (tamper-evident).
- Queryable by consequence, by update batch, and by recency.
"""

import hashlib
import json
import sqlite3
import threading
from typing import List, Optional
from uuid import uuid4

from consequence_kernel.models.update import AuditEntry, AuditRecord


def _sign(record: AuditRecord) -> str:
    record_dict = record.model_dump(mode="json")
    # Signature is what we're computing
    record_dict["signature"] = ""
    record_bytes = json.dumps(record_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(record_bytes).hexdigest()


class AuditLedger:
    """
    Append-only audit ledger.
    Prototype: SQLite. Production: PostgreSQL with row-level security.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the audit table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS audit (
                id TEXT PRIMARY KEY,
                batch_id TEXT NOT NULL,
                consequence_id TEXT NOT NULL,
                system TEXT NOT NULL,
                action TEXT NOT NULL,
                signature TEXT NOT NULL,
                prior_record_hash TEXT,
                record_json TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_batch_id ON audit(batch_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_consequence_id ON audit(consequence_id)
        """)
        self._conn.commit()

    def append(self, batch_id: str, entry: AuditEntry) -> AuditRecord:
        """Append one entry, chained to the latest record."""
        with self._lock:
            record = self._append_locked(batch_id, entry)
            self._conn.commit()
        return record

    def append_batch(self, batch_id: str, entries: List[AuditEntry]) -> List[AuditRecord]:
        """Append a whole update's audit trail in one transaction."""
        with self._lock:
            records = [self._append_locked(batch_id, entry) for entry in entries]
            self._conn.commit()
        return records

    def _append_locked(self, batch_id: str, entry: AuditEntry) -> AuditRecord:
        record = AuditRecord(
            id=f"aud_{uuid4().hex[:12]}",
            batch_id=batch_id,
            entry=entry,
            prior_record_hash=self._get_latest_hash(),
        )
        record.signature = _sign(record)
        self._conn.execute(
            """
            INSERT INTO audit (
                id, batch_id, consequence_id, system, action,
                signature, prior_record_hash, record_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                batch_id,
                entry.consequence_id,
                entry.system,
                entry.action.value,
                record.signature,
                record.prior_record_hash,
                record.model_dump_json(),
            ),
        )
        return record

    def _get_latest_hash(self) -> Optional[str]:
        """Get the signature of the most recent record."""
        row = self._conn.execute(
            "SELECT signature FROM audit ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def _deserialize(self, row: sqlite3.Row) -> AuditRecord:
        return AuditRecord.model_validate_json(row["record_json"])

    def query_by_consequence(self, consequence_id: str) -> List[AuditRecord]:
        """Every recorded mutation caused by one consequence."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM audit WHERE consequence_id = ? ORDER BY rowid",
                (consequence_id,),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_by_batch(self, batch_id: str) -> List[AuditRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM audit WHERE batch_id = ? ORDER BY rowid",
                (batch_id,),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_recent(self, limit: int = 50) -> List[AuditRecord]:
        """Get the most recent audit records, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM audit ORDER BY rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def verify_chain_integrity(self) -> bool:
        """Verify no records have been tampered with."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json, signature FROM audit ORDER BY rowid"
            ).fetchall()

        previous_signature = None
        for row in rows:
            record = self._deserialize(row)
            if record.signature != row["signature"] or _sign(record) != record.signature:
                return False
            if record.prior_record_hash != previous_signature:
                return False
            previous_signature = record.signature
        return True

    def count(self) -> int:
        """Total number of audit records."""
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) as cnt FROM audit").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
