"""
Effect History Store — durable record of butterfly effects and who has
discovered them.

Behavioral Contract:
- Histories, discoveries, cross-region arrivals and emergent opportunities
  are stored as JSON rows keyed by id
- A (player, effect) discovery is stored at most once
- Safe to call from timer threads: every statement runs under one lock
"""

import sqlite3
import threading
from datetime import datetime
from typing import List, Optional

from consequence_kernel.models.butterfly import (
    CrossRegionEffectRecord,
    EffectDiscoveryRecord,
    EffectHistory,
    EmergentOpportunity,
)


class EffectHistoryStore:
    """
    SQLite-backed effect history.
    Prototype: SQLite. Production: the game's document store.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the effect tables if they don't exist."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS effect_history (
                    id TEXT PRIMARY KEY,
                    original_action_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    record_json TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_effect_history_action
                ON effect_history(original_action_id)
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS effect_discovery (
                    effect_id TEXT NOT NULL,
                    player_id TEXT NOT NULL,
                    record_json TEXT NOT NULL,
                    PRIMARY KEY (effect_id, player_id)
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS cross_region_effect (
                    id TEXT PRIMARY KEY,
                    history_id TEXT NOT NULL,
                    applied INTEGER NOT NULL DEFAULT 0,
                    record_json TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS emergent_opportunity (
                    id TEXT PRIMARY KEY,
                    history_id TEXT,
                    record_json TEXT NOT NULL
                )
            """)
            self._conn.commit()

    # === HISTORIES ===

    def save_history(self, history: EffectHistory) -> EffectHistory:
        """Insert or replace an effect history."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO effect_history "
                "(id, original_action_id, timestamp, record_json) VALUES (?, ?, ?, ?)",
                (
                    history.id,
                    history.original_action_id,
                    history.timestamp.isoformat(),
                    history.model_dump_json(),
                ),
            )
            self._conn.commit()
        return history

    def get_history(self, history_id: str) -> Optional[EffectHistory]:
        with self._lock:
            row = self._conn.execute(
                "SELECT record_json FROM effect_history WHERE id = ?", (history_id,)
            ).fetchone()
        return EffectHistory.model_validate_json(row["record_json"]) if row else None

    def find_histories_for_effect(self, effect_id: str) -> List[EffectHistory]:
        """Histories an effect id refers to: by history id, action id, or graph node."""
        matches = []
        for history in self.list_histories():
            if effect_id in (history.id, history.original_action_id):
                matches.append(history)
            elif history.graph and any(node.id == effect_id for node in history.graph.nodes):
                matches.append(history)
        return matches

    def list_histories(self, action_id: Optional[str] = None) -> List[EffectHistory]:
        """Histories, newest first."""
        with self._lock:
            if action_id:
                rows = self._conn.execute(
                    "SELECT record_json FROM effect_history WHERE original_action_id = ? "
                    "ORDER BY timestamp DESC, rowid DESC",
                    (action_id,),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT record_json FROM effect_history ORDER BY timestamp DESC, rowid DESC"
                ).fetchall()
        return [EffectHistory.model_validate_json(r["record_json"]) for r in rows]

    def count_histories(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) as cnt FROM effect_history").fetchone()
        return row["cnt"]

    # === DISCOVERIES ===

    def record_discovery(self, record: EffectDiscoveryRecord) -> bool:
        """Store a discovery. Returns False if the player already had it."""
        with self._lock:
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO effect_discovery (effect_id, player_id, record_json) "
                "VALUES (?, ?, ?)",
                (record.effect_id, record.player_id, record.model_dump_json()),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    def get_discoveries(self, player_id: str) -> List[EffectDiscoveryRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM effect_discovery WHERE player_id = ? ORDER BY rowid",
                (player_id,),
            ).fetchall()
        return [EffectDiscoveryRecord.model_validate_json(r["record_json"]) for r in rows]

    # === CROSS-REGION ===

    def save_cross_region(self, record: CrossRegionEffectRecord) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO cross_region_effect (id, history_id, applied, record_json) "
                "VALUES (?, ?, ?, ?)",
                (record.id, record.history_id, int(record.applied), record.model_dump_json()),
            )
            self._conn.commit()

    def mark_cross_region_applied(self, record_id: str, applied_at: datetime) -> None:
        record = self.get_cross_region(record_id)
        if record is None:
            return
        record.applied = True
        record.applied_at = applied_at
        self.save_cross_region(record)

    def get_cross_region(self, record_id: str) -> Optional[CrossRegionEffectRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT record_json FROM cross_region_effect WHERE id = ?", (record_id,)
            ).fetchone()
        return CrossRegionEffectRecord.model_validate_json(row["record_json"]) if row else None

    def list_cross_region(self, pending_only: bool = False) -> List[CrossRegionEffectRecord]:
        query = "SELECT record_json FROM cross_region_effect"
        if pending_only:
            query += " WHERE applied = 0"
        with self._lock:
            rows = self._conn.execute(query + " ORDER BY rowid").fetchall()
        return [CrossRegionEffectRecord.model_validate_json(r["record_json"]) for r in rows]

    # === OPPORTUNITIES ===

    def save_opportunity(self, opportunity: EmergentOpportunity) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO emergent_opportunity (id, history_id, record_json) "
                "VALUES (?, ?, ?)",
                (opportunity.id, opportunity.history_id, opportunity.model_dump_json()),
            )
            self._conn.commit()

    def list_opportunities(self) -> List[EmergentOpportunity]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM emergent_opportunity ORDER BY rowid"
            ).fetchall()
        return [EmergentOpportunity.model_validate_json(r["record_json"]) for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
