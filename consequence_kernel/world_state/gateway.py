"""
World-Rule/State Gateway — the pipeline's only window onto persistent world data.

Behavioral Contract:
- Rules are read-only to the pipeline
- Reads and writes exchange copies; callers never share a live snapshot
- Writes carrying ``expected_version`` are compare-and-swap: a write against a
  stale version is refused, never merged
- Every successful write leaves the stored snapshot one version higher
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel

from consequence_kernel.models.world import WorldRule, WorldStateSnapshot

logger = logging.getLogger(__name__)


class StaleSnapshotError(Exception):
    """Raised when a write is based on an outdated snapshot version."""

    def __init__(self, expected_version: int, current_version: int):
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Snapshot version {expected_version} is stale; "
            f"current version is {current_version}"
        )


class GatewayWriteResult(BaseModel):
    success: bool
    error: Optional[str] = None
    version: int = 0


class WorldStateGateway(Protocol):
    """Protocol for world rule and state access — pluggable storage backend."""

    def get_world_rules(self) -> List[WorldRule]: ...

    def get_current_state(self) -> WorldStateSnapshot: ...

    def update_world_state(
        self,
        snapshot: WorldStateSnapshot,
        expected_version: Optional[int] = None,
    ) -> GatewayWriteResult: ...


class InMemoryWorldStateGateway:
    """
    In-memory gateway for tests and the bundled API.
    Production would back this with the game's world database.
    """

    def __init__(
        self,
        snapshot: Optional[WorldStateSnapshot] = None,
        rules: Optional[List[WorldRule]] = None,
    ):
        self._lock = threading.Lock()
        self._snapshot = (
            snapshot.model_copy(deep=True)
            if snapshot
            else WorldStateSnapshot(timestamp=datetime.utcnow())
        )
        self._rules: Dict[str, WorldRule] = {r.id: r for r in rules or []}

    def get_world_rules(self) -> List[WorldRule]:
        return list(self._rules.values())

    def add_rule(self, rule: WorldRule) -> None:
        self._rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def get_current_state(self) -> WorldStateSnapshot:
        with self._lock:
            return self._snapshot.model_copy(deep=True)

    @property
    def version(self) -> int:
        return self._snapshot.version

    def update_world_state(
        self,
        snapshot: WorldStateSnapshot,
        expected_version: Optional[int] = None,
    ) -> GatewayWriteResult:
        """Store a copy of ``snapshot``; refuse it if the version moved on."""
        with self._lock:
            try:
                self._commit(snapshot, expected_version)
            except StaleSnapshotError as e:
                logger.warning("Refused world-state write: %s", e)
                return GatewayWriteResult(
                    success=False, error=str(e), version=self._snapshot.version
                )
            return GatewayWriteResult(success=True, version=self._snapshot.version)

    def _commit(self, snapshot: WorldStateSnapshot, expected_version: Optional[int]) -> None:
        current = self._snapshot.version
        if expected_version is not None and expected_version != current:
            raise StaleSnapshotError(expected_version, current)
        stored = snapshot.model_copy(deep=True)
        stored.version = current + 1
        self._snapshot = stored
