"""World-state update outcome: conflicts, audit trail, result."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel

from consequence_kernel.models.consequence import Consequence
from consequence_kernel.models.world import WorldStateSnapshot


class ConflictType(str, Enum):
    STATE_CONFLICT = "state_conflict"
    RELATIONSHIP_CONFLICT = "relationship_conflict"
    RESOURCE_CONFLICT = "resource_conflict"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResolutionStrategy(str, Enum):
    OVERWRITE = "overwrite"
    ESCALATE = "escalate"
    MERGE = "merge"
    REJECT = "reject"


class AuditAction(str, Enum):
    APPLIED = "applied"
    CONFLICT = "conflict"
    FAILED = "failed"


class ConflictResolution(BaseModel):
    strategy: ResolutionStrategy
    resolved_value: Optional[Any] = None
    notes: str = ""


class Conflict(BaseModel):
    type: ConflictType
    consequence_id: str
    description: str
    severity: ConflictSeverity
    resolution: Optional[ConflictResolution] = None


class AuditEntry(BaseModel):
    """One state mutation, or one failed attempt at one. Append-only."""

    timestamp: datetime
    consequence_id: str
    action: AuditAction
    system: str
    change: str
    previous_value: Optional[Any] = None
    new_value: Optional[Any] = None


class UpdateMetadata(BaseModel):
    update_time_ms: float = 0.0
    affected_systems: List[str] = []
    total_changes: int = 0


class WorldStateUpdateResult(BaseModel):
    success: bool
    updated_world_state: WorldStateSnapshot
    applied_consequences: List[Consequence] = []
    failed_consequences: List[Consequence] = []
    conflicts: List[Conflict] = []
    audit_trail: List[AuditEntry] = []
    metadata: UpdateMetadata = UpdateMetadata()


class AuditRecord(BaseModel):
    """A ledger row: one audit entry, hashed and chained to its predecessor."""

    id: str
    batch_id: str
    entry: AuditEntry

    # INTEGRITY
    signature: str = ""
    prior_record_hash: Optional[str] = None
