"""Validation results and batch-level conflict records."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from consequence_kernel.models.consequence import Consequence
from consequence_kernel.models.world import WorldRule, WorldStateSnapshot


class ConflictKind(str, Enum):
    DIRECT = "direct"           # Opposing outcomes on the same subject
    REDUNDANT = "redundant"     # Near-duplicate consequences
    PRIORITY = "priority"       # Two critical consequences fighting over a system


class ResolutionType(str, Enum):
    REMOVE_ONE = "remove_one"
    MERGE = "merge"
    PRIORITIZE = "prioritize"
    MODIFY = "modify"


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []
    details: Dict[str, bool] = {}           # Check name -> passed without errors


class ValidationContext(BaseModel):
    """What a single consequence is validated against."""

    world_rules: List[WorldRule] = []
    current_world_state: Optional[WorldStateSnapshot] = None
    evaluated_at: Optional[datetime] = None   # Defaults to now for rule activation


class ConsequenceConflict(BaseModel):
    kind: ConflictKind
    resolution_type: ResolutionType
    first_id: str
    second_id: str
    kept_id: Optional[str] = None
    removed_id: Optional[str] = None
    merged_id: Optional[str] = None
    notes: str = ""


class BatchValidationResult(BaseModel):
    valid_consequences: List[Consequence] = []
    invalid_consequences: List[Consequence] = []
    conflicts: List[ConsequenceConflict] = []
    validation_results: Dict[str, ValidationResult] = {}
