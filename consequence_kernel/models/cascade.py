"""Cascade network — the expanded graph of follow-on effects."""

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field

from consequence_kernel.models.consequence import CascadingEffect, Consequence


class CascadeOptions(BaseModel):
    max_cascading_levels: int = Field(ge=1, default=3)
    max_effects_per_level: int = Field(ge=1, default=4)
    probability_threshold: float = Field(ge=0, le=1, default=0.3)
    include_indirect_effects: bool = True
    sample_occurrence: bool = False         # Roll each candidate against its probability


class RelationshipType(str, Enum):
    DIRECT = "direct"
    INDIRECT = "indirect"


class EffectRelationship(BaseModel):
    parent_id: str
    child_id: str
    relationship_type: RelationshipType
    strength: float = Field(gt=0, le=1)
    delay: int = 0


class CascadeNetwork(BaseModel):
    primary_consequences: List[Consequence] = []
    cascading_effects: List[CascadingEffect] = []
    relationships: List[EffectRelationship] = []
    effect_levels: Dict[str, int] = {}      # Effect id -> expansion level (1-based)
    total_effects: int = 0
    max_cascade_depth: int = 0
    processing_time_ms: float = 0.0
