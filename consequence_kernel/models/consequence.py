"""Consequence — a typed, measured effect of a player action on the world."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class ConsequenceType(str, Enum):
    RELATIONSHIP = "relationship"
    ENVIRONMENT = "environment"
    CHARACTER = "character"
    WORLD_STATE = "world_state"
    ECONOMIC = "economic"
    COMBAT = "combat"
    EXPLORATION = "exploration"


class ImpactLevel(str, Enum):
    MINOR = "minor"               # magnitude 1-3
    MODERATE = "moderate"         # magnitude 4-6
    MAJOR = "major"               # magnitude 7-8
    SIGNIFICANT = "significant"   # magnitude 9
    CRITICAL = "critical"         # magnitude 10


class DurationType(str, Enum):
    TEMPORARY = "temporary"
    SHORT_TERM = "short_term"
    MEDIUM_TERM = "medium_term"
    LONG_TERM = "long_term"
    PERMANENT = "permanent"


CONSEQUENCE_TYPES = [t.value for t in ConsequenceType]
IMPACT_LEVELS = [lvl.value for lvl in ImpactLevel]


class ConsequenceImpact(BaseModel):
    """
    How hard and how wide a consequence hits.

    Values are deliberately unconstrained here: out-of-range magnitudes and
    unknown levels are reported by the validator, not rejected at parse time.
    """

    level: str = ImpactLevel.MINOR.value
    affected_systems: List[str] = []
    magnitude: int = 1
    duration: str = DurationType.TEMPORARY.value
    affected_characters: Optional[List[str]] = None
    affected_locations: Optional[List[str]] = None


class CascadingEffect(BaseModel):
    """A declared follow-on effect of a consequence."""

    id: str
    parent_consequence_id: str
    description: str
    delay: int = 0                          # Milliseconds after the parent
    probability: float = 1.0
    impact: ConsequenceImpact


class Consequence(BaseModel):
    """A single effect produced by interpreting a model response."""

    id: str
    action_id: str
    type: str                               # One of ConsequenceType values
    description: str
    impact: ConsequenceImpact
    cascading_effects: List[CascadingEffect] = []
    timestamp: datetime
    confidence: float = 0.8


class ActionRequest(BaseModel):
    """The player action a model response was produced for."""

    action_id: str
    player_id: str
    intent: str = ""
    original_input: str = ""


def consequence_score(consequence: Consequence) -> float:
    """Ranking score shared by the generator and the updater."""
    return (
        consequence.impact.magnitude * consequence.confidence
        + 2 * len(consequence.cascading_effects)
    )
