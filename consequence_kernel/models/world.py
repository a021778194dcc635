"""World model — rules and the mutable snapshot consequences are applied to."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class RuleType(str, Enum):
    PHYSICS = "physics"
    SOCIAL = "social"
    MAGICAL = "magical"
    ECONOMIC = "economic"
    COMBAT = "combat"
    ENVIRONMENTAL = "environmental"


class RuleActivation(BaseModel):
    """Temporal authority — when this rule is in force."""

    always: bool = True
    schedule: Optional[str] = None          # Cron expression


class WorldRule(BaseModel):
    """A declarative world rule. Read-only to the pipeline."""

    id: str
    name: str
    description: str
    type: RuleType
    constraints: List[str] = []
    exceptions: List[str] = []              # Phrases that suspend the rule
    activation: RuleActivation = RuleActivation()


class RegionState(BaseModel):
    id: str
    name: str
    status: str = "stable"
    prosperity: int = Field(ge=0, le=100, default=50)
    safety: int = Field(ge=0, le=100, default=50)
    notable_features: List[str] = []
    current_conditions: str = "normal"


class CharacterRelationship(BaseModel):
    """Directed edge from one character to another."""

    character_id: str
    relationship_type: str = "neutral"      # friend | enemy | business | family | neutral
    strength: int = Field(ge=-100, le=100, default=0)
    history: List[str] = []
    last_interaction: Optional[datetime] = None
    sentiment: str = "neutral"


class CharacterState(BaseModel):
    id: str
    name: str
    location: str = "unknown"
    health: int = 100
    status: str = "active"
    relationships: List[CharacterRelationship] = []
    current_activity: str = "idle"
    mood: str = "neutral"


class ResourceState(BaseModel):
    id: str
    name: str
    quantity: int = 0
    price: float = 0.0


class TradeRoute(BaseModel):
    id: str
    name: str
    from_region: str
    to_region: str
    activity: int = Field(ge=0, le=100, default=50)
    danger: int = Field(ge=0, le=100, default=0)


class MarketState(BaseModel):
    id: str
    region_id: str
    demand: dict = {}
    supply: dict = {}


class EconomyState(BaseModel):
    resources: List[ResourceState] = []
    trade_routes: List[TradeRoute] = []
    markets: List[MarketState] = []


class EnvironmentState(BaseModel):
    weather: str = "clear"
    time_of_day: str = "day"
    season: str = "spring"
    magical_conditions: List[str] = []
    natural_disasters: List[str] = []


class WorldEvent(BaseModel):
    id: str
    name: str
    description: str
    type: str                               # combat | economic | discovery | natural | social
    timestamp: datetime
    affected_regions: List[str] = []
    consequence_id: Optional[str] = None


class WorldStateSnapshot(BaseModel):
    """
    The live world. Versioned so concurrent writers can detect a stale read:
    every successful write increments ``version`` by one.
    """

    timestamp: datetime
    version: int = 0
    regions: List[RegionState] = []
    characters: List[CharacterState] = []
    economy: EconomyState = EconomyState()
    environment: EnvironmentState = EnvironmentState()
    events: List[WorldEvent] = []
