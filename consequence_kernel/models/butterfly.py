"""
Butterfly-effect models — the persisted cascade graph and what players
discover of it over time.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel


class NodeType(str, Enum):
    ACTION = "action"
    CONSEQUENCE = "consequence"
    EFFECT = "effect"


class DiscoveryMethod(str, Enum):
    DIRECT = "direct"
    INDIRECT = "indirect"
    EXPLORATION = "exploration"
    SOCIAL_INTERACTION = "social_interaction"


class EffectNode(BaseModel):
    id: str
    type: NodeType
    label: str
    layer: int = 0                          # 0 = action, 1 = consequence, 2+ = effects
    consequence_type: Optional[str] = None
    magnitude: int = 0
    duration: Optional[str] = None
    systems: List[str] = []
    regions: List[str] = []


class EffectConnection(BaseModel):
    source_id: str
    target_id: str
    strength: float = 1.0
    delay: int = 0


class CrossRegionEffect(BaseModel):
    effect_id: str
    source_region: str
    target_region: str
    travel_time: int                        # Milliseconds
    magnitude: int = 0


class EmergentOpportunity(BaseModel):
    id: str
    history_id: Optional[str] = None
    title: str
    description: str
    required_conditions: List[str] = []
    potential_outcomes: List[str] = []
    related_nodes: List[str] = []
    discovered_by: List[str] = []
    is_active: bool = True


class CascadeGraph(BaseModel):
    root_node: EffectNode
    nodes: List[EffectNode] = []
    connections: List[EffectConnection] = []
    cross_region_effects: List[CrossRegionEffect] = []
    emergent_opportunities: List[EmergentOpportunity] = []
    metadata: Dict[str, float] = {}


class EffectHistory(BaseModel):
    id: str
    original_action_id: str
    timestamp: datetime
    graph: Optional[CascadeGraph] = None
    discovered_by: List[str] = []
    achievement_unlocked: bool = False
    persistent_effects: List[str] = []      # Node ids that outlive the session


class EffectDiscoveryRecord(BaseModel):
    effect_id: str
    player_id: str
    discovery_timestamp: datetime
    discovery_method: DiscoveryMethod = DiscoveryMethod.DIRECT
    reward_claimed: bool = False


class CrossRegionEffectRecord(BaseModel):
    id: str
    effect_id: str
    history_id: str
    source_region: str
    target_region: str
    arrival_timestamp: datetime
    modified_impact: int = 0
    propagation_path: List[str] = []
    applied: bool = False
    applied_at: Optional[datetime] = None


class PersistenceOptions(BaseModel):
    include_graph: bool = True
    track_cross_region_effects: bool = True
    persist_emergent_opportunities: bool = True
