"""
Cascade Expander — grows declared consequences into a bounded network of
follow-on effects, and lays that network out as a butterfly-effect graph.

Behavioral Contract:
- Depth never exceeds ``max_cascading_levels``
- No effect with probability below ``probability_threshold`` is kept
- At most ``max_effects_per_level`` effects per level, across all parents
- Every effect is reachable from a primary consequence via ``relationships``
- All randomness (delay jitter, wording, optional sampling) comes from the
  injected ``random.Random``; a seeded expander is reproducible
"""

import logging
import math
import random
import time
from typing import Dict, List, Optional, Tuple
from uuid import NAMESPACE_URL, uuid4, uuid5

from consequence_kernel.classification.keywords import (
    ConsequenceClassifier,
    KeywordClassifier,
)
from consequence_kernel.models.butterfly import (
    CascadeGraph,
    CrossRegionEffect,
    EffectConnection,
    EffectNode,
    EmergentOpportunity,
    NodeType,
)
from consequence_kernel.models.cascade import (
    CascadeNetwork,
    CascadeOptions,
    EffectRelationship,
    RelationshipType,
)
from consequence_kernel.models.consequence import (
    CascadingEffect,
    Consequence,
    ConsequenceImpact,
    DurationType,
    ImpactLevel,
)

logger = logging.getLogger(__name__)


class WorldSystem:
    """A node in the fixed world-system influence table."""

    def __init__(self, system_id: str, name: str, connected: List[str], influence: Dict[str, float]):
        self.id = system_id
        self.name = name
        self.connected = connected
        self.influence = influence


WORLD_SYSTEMS: Dict[str, WorldSystem] = {
    s.id: s
    for s in [
        WorldSystem(
            "social", "Social System",
            ["relationship", "character", "economic", "political"],
            {"relationship": 0.8, "character": 0.9, "economic": 0.6, "political": 0.7, "environment": 0.2},
        ),
        WorldSystem(
            "environment", "Environment System",
            ["nature", "weather", "location", "resources"],
            {"nature": 0.9, "weather": 0.7, "location": 0.8, "resources": 0.6, "social": 0.3},
        ),
        WorldSystem(
            "economic", "Economic System",
            ["trade", "market", "resources", "social"],
            {"trade": 0.8, "market": 0.7, "resources": 0.6, "social": 0.5, "political": 0.4},
        ),
        WorldSystem(
            "world_state", "World State System",
            ["social", "economic", "environment", "political"],
            {"social": 0.4, "economic": 0.3, "environment": 0.3, "political": 0.4, "character": 0.5},
        ),
        WorldSystem(
            "relationship", "Relationship System",
            ["social", "character", "family"],
            {"social": 0.9, "character": 0.8, "family": 0.7, "economic": 0.3},
        ),
        WorldSystem(
            "character", "Character System",
            ["social", "relationship", "economic"],
            {"social": 0.8, "relationship": 0.8, "economic": 0.4, "political": 0.3},
        ),
        WorldSystem(
            "combat", "Combat System",
            ["character", "relationship", "social", "economic"],
            {"character": 0.9, "relationship": 0.7, "social": 0.6, "economic": 0.4},
        ),
        WorldSystem(
            "exploration", "Exploration System",
            ["world_state", "environment", "economic"],
            {"world_state": 0.6, "environment": 0.5, "economic": 0.4, "social": 0.3},
        ),
    ]
}

# Systems a consequence type drags in beyond its declared affected systems
TYPE_RELATED_SYSTEMS: Dict[str, List[str]] = {
    "relationship": ["social", "character"],
    "environment": ["nature", "weather", "location"],
    "character": ["social", "relationship"],
    "world_state": ["social", "economic", "environment"],
    "economic": ["social", "trade", "market"],
    "combat": ["character", "relationship", "social"],
    "exploration": ["world_state", "environment", "economic"],
}

IMPACT_ADJECTIVES: Dict[str, List[str]] = {
    "minor": ["slightly", "a little", "marginally"],
    "moderate": ["moderately", "notably", "significantly"],
    "major": ["strongly", "heavily", "intensely"],
    "significant": ["very", "extremely", "highly"],
    "critical": ["critically", "severely", "dramatically"],
}

REGION_COORDINATES: Dict[str, Tuple[int, int]] = {
    "village": (0, 0),
    "forest": (5, 3),
    "mountain": (-3, 7),
    "river": (4, -2),
    "castle": (-2, 1),
    "market": (2, -1),
    "town": (3, 2),
}

_LEVEL_ORDER = [lvl.value for lvl in ImpactLevel]
_DURATION_ORDER = [d.value for d in DurationType]

MIN_CANDIDATE_PROBABILITY = 0.1
SIGNIFICANT_INFLUENCE = 0.3
INDIRECT_PROBABILITY_FACTOR = 0.4
INDIRECT_STRENGTH_FACTOR = 0.5


def reduce_level(level: str) -> str:
    if level in _LEVEL_ORDER and _LEVEL_ORDER.index(level) > 0:
        return _LEVEL_ORDER[_LEVEL_ORDER.index(level) - 1]
    return ImpactLevel.MINOR.value


def reduce_duration(duration: str) -> str:
    if duration in _DURATION_ORDER and _DURATION_ORDER.index(duration) > 0:
        return _DURATION_ORDER[_DURATION_ORDER.index(duration) - 1]
    return DurationType.TEMPORARY.value


def region_coordinates(region: str) -> Tuple[int, int]:
    lowered = region.lower()
    for name, coords in REGION_COORDINATES.items():
        if name in lowered:
            return coords
    return (0, 0)


def travel_time_ms(source_region: str, target_region: str) -> int:
    """One second of travel per grid unit between two regions."""
    x1, y1 = region_coordinates(source_region)
    x2, y2 = region_coordinates(target_region)
    return int(round(math.hypot(x2 - x1, y2 - y1) * 1000))


def _derived_id(prefix: str, *parts: str) -> str:
    return f"{prefix}_{uuid5(NAMESPACE_URL, '/'.join(parts)).hex[:12]}"


class _Candidate:
    """An effect considered for a level, with the edge that would reach it."""

    def __init__(self, effect: CascadingEffect, parent_id: str,
                 relationship_type: RelationshipType, strength: float):
        self.effect = effect
        self.parent_id = parent_id
        self.relationship_type = relationship_type
        self.strength = strength


class CascadeExpander:
    """Level-by-level cascade expansion over the world-system influence table."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        classifier: Optional[ConsequenceClassifier] = None,
        options: Optional[CascadeOptions] = None,
    ):
        self._rng = rng or random.Random()
        self._classifier = classifier or KeywordClassifier()
        self.options = options or CascadeOptions()

    def expand(
        self,
        consequences: List[Consequence],
        options: Optional[CascadeOptions] = None,
    ) -> CascadeNetwork:
        """Expand ``consequences`` into a cascade network."""
        started = time.perf_counter()
        options = options or self.options
        network = CascadeNetwork(primary_consequences=list(consequences))

        # (node id, type, impact, root consequence id)
        parents: List[Tuple[str, str, ConsequenceImpact, str]] = [
            (c.id, c.type, c.impact, c.id) for c in consequences
        ]
        level = 1
        while parents and level <= options.max_cascading_levels:
            candidates: List[_Candidate] = []
            for parent_id, parent_type, parent_impact, root_id in parents:
                direct = self._direct_candidates(parent_id, parent_type, parent_impact, root_id, level)
                candidates.extend(direct)
                if options.include_indirect_effects and level < options.max_cascading_levels:
                    passing = [c for c in direct if c.effect.probability >= options.probability_threshold]
                    candidates.extend(self._indirect_candidates(passing, level))

            kept = [c for c in candidates if c.effect.probability >= options.probability_threshold]
            if options.sample_occurrence:
                kept = [c for c in kept if self._rng.random() < c.effect.probability]
            kept = sorted(kept, key=lambda c: c.effect.probability, reverse=True)
            kept = kept[: options.max_effects_per_level]

            if not kept:
                break

            next_parents = []
            for candidate in kept:
                effect = candidate.effect
                network.cascading_effects.append(effect)
                network.effect_levels[effect.id] = level
                network.relationships.append(
                    EffectRelationship(
                        parent_id=candidate.parent_id,
                        child_id=effect.id,
                        relationship_type=candidate.relationship_type,
                        strength=candidate.strength,
                        delay=effect.delay,
                    )
                )
                next_parents.append((
                    effect.id,
                    self._effect_type(effect),
                    effect.impact,
                    effect.parent_consequence_id,
                ))
            logger.debug("Cascade level %d kept %d of %d candidates", level, len(kept), len(candidates))
            network.max_cascade_depth = level
            parents = next_parents
            level += 1

        network.total_effects = len(network.cascading_effects)
        network.processing_time_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Cascade expanded %d consequences into %d effects, depth %d",
            len(consequences), network.total_effects, network.max_cascade_depth,
        )
        return network

    def _effect_type(self, effect: CascadingEffect) -> str:
        for system in effect.impact.affected_systems:
            if system in TYPE_RELATED_SYSTEMS:
                return system
        return self._classifier.infer_type(effect.description)

    def _influenced_systems(self, parent_type: str, impact: ConsequenceImpact) -> List[WorldSystem]:
        system_ids: List[str] = []
        for system_id in list(impact.affected_systems) + TYPE_RELATED_SYSTEMS.get(parent_type, []):
            if system_id in WORLD_SYSTEMS and system_id not in system_ids:
                system_ids.append(system_id)
        return [WORLD_SYSTEMS[s] for s in system_ids]

    def _direct_candidates(
        self,
        parent_id: str,
        parent_type: str,
        parent_impact: ConsequenceImpact,
        root_id: str,
        level: int,
    ) -> List[_Candidate]:
        candidates = []
        for system in self._influenced_systems(parent_type, parent_impact):
            for target_id, factor in system.influence.items():
                if factor <= SIGNIFICANT_INFLUENCE:
                    continue
                probability = min(0.8, factor * 0.6) / level
                if probability < MIN_CANDIDATE_PROBABILITY:
                    continue
                impact = ConsequenceImpact(
                    level=reduce_level(parent_impact.level),
                    affected_systems=[target_id],
                    magnitude=max(1, math.floor(parent_impact.magnitude * factor / (1 + level * 0.5))),
                    duration=reduce_duration(parent_impact.duration),
                )
                effect = CascadingEffect(
                    id=_derived_id("eff", parent_id, str(level), system.id, target_id),
                    parent_consequence_id=root_id,
                    description=self._describe(system, target_id, impact),
                    delay=int(2000 + level * 1000 + self._rng.random() * 3000),
                    probability=probability,
                    impact=impact,
                )
                candidates.append(
                    _Candidate(effect, parent_id, RelationshipType.DIRECT, probability)
                )
        return candidates

    def _indirect_candidates(self, direct: List[_Candidate], level: int) -> List[_Candidate]:
        candidates = []
        for candidate in direct:
            source = candidate.effect
            seen = set()
            for system_id in source.impact.affected_systems:
                system = WORLD_SYSTEMS.get(system_id)
                if system is None or system_id in seen:
                    continue
                seen.add(system_id)
                for connected_id in system.connected:
                    connected = WORLD_SYSTEMS.get(connected_id)
                    if connected is None:
                        continue
                    probability = source.probability * INDIRECT_PROBABILITY_FACTOR
                    effect = CascadingEffect(
                        id=_derived_id("eff", source.id, "indirect", connected.id),
                        parent_consequence_id=source.parent_consequence_id,
                        description=self._rng.choice([
                            f"Indirectly affects the {connected.name} through system connections",
                            f"The {connected.name} experiences secondary effects",
                            f"Ripple effects reach the {connected.name}",
                        ]),
                        delay=int(source.delay + 2000 + self._rng.random() * 5000),
                        probability=probability,
                        impact=ConsequenceImpact(
                            level=reduce_level(source.impact.level),
                            affected_systems=[connected.id],
                            magnitude=max(1, source.impact.magnitude - 2),
                            duration=reduce_duration(source.impact.duration),
                        ),
                    )
                    candidates.append(_Candidate(
                        effect,
                        candidate.parent_id,
                        RelationshipType.INDIRECT,
                        probability * INDIRECT_STRENGTH_FACTOR,
                    ))
        return candidates

    def _describe(self, source: WorldSystem, target_id: str, impact: ConsequenceImpact) -> str:
        target = WORLD_SYSTEMS.get(target_id)
        target_name = target.name if target else f"{target_id} system"
        adjective = self._rng.choice(IMPACT_ADJECTIVES.get(impact.level, IMPACT_ADJECTIVES["moderate"]))
        return self._rng.choice([
            f"{adjective.capitalize()} affects the {target_name}",
            f"The {source.name} {adjective} influences the {target_name}",
            f"Creates {adjective} changes in the {target_name}",
            f"The {target_name} responds {adjective} to these changes",
        ])

    # === GRAPH ===

    def build_effect_graph(
        self,
        action_id: str,
        action_description: str,
        network: CascadeNetwork,
    ) -> CascadeGraph:
        """Lay a cascade network out as a layered butterfly-effect graph."""
        root = EffectNode(
            id=action_id,
            type=NodeType.ACTION,
            label=action_description,
            layer=0,
        )
        nodes: List[EffectNode] = []
        connections: List[EffectConnection] = []
        regions_by_consequence: Dict[str, List[str]] = {}

        for consequence in network.primary_consequences:
            regions = list(consequence.impact.affected_locations or [])
            regions_by_consequence[consequence.id] = regions
            nodes.append(EffectNode(
                id=consequence.id,
                type=NodeType.CONSEQUENCE,
                label=consequence.description,
                layer=1,
                consequence_type=consequence.type,
                magnitude=consequence.impact.magnitude,
                duration=consequence.impact.duration,
                systems=[consequence.type],
                regions=regions,
            ))
            connections.append(EffectConnection(source_id=action_id, target_id=consequence.id))

        for effect in network.cascading_effects:
            nodes.append(EffectNode(
                id=effect.id,
                type=NodeType.EFFECT,
                label=effect.description,
                layer=1 + network.effect_levels.get(effect.id, 1),
                magnitude=effect.impact.magnitude,
                duration=effect.impact.duration,
                systems=list(effect.impact.affected_systems),
                regions=regions_by_consequence.get(effect.parent_consequence_id, []),
            ))

        for relationship in network.relationships:
            connections.append(EffectConnection(
                source_id=relationship.parent_id,
                target_id=relationship.child_id,
                strength=relationship.strength,
                delay=relationship.delay,
            ))

        graph = CascadeGraph(
            root_node=root,
            nodes=[root] + nodes,
            connections=connections,
            cross_region_effects=self._cross_region_effects(nodes),
            emergent_opportunities=self._emergent_opportunities(nodes),
            metadata={
                "total_nodes": float(len(nodes) + 1),
                "total_connections": float(len(connections)),
                "max_depth": float(max([n.layer for n in nodes], default=0)),
            },
        )
        logger.debug(
            "Built effect graph for %s: %d nodes, %d cross-region effects",
            action_id, len(graph.nodes), len(graph.cross_region_effects),
        )
        return graph

    def _cross_region_effects(self, nodes: List[EffectNode]) -> List[CrossRegionEffect]:
        effects = []
        for node in nodes:
            if len(node.regions) < 2:
                continue
            source = node.regions[0]
            for target in node.regions[1:]:
                effects.append(CrossRegionEffect(
                    effect_id=node.id,
                    source_region=source,
                    target_region=target,
                    travel_time=travel_time_ms(source, target),
                    magnitude=node.magnitude,
                ))
        return effects

    def _emergent_opportunities(self, nodes: List[EffectNode]) -> List[EmergentOpportunity]:
        opportunities = []
        for i, first in enumerate(nodes):
            for second in nodes[i + 1:]:
                opportunity = _complementary_opportunity(first, second)
                if opportunity:
                    opportunities.append(opportunity)
        return opportunities


def _complementary_opportunity(first: EffectNode, second: EffectNode) -> Optional[EmergentOpportunity]:
    def pairs(a: str, b: str) -> bool:
        return (a in first.systems and b in second.systems) or (b in first.systems and a in second.systems)

    regions = []
    for region in first.regions + second.regions:
        if region not in regions:
            regions.append(region)

    if pairs("economic", "social"):
        return EmergentOpportunity(
            id=f"opp_{uuid4().hex[:12]}",
            title="Market Social Event",
            description="Economic and social changes create opportunity for community gathering",
            required_conditions=["Economic stability", "Social harmony"] + regions,
            potential_outcomes=["Increased prosperity", "Improved relationships"],
            related_nodes=[first.id, second.id],
        )
    if pairs("environment", "exploration"):
        return EmergentOpportunity(
            id=f"opp_{uuid4().hex[:12]}",
            title="Hidden Discovery",
            description="Environmental changes reveal new areas to explore",
            required_conditions=["Environmental change", "Curiosity"] + regions,
            potential_outcomes=["New locations", "Rare resources"],
            related_nodes=[first.id, second.id],
        )
    return None
