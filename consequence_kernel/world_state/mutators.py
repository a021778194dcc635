"""
Type-specific world-state mutators.

Each mutator edits the working snapshot in place and records exactly one
audit entry per mutation. Ids and timestamps written into the snapshot are
derived from the consequence, so replaying a batch on an identical snapshot
produces an identical result.
"""

import math
from typing import Callable, Dict, List, Optional
from uuid import NAMESPACE_URL, uuid5

from consequence_kernel.models.consequence import Consequence, ConsequenceType
from consequence_kernel.models.update import (
    AuditAction,
    AuditEntry,
    Conflict,
    ConflictSeverity,
    ConflictType,
)
from consequence_kernel.models.world import (
    CharacterRelationship,
    CharacterState,
    RegionState,
    WorldEvent,
    WorldStateSnapshot,
)

CHARACTER_VOCABULARY = ["dragon", "goblin", "villager", "merchant", "guard", "wizard", "king", "queen"]
REGION_VOCABULARY = ["village", "forest", "mountain", "river", "castle", "market", "town"]
ECONOMIC_TERMS = ["market", "trade", "shop", "merchant", "price", "goods", "supply"]

EVENT_TYPES: Dict[str, str] = {
    ConsequenceType.COMBAT.value: "combat",
    ConsequenceType.ECONOMIC.value: "economic",
    ConsequenceType.EXPLORATION.value: "discovery",
    ConsequenceType.ENVIRONMENT.value: "natural",
}


class MutationLog:
    """Collects audit entries and conflicts for one consequence."""

    def __init__(self, consequence: Consequence):
        self.consequence = consequence
        self.audit: List[AuditEntry] = []
        self.conflicts: List[Conflict] = []

    @property
    def change_count(self) -> int:
        return len(self.audit)

    def applied(self, system: str, change: str, previous=None, new=None) -> None:
        self.audit.append(AuditEntry(
            timestamp=self.consequence.timestamp,
            consequence_id=self.consequence.id,
            action=AuditAction.APPLIED,
            system=system,
            change=change,
            previous_value=previous,
            new_value=new,
        ))

    def conflict(self, conflict_type: ConflictType, severity: ConflictSeverity, description: str) -> None:
        self.conflicts.append(Conflict(
            type=conflict_type,
            consequence_id=self.consequence.id,
            description=description,
            severity=severity,
        ))


Mutator = Callable[[Consequence, WorldStateSnapshot, MutationLog], None]


def derived_id(prefix: str, *parts: str) -> str:
    return f"{prefix}_{uuid5(NAMESPACE_URL, '/'.join(parts)).hex[:12]}"


def _has(text: str, *words: str) -> bool:
    return any(w in text for w in words)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def extract_character_names(consequence: Consequence) -> List[str]:
    lowered = consequence.description.lower()
    names = [name for name in CHARACTER_VOCABULARY if name in lowered]
    for name in consequence.impact.affected_characters or []:
        if name.lower() not in names:
            names.append(name.lower())
    return names


def find_regions(state: WorldStateSnapshot, consequence: Consequence) -> List[RegionState]:
    """Regions named in the description (by vocabulary) or listed as affected."""
    lowered = consequence.description.lower()
    keys = [word for word in REGION_VOCABULARY if word in lowered]
    keys += [loc.lower() for loc in consequence.impact.affected_locations or []]
    regions: List[RegionState] = []
    for key in keys:
        for region in state.regions:
            if key in region.name.lower() and region not in regions:
                regions.append(region)
                break
    return regions


def find_or_create_character(state: WorldStateSnapshot, name: str) -> CharacterState:
    for character in state.characters:
        if name in character.name.lower():
            return character
    character = CharacterState(id=f"char_{name.replace(' ', '_')}", name=name)
    state.characters.append(character)
    return character


# === RELATIONSHIP ===

def relationship_change(consequence: Consequence) -> int:
    lowered = consequence.description.lower()
    base = consequence.impact.magnitude * consequence.confidence
    if _has(lowered, "ally", "friend"):
        return int(round(base * 5))
    if _has(lowered, "enemy", "hostile"):
        return int(round(-base * 5))
    return int(round(base * 2))


def relationship_type(description: str) -> str:
    lowered = description.lower()
    if _has(lowered, "ally", "friend"):
        return "friend"
    if _has(lowered, "enemy", "hostile"):
        return "enemy"
    if _has(lowered, "trade", "merchant"):
        return "business"
    if _has(lowered, "family", "relative"):
        return "family"
    return "neutral"


def _sentiment(strength: int) -> str:
    if strength > 0:
        return "positive"
    if strength < 0:
        return "negative"
    return "neutral"


def apply_relationship(consequence: Consequence, state: WorldStateSnapshot, log: MutationLog) -> None:
    names = extract_character_names(consequence)
    delta = relationship_change(consequence)
    for i, first_name in enumerate(names):
        for second_name in names[i + 1:]:
            first = find_or_create_character(state, first_name)
            second = find_or_create_character(state, second_name)
            edge = next((r for r in first.relationships if r.character_id == second.id), None)

            if edge is None:
                edge = CharacterRelationship(
                    character_id=second.id,
                    relationship_type=relationship_type(consequence.description),
                    strength=_clamp(delta, -100, 100),
                    history=[consequence.description],
                    last_interaction=consequence.timestamp,
                    sentiment=_sentiment(delta),
                )
                first.relationships.append(edge)
                log.applied(
                    "relationship",
                    f"Created relationship between {first_name} and {second_name}",
                    None,
                    edge.strength,
                )
                continue

            if delta == 0:
                continue
            previous = edge.strength
            if previous * delta < 0:
                log.conflict(
                    ConflictType.RELATIONSHIP_CONFLICT,
                    ConflictSeverity.MEDIUM,
                    f"Relationship between {first_name} and {second_name} reverses direction",
                )
            edge.strength = _clamp(previous + delta, -100, 100)
            edge.history.append(consequence.description)
            edge.last_interaction = consequence.timestamp
            edge.sentiment = _sentiment(edge.strength)
            log.applied(
                "relationship",
                f"Updated relationship between {first_name} and {second_name}",
                previous,
                edge.strength,
            )


# === ENVIRONMENT ===

def environment_conditions(description: str, current: str) -> str:
    lowered = description.lower()
    current = current or "normal"
    if _has(lowered, "rain", "storm"):
        return f"{current}, rainy conditions"
    if _has(lowered, "sun", "clear"):
        return f"{current}, clear weather"
    if _has(lowered, "cold", "snow"):
        return f"{current}, cold weather"
    if _has(lowered, "damage", "destruction"):
        return f"{current}, damaged environment"
    return f"{current}, changed by recent events"


def region_status(description: str, current: str) -> str:
    lowered = description.lower()
    if _has(lowered, "prosper", "thrive"):
        return "thriving"
    if _has(lowered, "damage", "destroy"):
        return "damaged"
    if _has(lowered, "peace", "calm"):
        return "peaceful"
    return current


def prosperity_change(consequence: Consequence) -> int:
    lowered = consequence.description.lower()
    magnitude = consequence.impact.magnitude
    if _has(lowered, "trade", "prosper", "growth"):
        return magnitude * 2
    if _has(lowered, "damage", "destroy", "loss"):
        return -magnitude * 3
    return magnitude


def safety_change(consequence: Consequence) -> int:
    lowered = consequence.description.lower()
    magnitude = consequence.impact.magnitude
    if _has(lowered, "safe", "peace", "calm"):
        return magnitude * 2
    if _has(lowered, "danger", "threat", "attack"):
        return -magnitude * 3
    return 0


def _bounded(region: RegionState, field: str, delta: int, log: MutationLog) -> None:
    raw = getattr(region, field) + delta
    bounded = _clamp(raw, 0, 100)
    if bounded != raw:
        log.conflict(
            ConflictType.STATE_CONFLICT,
            ConflictSeverity.LOW,
            f"{region.name} {field} clamped to {bounded}",
        )
    setattr(region, field, bounded)


def apply_environment(consequence: Consequence, state: WorldStateSnapshot, log: MutationLog) -> None:
    touches_environment = "environment" in consequence.impact.affected_systems
    for region in find_regions(state, consequence):
        previous = {
            "conditions": region.current_conditions,
            "status": region.status,
            "prosperity": region.prosperity,
            "safety": region.safety,
        }
        region.current_conditions = environment_conditions(
            consequence.description, region.current_conditions
        )
        if touches_environment:
            region.status = region_status(consequence.description, region.status)
            _bounded(region, "prosperity", prosperity_change(consequence), log)
            _bounded(region, "safety", safety_change(consequence), log)
        log.applied(
            "environment",
            f"Updated conditions in {region.name}",
            previous,
            {
                "conditions": region.current_conditions,
                "status": region.status,
                "prosperity": region.prosperity,
                "safety": region.safety,
            },
        )


# === CHARACTER ===

def character_status(description: str, current: str) -> str:
    lowered = description.lower()
    if _has(lowered, "wound", "injure"):
        return "injured"
    if _has(lowered, "heal", "recover"):
        return "recovered"
    if _has(lowered, "happy", "joy"):
        return "happy"
    return current


def character_mood(description: str, current: str) -> str:
    lowered = description.lower()
    if _has(lowered, "angry", "rage"):
        return "angry"
    if _has(lowered, "happy", "joy"):
        return "happy"
    if _has(lowered, "sad", "grief"):
        return "sad"
    if _has(lowered, "fear", "scared"):
        return "afraid"
    return current


def character_activity(description: str) -> str:
    lowered = description.lower()
    if _has(lowered, "fight", "battle"):
        return "combat"
    if _has(lowered, "trade", "buy"):
        return "trading"
    if _has(lowered, "travel", "move"):
        return "traveling"
    if _has(lowered, "rest", "sleep"):
        return "resting"
    return "active"


def apply_character(consequence: Consequence, state: WorldStateSnapshot, log: MutationLog) -> None:
    if "character" not in consequence.impact.affected_systems:
        return
    for name in extract_character_names(consequence):
        character = find_or_create_character(state, name)
        previous = {"status": character.status, "mood": character.mood}
        character.status = character_status(consequence.description, character.status)
        character.mood = character_mood(consequence.description, character.mood)
        character.current_activity = character_activity(consequence.description)
        log.applied(
            "character",
            f"Updated character {character.name}",
            previous,
            {"status": character.status, "mood": character.mood},
        )


# === WORLD STATE ===

def apply_world_state(consequence: Consequence, state: WorldStateSnapshot, log: MutationLog) -> None:
    if ConsequenceType.WORLD_STATE.value not in consequence.impact.affected_systems:
        return
    event = WorldEvent(
        id=derived_id("evt", consequence.id, "world_state"),
        name=f"Consequence: {consequence.description[:50]}...",
        description=consequence.description,
        type=EVENT_TYPES.get(consequence.type, "social"),
        timestamp=consequence.timestamp,
        affected_regions=[r.name for r in find_regions(state, consequence)],
        consequence_id=consequence.id,
    )
    state.events.append(event)
    log.applied("world_state", "Added new world event", None, event.name)


# === ECONOMIC ===

def economic_impact(consequence: Consequence) -> int:
    lowered = consequence.description.lower()
    scaled = math.floor(consequence.impact.magnitude * 1.5)
    if _has(lowered, "decline", "loss", "collapse", "shortage"):
        return -scaled
    if _has(lowered, "trade", "merchant", "market"):
        return scaled
    return consequence.impact.magnitude


def economic_feature(description: str) -> Optional[str]:
    lowered = description.lower()
    for term in ECONOMIC_TERMS:
        if term in lowered:
            return f"{term.capitalize()} activity"
    return None


def apply_economic(consequence: Consequence, state: WorldStateSnapshot, log: MutationLog) -> None:
    delta = economic_impact(consequence)
    feature = economic_feature(consequence.description)
    for region in find_regions(state, consequence):
        previous = region.prosperity
        raw = previous + delta
        region.prosperity = _clamp(raw, 0, 100)
        if region.prosperity != raw:
            log.conflict(
                ConflictType.RESOURCE_CONFLICT,
                ConflictSeverity.LOW,
                f"{region.name} prosperity change exceeds bounds",
            )
        if feature and feature not in region.notable_features:
            region.notable_features.append(feature)
        log.applied(
            "economic",
            f"Updated economic conditions in {region.name}",
            previous,
            region.prosperity,
        )

    if consequence.impact.magnitude > 7 and state.economy.trade_routes:
        lowered = consequence.description.lower()
        magnitude = consequence.impact.magnitude
        trade_delta = math.floor(magnitude * 0.8) if _has(lowered, "route", "trade") else 0
        danger_delta = math.floor(magnitude * 0.6) if _has(lowered, "danger", "attack", "bandit") else 0
        before = _route_levels(state)
        for route in state.economy.trade_routes:
            route.activity = _clamp(route.activity + trade_delta, 0, 100)
            route.danger = _clamp(route.danger + danger_delta, 0, 100)
        after = _route_levels(state)
        if before != after:
            log.applied("economic", "Updated global trade activity", before, after)


def _route_levels(state: WorldStateSnapshot) -> Dict[str, Dict[str, int]]:
    return {
        route.id: {"activity": route.activity, "danger": route.danger}
        for route in state.economy.trade_routes
    }


# === GENERIC (combat, exploration, cascading effects) ===

def apply_generic(consequence: Consequence, state: WorldStateSnapshot, log: MutationLog) -> None:
    for system in consequence.impact.affected_systems:
        event = WorldEvent(
            id=derived_id("evt", consequence.id, system),
            name=f"System Change: {system}",
            description=consequence.description,
            type=EVENT_TYPES.get(consequence.type, "social"),
            timestamp=consequence.timestamp,
            consequence_id=consequence.id,
        )
        state.events.append(event)
        log.applied(system, "Applied generic consequence", None, consequence.description)


MUTATORS: Dict[str, Mutator] = {
    ConsequenceType.RELATIONSHIP.value: apply_relationship,
    ConsequenceType.ENVIRONMENT.value: apply_environment,
    ConsequenceType.CHARACTER.value: apply_character,
    ConsequenceType.WORLD_STATE.value: apply_world_state,
    ConsequenceType.ECONOMIC.value: apply_economic,
}


def mutator_for(consequence_type: str) -> Mutator:
    return MUTATORS.get(consequence_type, apply_generic)
