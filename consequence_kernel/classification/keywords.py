"""
Keyword classifiers — the heuristic vocabulary behind generation and validation.

Both the generator and the validator talk to these through small protocols,
so a better classifier (embeddings, a tagger, another model call) can be
dropped in without touching the pipeline.
"""

import re
from typing import Dict, List, Optional, Protocol, Tuple

from consequence_kernel.models.consequence import ConsequenceType, ImpactLevel


class ConsequenceClassifier(Protocol):
    """Protocol for classifying a free-text consequence description."""

    def infer_type(self, text: str) -> str: ...

    def infer_impact(self, text: str) -> Tuple[str, int]: ...

    def infer_systems(self, text: str, consequence_type: str) -> List[str]: ...

    def matches_type(self, text: str, consequence_type: str) -> bool: ...


class ConflictClassifier(Protocol):
    """Protocol for comparing two consequence descriptions."""

    def directly_conflicts(self, first: str, second: str) -> bool: ...

    def similarity(self, first: str, second: str) -> float: ...


# Ordered: the first matching entry decides the inferred type.
TYPE_INFERENCE_KEYWORDS: List[Tuple[str, List[str]]] = [
    (ConsequenceType.RELATIONSHIP.value, ["relationship", "friend", "enemy", "ally", "alliance"]),
    (ConsequenceType.ENVIRONMENT.value, ["weather", "environment", "forest", "village"]),
    (ConsequenceType.CHARACTER.value, ["character", "person", "npc"]),
    (ConsequenceType.ECONOMIC.value, ["economy", "trade", "market", "price"]),
    (ConsequenceType.COMBAT.value, ["combat", "fight", "battle", "attack"]),
    (ConsequenceType.EXPLORATION.value, ["discover", "explore", "find"]),
]

# Vocabulary a description of each type is expected to use.
TYPE_VOCABULARY: Dict[str, List[str]] = {
    ConsequenceType.RELATIONSHIP.value: ["friend", "enemy", "ally", "relationship", "social", "trust"],
    ConsequenceType.ENVIRONMENT.value: ["weather", "environment", "forest", "village", "location", "nature"],
    ConsequenceType.CHARACTER.value: ["character", "person", "npc", "individual", "people"],
    ConsequenceType.WORLD_STATE.value: ["world", "state", "system", "global", "universal"],
    ConsequenceType.ECONOMIC.value: ["economy", "trade", "money", "price", "market", "resources"],
    ConsequenceType.COMBAT.value: ["fight", "battle", "combat", "attack", "defend", "war"],
    ConsequenceType.EXPLORATION.value: ["discover", "explore", "find", "map", "area", "region"],
}

# Systems a consequence of each type conventionally touches.
TYPE_SYSTEMS: Dict[str, List[str]] = {
    ConsequenceType.RELATIONSHIP.value: ["social", "relationship", "character"],
    ConsequenceType.ENVIRONMENT.value: ["environment", "nature", "location"],
    ConsequenceType.CHARACTER.value: ["character", "social", "relationship"],
    ConsequenceType.WORLD_STATE.value: ["world_state", "environment", "social", "economic"],
    ConsequenceType.ECONOMIC.value: ["economic", "social", "world_state"],
    ConsequenceType.COMBAT.value: ["combat", "character", "relationship"],
    ConsequenceType.EXPLORATION.value: ["world_state", "environment", "economic"],
}

LEVEL_MAGNITUDE_RANGES: Dict[str, Tuple[int, int]] = {
    ImpactLevel.MINOR.value: (1, 3),
    ImpactLevel.MODERATE.value: (4, 6),
    ImpactLevel.MAJOR.value: (7, 8),
    ImpactLevel.SIGNIFICANT.value: (9, 9),
    ImpactLevel.CRITICAL.value: (10, 10),
}

IMPACT_KEYWORDS: List[Tuple[List[str], str, int]] = [
    (["destroy", "massive", "catastrophic"], ImpactLevel.CRITICAL.value, 9),
    (["major", "significant", "dramatic"], ImpactLevel.SIGNIFICANT.value, 7),
    (["small", "minor", "slight"], ImpactLevel.MINOR.value, 2),
]

SECONDARY_SYSTEMS: List[Tuple[List[str], str]] = [
    (["village", "town", "trade"], ConsequenceType.ECONOMIC.value),
    (["forest", "environment"], ConsequenceType.ENVIRONMENT.value),
    (["character", "people"], ConsequenceType.RELATIONSHIP.value),
]

OPPOSITE_PAIRS: List[Tuple[str, str]] = [
    ("increase", "decrease"),
    ("improve", "worsen"),
    ("ally", "enemy"),
    ("friendly", "hostile"),
    ("peaceful", "violent"),
    ("open", "close"),
    ("enable", "disable"),
    ("create", "destroy"),
]

SUBJECTS: List[str] = [
    "village", "forest", "dragon", "player", "character", "npc",
    "economy", "trade", "market", "relationship", "environment",
    "weather", "combat", "magic", "resources", "buildings",
]


def tokenize(text: str) -> List[str]:
    """Lowercased whitespace tokens."""
    return text.lower().split()


def _contains_any(text: str, words: List[str]) -> bool:
    return any(word in text for word in words)


def magnitude_in_level(level: str, magnitude: int) -> Optional[bool]:
    """None when the level is unknown."""
    bounds = LEVEL_MAGNITUDE_RANGES.get(level)
    if bounds is None:
        return None
    return bounds[0] <= magnitude <= bounds[1]


def level_for_magnitude(magnitude: int) -> str:
    for level, (low, high) in LEVEL_MAGNITUDE_RANGES.items():
        if low <= magnitude <= high:
            return level
    return ImpactLevel.CRITICAL.value if magnitude > 10 else ImpactLevel.MINOR.value


class KeywordClassifier:
    """Substring-table classifier for consequence descriptions."""

    def __init__(
        self,
        type_keywords: Optional[List[Tuple[str, List[str]]]] = None,
        type_vocabulary: Optional[Dict[str, List[str]]] = None,
    ):
        self._type_keywords = type_keywords or TYPE_INFERENCE_KEYWORDS
        self._type_vocabulary = type_vocabulary or TYPE_VOCABULARY

    def infer_type(self, text: str) -> str:
        lowered = text.lower()
        for consequence_type, keywords in self._type_keywords:
            if _contains_any(lowered, keywords):
                return consequence_type
        return ConsequenceType.WORLD_STATE.value

    def infer_impact(self, text: str) -> Tuple[str, int]:
        lowered = text.lower()
        for keywords, level, magnitude in IMPACT_KEYWORDS:
            if _contains_any(lowered, keywords):
                return level, magnitude
        return ImpactLevel.MODERATE.value, 5

    def infer_systems(self, text: str, consequence_type: str) -> List[str]:
        lowered = text.lower()
        systems = [consequence_type]
        for keywords, system in SECONDARY_SYSTEMS:
            if system not in systems and _contains_any(lowered, keywords):
                systems.append(system)
        return systems

    def matches_type(self, text: str, consequence_type: str) -> bool:
        vocabulary = self._type_vocabulary.get(consequence_type)
        if not vocabulary:
            return True
        return _contains_any(text.lower(), vocabulary)


class KeywordConflictClassifier:
    """Opposite-pair + shared-subject conflict heuristic, Jaccard similarity."""

    def __init__(
        self,
        opposite_pairs: Optional[List[Tuple[str, str]]] = None,
        subjects: Optional[List[str]] = None,
    ):
        self._opposite_pairs = opposite_pairs or OPPOSITE_PAIRS
        self._subjects = subjects or SUBJECTS

    def directly_conflicts(self, first: str, second: str) -> bool:
        a = first.lower()
        b = second.lower()
        opposed = False
        for left, right in self._opposite_pairs:
            if (left in a and right in b) or (right in a and left in b):
                opposed = True
                break
        if not opposed:
            return False
        return any(subject in a and subject in b for subject in self._subjects)

    def similarity(self, first: str, second: str) -> float:
        tokens_a = set(tokenize(first))
        tokens_b = set(tokenize(second))
        union = tokens_a | tokens_b
        if not union:
            return 0.0
        return len(tokens_a & tokens_b) / len(union)


_WORD = re.compile(r"[a-z']+")


def words(text: str) -> List[str]:
    """Alphabetic word tokens, lowercased, punctuation dropped."""
    return _WORD.findall(text.lower())
