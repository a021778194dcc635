"""
Consequence Generator — turns a free-text model response into a bounded,
ranked list of typed consequences.

Behavioral Contract:
- Always returns between 1 and ``max_consequences`` consequences
- Parsing strategies are tried in order: json, structured text, plain text;
  the first one producing anything wins
- When nothing survives parsing and filtering, a single low-impact fallback
  consequence is returned and ``success`` is False
- Never raises for malformed input
- Classification is deterministic for a given text; only ids are random
"""

import json
import logging
import re
import time
import zlib
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from consequence_kernel.classification.keywords import (
    ConsequenceClassifier,
    KeywordClassifier,
)
from consequence_kernel.models.config import GeneratorConfig
from consequence_kernel.models.consequence import (
    CONSEQUENCE_TYPES,
    ActionRequest,
    CascadingEffect,
    Consequence,
    ConsequenceImpact,
    ConsequenceType,
    DurationType,
    ImpactLevel,
    consequence_score,
)
from consequence_kernel.models.generation import (
    ConsequenceParsingResult,
    ParsingMetadata,
    SourceFormat,
)
from consequence_kernel.models.validation import ValidationContext
from consequence_kernel.validation.validator import ConsequenceValidator

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)```", re.IGNORECASE)
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")
_LIST_ITEM = re.compile(r"^\s*(?:\d+\.|[-*•]|[A-Z]\.)\s*(.+)$")
_SENTENCE_END = re.compile(r"[.!?]+")

MIN_LIST_ITEM_LENGTH = 10
MIN_SENTENCE_LENGTH = 15
MAX_SENTENCES = 4
MAX_DESCRIPTION_LENGTH = 200
TEXT_CONFIDENCE = 0.7
FALLBACK_DESCRIPTION = "Action processed successfully"

INDICATOR_WORDS = [
    "result", "effect", "impact", "cause", "lead", "change", "alter",
    "affect", "influence", "trigger", "create", "destroy", "improve",
    "worsen", "increase", "decrease", "become", "transform",
]

FOLLOW_ON_TEMPLATES: Dict[str, List[str]] = {
    ConsequenceType.RELATIONSHIP.value: [
        "Word of the changed relationship spreads to nearby characters",
        "Mutual acquaintances reconsider where they stand",
        "Old grudges and debts resurface between the parties",
    ],
    ConsequenceType.COMBAT.value: [
        "Survivors spread news of the fighting to nearby settlements",
        "Local guards step up their patrols",
        "Wounded fighters seek shelter and healing",
    ],
}

STRUCTURE_CHECKS = ["structure", "world_coherence"]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def _field(item: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """First present key among camelCase / snake_case spellings."""
    for name in names:
        if name in item and item[name] is not None:
            return item[name]
    return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_type(raw: Any) -> str:
    text = str(raw or "").lower().replace(" ", "_")
    for consequence_type in CONSEQUENCE_TYPES:
        if consequence_type in text:
            return consequence_type
    return ConsequenceType.WORLD_STATE.value


def _parse_level(raw: Any) -> str:
    text = str(raw or "").lower()
    for level in ("critical", "significant", "major", "moderate"):
        if level in text:
            return level
    return ImpactLevel.MINOR.value


def _parse_duration(raw: Any) -> str:
    text = str(raw or "").lower()
    if "permanent" in text:
        return DurationType.PERMANENT.value
    if "long" in text or "extended" in text:
        return DurationType.LONG_TERM.value
    if "medium" in text:
        return DurationType.MEDIUM_TERM.value
    if "short" in text:
        return DurationType.SHORT_TERM.value
    return DurationType.TEMPORARY.value


def _string_list(raw: Any) -> Optional[List[str]]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, (list, tuple)):
        return [str(v) for v in raw]
    return None


class ConsequenceGenerator:
    """
    Heuristic consequence parser.

    Strategies are registered in order; each takes the raw text and returns
    the consequences it could extract (possibly none).
    """

    def __init__(
        self,
        gateway=None,
        validator: Optional[ConsequenceValidator] = None,
        classifier: Optional[ConsequenceClassifier] = None,
        config: Optional[GeneratorConfig] = None,
    ):
        self._gateway = gateway
        self._validator = validator or ConsequenceValidator()
        self._classifier = classifier or KeywordClassifier()
        self.config = config or GeneratorConfig()
        self._strategies: List[Tuple[SourceFormat, Callable]] = []
        self._register_default_strategies()

    def _register_default_strategies(self) -> None:
        self._strategies = [
            (SourceFormat.JSON, self._parse_json),
            (SourceFormat.STRUCTURED_TEXT, self._parse_structured_text),
            (SourceFormat.PLAIN_TEXT, self._parse_plain_text),
        ]

    def generate(
        self,
        response_text: str,
        request: ActionRequest,
        options: Optional[GeneratorConfig] = None,
    ) -> ConsequenceParsingResult:
        """Parse, filter, rank and truncate consequences from ``response_text``."""
        started = time.perf_counter()
        options = options or self.config
        now = datetime.utcnow()
        warnings: List[str] = []
        errors: List[str] = []

        parsed: List[Consequence] = []
        source_format = SourceFormat.FALLBACK
        for fmt, strategy in self._strategies:
            parsed = strategy(response_text or "", request, now, warnings)
            if parsed:
                source_format = fmt
                break

        kept = self._filter(parsed, options, errors)
        success = True
        if not kept:
            if parsed:
                logger.warning(
                    "All %d parsed consequences for action %s were filtered out",
                    len(parsed), request.action_id,
                )
            else:
                logger.warning("No consequences parsed for action %s", request.action_id)
            kept = [self._fallback(request, now)]
            source_format = SourceFormat.FALLBACK
            success = False

        warnings.extend(self._quality_warnings(kept))
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Generated %d/%d consequences for action %s via %s",
            len(kept), len(parsed), request.action_id, source_format.value,
        )
        return ConsequenceParsingResult(
            consequences=kept,
            success=success,
            warnings=warnings,
            errors=errors,
            metadata=ParsingMetadata(
                source_format=source_format,
                total_consequences=len(parsed),
                valid_consequences=len(kept),
                processing_time_ms=elapsed_ms,
            ),
        )

    # === FILTERING ===

    def _filter(
        self,
        parsed: List[Consequence],
        options: GeneratorConfig,
        errors: List[str],
    ) -> List[Consequence]:
        kept = [c for c in parsed if c.confidence >= options.min_confidence]

        context = ValidationContext(world_rules=self._world_rules(errors))
        structurally_sound = []
        for consequence in kept:
            result = self._validator.validate_consequence(
                consequence, context, checks=STRUCTURE_CHECKS
            )
            if result.is_valid:
                structurally_sound.append(consequence)
            else:
                logger.debug("Dropping %s: %s", consequence.id, "; ".join(result.errors))
        kept = structurally_sound

        if options.require_logical_consistency:
            kept = self._consistent_subset(kept)

        kept = sorted(kept, key=consequence_score, reverse=True)
        return kept[: max(1, options.max_consequences)]

    def _world_rules(self, errors: List[str]) -> list:
        if self._gateway is None:
            return []
        try:
            return self._gateway.get_world_rules()
        except Exception as e:
            logger.warning("Could not load world rules: %s", e)
            errors.append(f"World rules unavailable: {e}")
            return []

    def _consistent_subset(self, consequences: List[Consequence]) -> List[Consequence]:
        """Accept in order, skipping anything that contradicts an accepted item."""
        conflicts = self._validator.conflict_classifier
        accepted: List[Consequence] = []
        for candidate in consequences:
            if any(
                conflicts.directly_conflicts(candidate.description, other.description)
                for other in accepted
            ):
                logger.debug("Dropping %s: contradicts an earlier consequence", candidate.id)
                continue
            accepted.append(candidate)
        return accepted

    def _quality_warnings(self, consequences: List[Consequence]) -> List[str]:
        warnings = []
        for c in consequences:
            if c.confidence < 0.7:
                warnings.append(f"Low confidence consequence {c.id} ({c.confidence})")
            if len(c.description) < 20:
                warnings.append(f"Very short description for consequence {c.id}")
            if not c.cascading_effects:
                warnings.append(f"No cascading effects for consequence {c.id}")
        return warnings

    # === STRATEGIES ===

    def _parse_json(
        self, text: str, request: ActionRequest, now: datetime, warnings: List[str]
    ) -> List[Consequence]:
        fenced = _JSON_FENCE.search(text)
        if fenced:
            payload = fenced.group(1)
        else:
            bracketed = _JSON_ARRAY.search(text)
            if not bracketed:
                return []
            payload = bracketed.group(0)

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            warnings.append(f"JSON parsing failed: {e}")
            return []

        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            return []
        consequences = []
        for index, item in enumerate(data):
            if not isinstance(item, dict):
                continue
            try:
                consequences.append(self._from_mapping(item, request, now))
            except (TypeError, ValueError, OverflowError) as e:
                warnings.append(f"Skipped malformed consequence {index}: {e}")
        return consequences

    def _parse_structured_text(
        self, text: str, request: ActionRequest, now: datetime, warnings: List[str]
    ) -> List[Consequence]:
        consequences = []
        for line in text.splitlines():
            match = _LIST_ITEM.match(line)
            if not match:
                continue
            content = match.group(1).strip()
            if len(content) > MIN_LIST_ITEM_LENGTH:
                consequences.append(self._from_description(content, request, now))
        return consequences

    def _parse_plain_text(
        self, text: str, request: ActionRequest, now: datetime, warnings: List[str]
    ) -> List[Consequence]:
        consequences = []
        for sentence in _SENTENCE_END.split(text):
            sentence = sentence.strip()
            if len(sentence) <= MIN_SENTENCE_LENGTH:
                continue
            lowered = sentence.lower()
            if any(word in lowered for word in INDICATOR_WORDS):
                consequences.append(self._from_description(sentence, request, now))
            if len(consequences) >= MAX_SENTENCES:
                break
        return consequences

    # === BUILDERS ===

    def _from_mapping(
        self, item: Dict[str, Any], request: ActionRequest, now: datetime
    ) -> Consequence:
        consequence_id = str(_field(item, "id", default="") or _new_id("csq"))
        raw_impact = _field(item, "impact", default={})
        if not isinstance(raw_impact, dict):
            raw_impact = {}

        magnitude = _as_int(
            _field(raw_impact, "magnitude", default=_field(item, "magnitude", default=5)), 5
        )
        systems = _string_list(
            _field(raw_impact, "affectedSystems", "affected_systems",
                   default=_field(item, "affectedSystems", "affected_systems"))
        )
        impact = ConsequenceImpact(
            level=_parse_level(_field(raw_impact, "level", default=_field(item, "level"))),
            affected_systems=systems or [ConsequenceType.WORLD_STATE.value],
            magnitude=magnitude,
            duration=_parse_duration(
                _field(raw_impact, "duration", default=_field(item, "duration"))
            ),
            affected_characters=_string_list(
                _field(raw_impact, "affectedCharacters", "affected_characters")
            ),
            affected_locations=_string_list(
                _field(raw_impact, "affectedLocations", "affected_locations")
            ),
        )

        raw_effects = _field(item, "cascadingEffects", "cascading_effects", default=[])
        if not isinstance(raw_effects, list):
            raw_effects = []
        effects = []
        for raw_effect in raw_effects:
            if isinstance(raw_effect, dict):
                effects.append(self._effect_from_mapping(raw_effect, consequence_id, impact))

        return Consequence(
            id=consequence_id,
            action_id=request.action_id,
            type=_parse_type(_field(item, "type")),
            description=str(_field(item, "description", default="")),
            impact=impact,
            cascading_effects=effects,
            timestamp=now,
            confidence=_as_float(_field(item, "confidence", default=0.8), 0.8),
        )

    def _effect_from_mapping(
        self, raw: Dict[str, Any], parent_id: str, parent_impact: ConsequenceImpact
    ) -> CascadingEffect:
        raw_impact = _field(raw, "impact", default={})
        if not isinstance(raw_impact, dict):
            raw_impact = {}
        systems = _string_list(_field(raw_impact, "affectedSystems", "affected_systems"))
        return CascadingEffect(
            id=str(_field(raw, "id", default="") or _new_id("eff")),
            parent_consequence_id=parent_id,
            description=str(_field(raw, "description", default="")),
            delay=_as_int(_field(raw, "delay", default=0), 0),
            probability=_as_float(_field(raw, "probability", default=0.5), 0.5),
            impact=ConsequenceImpact(
                level=_parse_level(_field(raw_impact, "level")),
                affected_systems=systems or list(parent_impact.affected_systems),
                magnitude=_as_int(
                    _field(raw_impact, "magnitude", default=max(1, parent_impact.magnitude // 2)),
                    1,
                ),
                duration=_parse_duration(_field(raw_impact, "duration")),
            ),
        )

    def _from_description(
        self, description: str, request: ActionRequest, now: datetime
    ) -> Consequence:
        consequence_type = self._classifier.infer_type(description)
        level, magnitude = self._classifier.infer_impact(description)
        consequence_id = _new_id("csq")
        return Consequence(
            id=consequence_id,
            action_id=request.action_id,
            type=consequence_type,
            description=description[:MAX_DESCRIPTION_LENGTH],
            impact=ConsequenceImpact(
                level=level,
                affected_systems=self._classifier.infer_systems(description, consequence_type),
                magnitude=magnitude,
                duration=DurationType.SHORT_TERM.value,
            ),
            cascading_effects=self._follow_on_effects(
                consequence_id, consequence_type, description, magnitude
            ),
            timestamp=now,
            confidence=TEXT_CONFIDENCE,
        )

    def _follow_on_effects(
        self, parent_id: str, consequence_type: str, description: str, magnitude: int
    ) -> List[CascadingEffect]:
        templates = FOLLOW_ON_TEMPLATES.get(consequence_type)
        if not templates:
            return []
        # Stable checksum so the same text always yields the same follow-on
        choice = templates[zlib.crc32(description.encode("utf-8")) % len(templates)]
        return [
            CascadingEffect(
                id=f"{parent_id}_fx1",
                parent_consequence_id=parent_id,
                description=choice,
                delay=5000,
                probability=0.6,
                impact=ConsequenceImpact(
                    level=ImpactLevel.MINOR.value,
                    affected_systems=["social"],
                    magnitude=max(1, magnitude // 2),
                    duration=DurationType.SHORT_TERM.value,
                ),
            )
        ]

    def _fallback(self, request: ActionRequest, now: datetime) -> Consequence:
        return Consequence(
            id=_new_id("csq"),
            action_id=request.action_id,
            type=ConsequenceType.WORLD_STATE.value,
            description=FALLBACK_DESCRIPTION,
            impact=ConsequenceImpact(
                level=ImpactLevel.MINOR.value,
                affected_systems=[ConsequenceType.WORLD_STATE.value],
                magnitude=2,
                duration=DurationType.TEMPORARY.value,
            ),
            timestamp=now,
            confidence=0.5,
        )
