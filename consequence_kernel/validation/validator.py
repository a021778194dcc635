"""
Consequence Validator — checks consequences against world rules and internal
logic, then detects and resolves conflicts within a batch.

Behavioral Contract:
- Every consequence goes through every check; errors and warnings are aggregated
- A consequence is valid iff no check produced an error
- A check that raises is reported as an error naming the check, never propagated
- Only rules active at evaluation time (temporal authority) are enforced
- Conflict detection runs over the valid subset only, in input order
- Resolution never resurrects a consequence removed by an earlier resolution
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from croniter import croniter

from consequence_kernel.classification.keywords import (
    ConflictClassifier,
    ConsequenceClassifier,
    KeywordClassifier,
    KeywordConflictClassifier,
    TYPE_SYSTEMS,
    magnitude_in_level,
    words,
)
from consequence_kernel.models.consequence import (
    CONSEQUENCE_TYPES,
    Consequence,
    ConsequenceImpact,
    DurationType,
    ImpactLevel,
)
from consequence_kernel.models.validation import (
    BatchValidationResult,
    ConflictKind,
    ConsequenceConflict,
    ResolutionType,
    ValidationContext,
    ValidationResult,
)
from consequence_kernel.models.world import WorldRule, WorldStateSnapshot

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 10
LONG_DELAY_MS = 300_000

RULE_ANTONYMS: Dict[str, str] = {
    "cannot": "can",
    "can": "cannot",
    "impossible": "possible",
    "possible": "impossible",
    "never": "always",
    "always": "never",
    "forbidden": "allowed",
    "allowed": "forbidden",
}

IMPOSSIBLE_PHRASES: List[str] = [
    "immediately and permanently",
    "instantly and forever",
    "completely and instantly",
    "zero time infinite effect",
    "immediate permanent total",
]

CheckOutcome = Tuple[List[str], List[str]]


def is_rule_active(rule: WorldRule, current_time: datetime) -> bool:
    """Determine if a world rule is in force at ``current_time``."""
    activation = rule.activation

    if activation.always:
        return True

    if activation.schedule:
        try:
            return croniter.match(activation.schedule, current_time)
        except (ValueError, KeyError):
            # Invalid cron expression, treat as inactive
            logger.warning("Rule %s has invalid schedule %r", rule.id, activation.schedule)
            return False

    return False


def merge_consequences(first: Consequence, second: Consequence) -> Consequence:
    """Fold two redundant consequences into one, keeping the first's identity."""
    larger = first if first.impact.magnitude >= second.impact.magnitude else second
    permanent = DurationType.PERMANENT.value
    duration = (
        permanent
        if permanent in (first.impact.duration, second.impact.duration)
        else first.impact.duration
    )
    impact = ConsequenceImpact(
        level=larger.impact.level,
        affected_systems=_union(first.impact.affected_systems, second.impact.affected_systems),
        magnitude=max(first.impact.magnitude, second.impact.magnitude),
        duration=duration,
        affected_characters=_union_optional(
            first.impact.affected_characters, second.impact.affected_characters
        ),
        affected_locations=_union_optional(
            first.impact.affected_locations, second.impact.affected_locations
        ),
    )
    return Consequence(
        id=first.id,
        action_id=first.action_id,
        type=first.type,
        description=f"{first.description} and {second.description}",
        impact=impact,
        cascading_effects=first.cascading_effects + second.cascading_effects,
        timestamp=datetime.utcnow(),
        confidence=max(first.confidence, second.confidence),
    )


def _union(first: List[str], second: List[str]) -> List[str]:
    merged = list(first)
    for item in second:
        if item not in merged:
            merged.append(item)
    return merged


def _union_optional(first: Optional[List[str]], second: Optional[List[str]]) -> Optional[List[str]]:
    if first is None and second is None:
        return None
    return _union(first or [], second or [])


def _loser(first: Consequence, second: Consequence) -> Consequence:
    """Lower confidence loses; then lower magnitude; a full tie drops the second."""
    if first.confidence != second.confidence:
        return first if first.confidence < second.confidence else second
    if first.impact.magnitude != second.impact.magnitude:
        return first if first.impact.magnitude < second.impact.magnitude else second
    return second


class ConsequenceValidator:
    """
    Rule- and heuristic-based validator.

    Checks are held in a registry so callers can run a subset of them
    (the generator only needs structure and world coherence).
    """

    def __init__(
        self,
        classifier: Optional[ConsequenceClassifier] = None,
        conflict_classifier: Optional[ConflictClassifier] = None,
        max_workers: int = 4,
    ):
        self._classifier = classifier or KeywordClassifier()
        self._conflicts = conflict_classifier or KeywordConflictClassifier()
        self._max_workers = max_workers
        self._checks: Dict[str, Callable[[Consequence, ValidationContext], CheckOutcome]] = {
            "structure": self._check_structure,
            "type_consistency": self._check_type_consistency,
            "impact_logic": self._check_impact_logic,
            "world_coherence": self._check_world_coherence,
            "temporal_logic": self._check_temporal_logic,
        }

    @property
    def conflict_classifier(self) -> ConflictClassifier:
        return self._conflicts

    def validate_consequence(
        self,
        consequence: Consequence,
        context: Optional[ValidationContext] = None,
        checks: Optional[List[str]] = None,
    ) -> ValidationResult:
        """Run the named checks (all by default) and aggregate their findings."""
        context = context or ValidationContext()
        errors: List[str] = []
        warnings: List[str] = []
        details: Dict[str, bool] = {}

        for name in checks or list(self._checks):
            check_fn = self._checks[name]
            try:
                check_errors, check_warnings = check_fn(consequence, context)
            except Exception as e:
                logger.exception("Check %s raised for consequence %s", name, consequence.id)
                check_errors, check_warnings = [f"{name} check failed: {e}"], []
            errors.extend(check_errors)
            warnings.extend(check_warnings)
            details[name] = not check_errors

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            details=details,
        )

    def validate_consequences(
        self,
        consequences: List[Consequence],
        world_rules: Optional[List[WorldRule]] = None,
        current_world_state: Optional[WorldStateSnapshot] = None,
        parallel: bool = False,
        evaluated_at: Optional[datetime] = None,
    ) -> BatchValidationResult:
        """
        Validate a batch, then detect and resolve pairwise conflicts among
        the consequences that passed.
        """
        context = ValidationContext(
            world_rules=world_rules or [],
            current_world_state=current_world_state,
            evaluated_at=evaluated_at or datetime.utcnow(),
        )

        if parallel and len(consequences) > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                results = list(
                    pool.map(lambda c: self.validate_consequence(c, context), consequences)
                )
        else:
            results = [self.validate_consequence(c, context) for c in consequences]

        valid: List[Consequence] = []
        invalid: List[Consequence] = []
        validation_results: Dict[str, ValidationResult] = {}
        for consequence, result in zip(consequences, results):
            validation_results[consequence.id] = result
            if result.is_valid:
                valid.append(consequence)
            else:
                logger.debug(
                    "Consequence %s invalid: %s", consequence.id, "; ".join(result.errors)
                )
                invalid.append(consequence)

        detected = self.detect_conflicts(valid)
        conflicts = [self._resolve(valid, conflict) for conflict in detected]

        logger.info(
            "Validated %d consequences: %d valid, %d invalid, %d conflicts",
            len(consequences), len(valid), len(invalid), len(conflicts),
        )
        return BatchValidationResult(
            valid_consequences=valid,
            invalid_consequences=invalid,
            conflicts=conflicts,
            validation_results=validation_results,
        )

    # === CONFLICTS ===

    def detect_conflicts(self, consequences: List[Consequence]) -> List[ConsequenceConflict]:
        """Pairwise conflict detection. At most one conflict per pair."""
        conflicts: List[ConsequenceConflict] = []
        for i, first in enumerate(consequences):
            for second in consequences[i + 1:]:
                conflict = self._classify_pair(first, second)
                if conflict:
                    conflicts.append(conflict)
        return conflicts

    def _classify_pair(
        self, first: Consequence, second: Consequence
    ) -> Optional[ConsequenceConflict]:
        direct = self._conflicts.directly_conflicts(first.description, second.description)

        # Priority is a special case of direct, so it is tested first
        critical = ImpactLevel.CRITICAL.value
        if (
            direct
            and first.impact.level == critical
            and second.impact.level == critical
            and first.impact.magnitude > 7
            and second.impact.magnitude > 7
            and set(first.impact.affected_systems) & set(second.impact.affected_systems)
        ):
            return ConsequenceConflict(
                kind=ConflictKind.PRIORITY,
                resolution_type=ResolutionType.PRIORITIZE,
                first_id=first.id,
                second_id=second.id,
            )

        if direct:
            return ConsequenceConflict(
                kind=ConflictKind.DIRECT,
                resolution_type=ResolutionType.REMOVE_ONE,
                first_id=first.id,
                second_id=second.id,
            )

        similarity = self._conflicts.similarity(first.description, second.description)
        same_type = first.type == second.type and similarity > 0.8
        same_reach = (
            sorted(first.impact.affected_systems) == sorted(second.impact.affected_systems)
            and abs(first.impact.magnitude - second.impact.magnitude) < 2
            and similarity > 0.6
        )
        if same_type or same_reach:
            return ConsequenceConflict(
                kind=ConflictKind.REDUNDANT,
                resolution_type=ResolutionType.MERGE,
                first_id=first.id,
                second_id=second.id,
            )

        return None

    def _resolve(
        self, working: List[Consequence], conflict: ConsequenceConflict
    ) -> ConsequenceConflict:
        """Apply one resolution to the working list in place."""
        first = _find(working, conflict.first_id)
        second = _find(working, conflict.second_id)
        if first is None or second is None:
            conflict.notes = "skipped: one side already resolved"
            return conflict

        if conflict.resolution_type == ResolutionType.MERGE:
            merged = merge_consequences(first, second)
            working[working.index(first)] = merged
            working.remove(second)
            conflict.merged_id = merged.id
            conflict.removed_id = second.id
            conflict.notes = "merged redundant consequences"
        else:
            # remove_one, prioritize and modify share the same outcome
            loser = _loser(first, second)
            winner = second if loser is first else first
            working.remove(loser)
            conflict.kept_id = winner.id
            conflict.removed_id = loser.id
            conflict.notes = f"{conflict.kind.value} conflict: kept {winner.id}"

        logger.debug("Resolved %s: %s", conflict.kind.value, conflict.notes)
        return conflict

    # === CHECKS ===

    def _check_structure(self, consequence: Consequence, context: ValidationContext) -> CheckOutcome:
        errors: List[str] = []
        if len(consequence.description.strip()) < MIN_DESCRIPTION_LENGTH:
            errors.append(
                f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters"
            )
        if consequence.type not in CONSEQUENCE_TYPES:
            errors.append(f"Unknown consequence type: {consequence.type}")

        impact = consequence.impact
        if impact is None:
            errors.append("Consequence has no impact")
        else:
            if not 1 <= impact.magnitude <= 10:
                errors.append(f"Magnitude {impact.magnitude} outside 1-10")
            if magnitude_in_level(impact.level, impact.magnitude) is None:
                errors.append(f"Unknown impact level: {impact.level}")

        if not 0 <= consequence.confidence <= 1:
            errors.append(f"Confidence {consequence.confidence} outside 0-1")
        return errors, []

    def _check_type_consistency(
        self, consequence: Consequence, context: ValidationContext
    ) -> CheckOutcome:
        if self._classifier.matches_type(consequence.description, consequence.type):
            return [], []
        return [], [f"Description does not read like a {consequence.type} consequence"]

    def _check_impact_logic(
        self, consequence: Consequence, context: ValidationContext
    ) -> CheckOutcome:
        warnings: List[str] = []
        impact = consequence.impact
        if magnitude_in_level(impact.level, impact.magnitude) is False:
            warnings.append(
                f"Magnitude {impact.magnitude} does not match impact level {impact.level}"
            )
        expected = TYPE_SYSTEMS.get(consequence.type)
        if expected and not set(impact.affected_systems) & set(expected):
            warnings.append(
                f"Affected systems {impact.affected_systems} unusual for {consequence.type}"
            )
        return [], warnings

    def _check_world_coherence(
        self, consequence: Consequence, context: ValidationContext
    ) -> CheckOutcome:
        errors: List[str] = []
        description = consequence.description.lower()
        description_words = set(words(description))
        when = context.evaluated_at or datetime.utcnow()

        for rule in context.world_rules:
            if not is_rule_active(rule, when):
                continue
            rule_text = rule.description.lower()
            if "cannot" not in rule_text and "impossible" not in rule_text:
                continue
            if any(exc.lower() in description for exc in rule.exceptions):
                continue
            for token in set(words(rule_text)):
                antonym = RULE_ANTONYMS.get(token)
                if antonym and antonym in description_words:
                    errors.append(f"Violates world rule '{rule.name}': {rule.description}")
                    break

        for phrase in IMPOSSIBLE_PHRASES:
            if phrase in description:
                errors.append(f"Logically impossible phrasing: '{phrase}'")
        return errors, []

    def _check_temporal_logic(
        self, consequence: Consequence, context: ValidationContext
    ) -> CheckOutcome:
        errors: List[str] = []
        warnings: List[str] = []
        for effect in consequence.cascading_effects:
            if effect.delay < 0:
                errors.append(f"Cascading effect {effect.id} has negative delay")
            elif effect.delay > LONG_DELAY_MS:
                warnings.append(f"Cascading effect {effect.id} delay exceeds 5 minutes")
            if not 0 <= effect.probability <= 1:
                errors.append(f"Cascading effect {effect.id} probability outside 0-1")

        if (
            consequence.impact.duration == DurationType.PERMANENT.value
            and consequence.impact.magnitude > 8
        ):
            warnings.append("Permanent consequence with very high magnitude")
        return errors, warnings


def _find(consequences: List[Consequence], consequence_id: str) -> Optional[Consequence]:
    for consequence in consequences:
        if consequence.id == consequence_id:
            return consequence
    return None
