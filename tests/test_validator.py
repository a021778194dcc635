"""Tests for the Consequence Validator."""

from datetime import datetime
from typing import List, Optional

from consequence_kernel.models.consequence import CascadingEffect, Consequence, ConsequenceImpact
from consequence_kernel.models.validation import ConflictKind, ResolutionType, ValidationContext
from consequence_kernel.models.world import RuleActivation, RuleType, WorldRule
from consequence_kernel.validation.validator import (
    ConsequenceValidator,
    is_rule_active,
    merge_consequences,
)


def _make_consequence(
    consequence_id: str = "csq_1",
    description: str = "The merchant becomes a trusted friend",
    consequence_type: str = "relationship",
    level: str = "moderate",
    magnitude: int = 5,
    systems: Optional[List[str]] = None,
    confidence: float = 0.8,
    duration: str = "short_term",
    effects: Optional[List[CascadingEffect]] = None,
    locations: Optional[List[str]] = None,
) -> Consequence:
    return Consequence(
        id=consequence_id,
        action_id="act_1",
        type=consequence_type,
        description=description,
        impact=ConsequenceImpact(
            level=level,
            affected_systems=systems if systems is not None else ["social", "relationship"],
            magnitude=magnitude,
            duration=duration,
            affected_locations=locations,
        ),
        cascading_effects=effects or [],
        timestamp=datetime.utcnow(),
        confidence=confidence,
    )


def _make_effect(effect_id: str = "eff_1", delay: int = 1000, probability: float = 0.5) -> CascadingEffect:
    return CascadingEffect(
        id=effect_id,
        parent_consequence_id="csq_1",
        description="Word spreads through the market",
        delay=delay,
        probability=probability,
        impact=ConsequenceImpact(level="minor", affected_systems=["social"], magnitude=2),
    )


def _flight_rule(**activation) -> WorldRule:
    return WorldRule(
        id="no_flight",
        name="Grounded dragons",
        description="Dragons cannot fly in this realm",
        type=RuleType.PHYSICS,
        activation=RuleActivation(**activation) if activation else RuleActivation(),
    )


class TestSingleConsequence:
    def setup_method(self):
        self.validator = ConsequenceValidator()

    def test_valid_consequence(self):
        result = self.validator.validate_consequence(_make_consequence())
        assert result.is_valid is True
        assert result.errors == []
        assert set(result.details) == {
            "structure", "type_consistency", "impact_logic", "world_coherence", "temporal_logic",
        }
        assert all(result.details.values())

    def test_short_description(self):
        result = self.validator.validate_consequence(_make_consequence(description="Too short"))
        assert result.is_valid is False
        assert result.details["structure"] is False

    def test_unknown_type(self):
        result = self.validator.validate_consequence(_make_consequence(consequence_type="weather"))
        assert result.is_valid is False
        assert any("Unknown consequence type" in e for e in result.errors)

    def test_magnitude_out_of_range(self):
        for magnitude in (0, 11):
            result = self.validator.validate_consequence(_make_consequence(magnitude=magnitude))
            assert result.is_valid is False
            assert any("outside 1-10" in e for e in result.errors)

    def test_confidence_out_of_range(self):
        result = self.validator.validate_consequence(_make_consequence(confidence=1.5))
        assert result.is_valid is False
        assert any("Confidence" in e for e in result.errors)

    def test_unknown_level(self):
        result = self.validator.validate_consequence(_make_consequence(level="enormous"))
        assert result.is_valid is False

    def test_level_mismatch_is_only_a_warning(self):
        result = self.validator.validate_consequence(_make_consequence(level="minor", magnitude=8))
        assert result.is_valid is True
        assert any("does not match impact level" in w for w in result.warnings)

    def test_type_vocabulary_warning(self):
        result = self.validator.validate_consequence(
            _make_consequence(description="Something happens somewhere today")
        )
        assert result.is_valid is True
        assert result.details["type_consistency"] is True
        assert any("relationship consequence" in w for w in result.warnings)

    def test_unusual_systems_warning(self):
        result = self.validator.validate_consequence(_make_consequence(systems=["weather"]))
        assert result.is_valid is True
        assert any("unusual" in w for w in result.warnings)

    def test_negative_delay(self):
        result = self.validator.validate_consequence(
            _make_consequence(effects=[_make_effect(delay=-1)])
        )
        assert result.is_valid is False
        assert result.details["temporal_logic"] is False

    def test_long_delay_warns(self):
        result = self.validator.validate_consequence(
            _make_consequence(effects=[_make_effect(delay=600_000)])
        )
        assert result.is_valid is True
        assert any("exceeds 5 minutes" in w for w in result.warnings)

    def test_effect_probability_out_of_range(self):
        result = self.validator.validate_consequence(
            _make_consequence(effects=[_make_effect(probability=1.2)])
        )
        assert result.is_valid is False

    def test_permanent_high_magnitude_warns(self):
        result = self.validator.validate_consequence(
            _make_consequence(level="significant", magnitude=9, duration="permanent")
        )
        assert result.is_valid is True
        assert any("Permanent" in w for w in result.warnings)

    def test_impossible_phrasing(self):
        result = self.validator.validate_consequence(
            _make_consequence(description="The merchant becomes a friend immediately and permanently")
        )
        assert result.is_valid is False
        assert result.details["world_coherence"] is False

    def test_raising_check_becomes_error(self):
        class ExplodingClassifier:
            def matches_type(self, text, consequence_type):
                raise RuntimeError("boom")

        validator = ConsequenceValidator(classifier=ExplodingClassifier())
        result = validator.validate_consequence(_make_consequence())
        assert result.is_valid is False
        assert "type_consistency check failed: boom" in result.errors


class TestWorldRules:
    def setup_method(self):
        self.validator = ConsequenceValidator()
        self.flying = _make_consequence(
            consequence_type="combat",
            description="The dragon can fly over the battle",
            systems=["combat"],
        )

    def test_rule_violation(self):
        context = ValidationContext(world_rules=[_flight_rule()])
        result = self.validator.validate_consequence(self.flying, context)
        assert result.is_valid is False
        assert any("Grounded dragons" in e for e in result.errors)

    def test_rule_exception_suspends_rule(self):
        rule = _flight_rule()
        rule.exceptions = ["over the battle"]
        result = self.validator.validate_consequence(
            self.flying, ValidationContext(world_rules=[rule])
        )
        assert result.is_valid is True

    def test_scheduled_rule_only_enforced_when_active(self):
        # Active only on Mondays
        rule = _flight_rule(always=False, schedule="* * * * 1")
        monday = datetime(2024, 1, 1, 12, 0)
        tuesday = datetime(2024, 1, 2, 12, 0)

        on_monday = self.validator.validate_consequence(
            self.flying, ValidationContext(world_rules=[rule], evaluated_at=monday)
        )
        on_tuesday = self.validator.validate_consequence(
            self.flying, ValidationContext(world_rules=[rule], evaluated_at=tuesday)
        )
        assert on_monday.is_valid is False
        assert on_tuesday.is_valid is True

    def test_rule_activation(self):
        now = datetime(2024, 1, 1, 12, 0)
        assert is_rule_active(_flight_rule(), now) is True
        assert is_rule_active(_flight_rule(always=False), now) is False
        assert is_rule_active(_flight_rule(always=False, schedule="not a cron"), now) is False


class TestBatchValidation:
    def setup_method(self):
        self.validator = ConsequenceValidator()

    def test_partitions_valid_and_invalid(self):
        good = _make_consequence("csq_good")
        bad = _make_consequence("csq_bad", magnitude=0)

        result = self.validator.validate_consequences([good, bad])

        assert [c.id for c in result.valid_consequences] == ["csq_good"]
        assert [c.id for c in result.invalid_consequences] == ["csq_bad"]
        assert set(result.validation_results) == {"csq_good", "csq_bad"}

    def test_parallel_matches_sequential(self):
        batch = [
            _make_consequence("csq_1"),
            _make_consequence("csq_2", description="Prices rise in the market", consequence_type="economic",
                              systems=["economic"]),
            _make_consequence("csq_3", magnitude=20),
        ]
        sequential = self.validator.validate_consequences(batch)
        parallel = self.validator.validate_consequences(batch, parallel=True)

        assert [c.id for c in parallel.valid_consequences] == [c.id for c in sequential.valid_consequences]
        assert [c.id for c in parallel.invalid_consequences] == ["csq_3"]

    def test_direct_conflict_keeps_higher_confidence(self):
        enemy = _make_consequence(
            "csq_enemy", description="The village elder becomes an enemy", confidence=0.6
        )
        ally = _make_consequence(
            "csq_ally", description="The village elder becomes an ally", confidence=0.9
        )

        result = self.validator.validate_consequences([enemy, ally])

        assert [c.id for c in result.valid_consequences] == ["csq_ally"]
        assert result.invalid_consequences == []
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.kind == ConflictKind.DIRECT
        assert conflict.resolution_type == ResolutionType.REMOVE_ONE
        assert conflict.kept_id == "csq_ally"
        assert conflict.removed_id == "csq_enemy"

    def test_direct_conflict_tie_drops_second(self):
        first = _make_consequence("csq_a", description="The village elder becomes an enemy")
        second = _make_consequence("csq_b", description="The village elder becomes an ally")

        result = self.validator.validate_consequences([first, second])
        assert [c.id for c in result.valid_consequences] == ["csq_a"]

    def test_priority_conflict(self):
        first = _make_consequence(
            "csq_a", description="The dragon will destroy the village",
            consequence_type="combat", level="critical", magnitude=10, systems=["combat"],
        )
        second = _make_consequence(
            "csq_b", description="The villagers create new defenses for the village",
            consequence_type="combat", level="critical", magnitude=9, systems=["combat"],
        )

        result = self.validator.validate_consequences([first, second])

        conflict = result.conflicts[0]
        assert conflict.kind == ConflictKind.PRIORITY
        assert conflict.resolution_type == ResolutionType.PRIORITIZE
        assert conflict.kept_id == "csq_a"

    def test_redundant_consequences_merged(self):
        first = _make_consequence(
            "csq_a", description="The merchant becomes a loyal friend of the player",
            magnitude=4, confidence=0.7, locations=["Village"],
        )
        second = _make_consequence(
            "csq_b", description="The merchant becomes a loyal friend of the player today",
            magnitude=5, confidence=0.9, locations=["Market"],
        )

        result = self.validator.validate_consequences([first, second])

        assert len(result.valid_consequences) == 1
        merged = result.valid_consequences[0]
        assert merged.id == "csq_a"
        assert merged.impact.magnitude == 5
        assert merged.confidence == 0.9
        assert merged.impact.affected_locations == ["Village", "Market"]
        conflict = result.conflicts[0]
        assert conflict.kind == ConflictKind.REDUNDANT
        assert conflict.merged_id == "csq_a"
        assert conflict.removed_id == "csq_b"

    def test_resolution_skips_already_removed(self):
        enemy = _make_consequence("csq_1", description="The village elder becomes an enemy", confidence=0.5)
        ally = _make_consequence("csq_2", description="The village elder becomes an ally", confidence=0.9)
        lifelong = _make_consequence(
            "csq_3", description="The village elder becomes an ally for life", confidence=0.7
        )

        result = self.validator.validate_consequences([enemy, ally, lifelong])

        assert [c.id for c in result.valid_consequences] == ["csq_2"]
        assert len(result.conflicts) == 3
        first, second, third = result.conflicts
        assert first.removed_id == "csq_1"
        # csq_1 is already gone when its conflict with csq_3 comes up
        assert second.notes.startswith("skipped")
        assert second.removed_id is None
        assert third.kind == ConflictKind.REDUNDANT
        assert third.merged_id == "csq_2"


class TestMerge:
    def test_merge_unions_and_maximizes(self):
        first = _make_consequence(
            "csq_a", magnitude=3, level="minor", confidence=0.6, systems=["social"],
            duration="short_term",
            effects=[_make_effect("eff_a")],
        )
        second = _make_consequence(
            "csq_b", magnitude=7, level="major", confidence=0.8, systems=["social", "character"],
            duration="permanent",
            effects=[_make_effect("eff_b")],
        )

        merged = merge_consequences(first, second)

        assert merged.id == "csq_a"
        assert merged.type == first.type
        assert merged.description == f"{first.description} and {second.description}"
        assert merged.impact.level == "major"
        assert merged.impact.magnitude == 7
        assert merged.impact.duration == "permanent"
        assert merged.impact.affected_systems == ["social", "character"]
        assert merged.confidence == 0.8
        assert [e.id for e in merged.cascading_effects] == ["eff_a", "eff_b"]
