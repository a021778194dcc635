"""
End-to-end scenario: a player helps a merchant in the village.

Model response → generate → validate → expand → apply → effect graph →
effect history → cross-region arrival → discovery.
"""

import json
import random
from datetime import datetime

from consequence_kernel.models.config import KernelConfig
from consequence_kernel.models.consequence import ActionRequest
from consequence_kernel.models.generation import SourceFormat
from consequence_kernel.models.world import (
    CharacterRelationship,
    CharacterState,
    RegionState,
    WorldStateSnapshot,
)
from consequence_kernel.pipeline import ConsequencePipeline
from consequence_kernel.world_state.gateway import InMemoryWorldStateGateway

MODEL_RESPONSE = "The guard watches as you drive off the thieves.\n```json\n" + json.dumps([
    {
        "id": "csq_ally",
        "type": "relationship",
        "description": "The merchant becomes a loyal ally of the guard",
        "impact": {
            "level": "major",
            "affectedSystems": ["relationship", "social"],
            "magnitude": 8,
            "duration": "long_term",
            "affectedLocations": ["Village"],
        },
        "confidence": 0.9,
    },
    {
        "id": "csq_trade",
        "type": "economic",
        "description": "Trade in the village market flourishes",
        "impact": {
            "level": "moderate",
            "affectedSystems": ["economic"],
            "magnitude": 6,
            "affectedLocations": ["Village", "Forest"],
        },
        "confidence": 0.8,
    },
]) + "\n```"


def _make_snapshot() -> WorldStateSnapshot:
    return WorldStateSnapshot(
        timestamp=datetime.utcnow(),
        regions=[
            RegionState(id="r_village", name="Village", prosperity=75),
            RegionState(id="r_forest", name="Forest", prosperity=40),
        ],
        characters=[
            CharacterState(
                id="char_merchant",
                name="Merchant",
                relationships=[CharacterRelationship(character_id="char_guard", strength=10)],
            ),
            CharacterState(id="char_guard", name="Guard"),
        ],
    )


def _make_request() -> ActionRequest:
    return ActionRequest(
        action_id="act_help_merchant",
        player_id="player_1",
        intent="protect",
        original_input="I drive the thieves away from the merchant's stall",
    )


class _ManualScheduler:
    def __init__(self):
        self.jobs = []

    def schedule(self, delay_ms, callback, *args):
        self.jobs.append((delay_ms, callback, args))
        return f"job_{len(self.jobs)}"

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        return [callback(*args) for _, callback, args in jobs]


def _make_pipeline(gateway, scheduler, seed: int = 11) -> ConsequencePipeline:
    return ConsequencePipeline.from_config(
        gateway, KernelConfig(), scheduler=scheduler, rng=random.Random(seed)
    )


class TestHelpMerchantScenario:
    def setup_method(self):
        self.gateway = InMemoryWorldStateGateway(snapshot=_make_snapshot())
        self.scheduler = _ManualScheduler()
        self.pipeline = _make_pipeline(self.gateway, self.scheduler)

    def test_full_action(self):
        result = self.pipeline.process_action(_make_request(), MODEL_RESPONSE)

        # Generation
        assert result.generation.success is True
        assert result.generation.metadata.source_format == SourceFormat.JSON
        assert [c.id for c in result.generation.consequences] == ["csq_ally", "csq_trade"]

        # Validation
        assert len(result.validation.valid_consequences) == 2
        assert result.validation.conflicts == []

        # Cascade
        assert 0 < result.cascade.total_effects <= 4
        assert result.cascade.max_cascade_depth == 1

        # World state
        assert result.update.success is True
        assert result.success is True
        state = self.gateway.get_current_state()
        assert state.version == 1
        village = next(r for r in state.regions if r.name == "Village")
        assert village.prosperity > 75
        merchant = next(c for c in state.characters if c.id == "char_merchant")
        edge = next(r for r in merchant.relationships if r.character_id == "char_guard")
        assert edge.strength > 10

        systems = {entry.system for entry in result.update.audit_trail}
        assert {"relationship", "economic"} <= systems

        # Audit ledger mirrors the update
        ledger = self.pipeline.updater.audit_ledger
        assert ledger.count() == len(result.update.audit_trail)
        assert ledger.verify_chain_integrity() is True

    def test_effect_graph_and_history(self):
        result = self.pipeline.process_action(_make_request(), MODEL_RESPONSE)

        graph = result.graph
        assert graph.root_node.id == "act_help_merchant"
        assert graph.root_node.label == "I drive the thieves away from the merchant's stall"
        assert {"csq_ally", "csq_trade"} <= {n.id for n in graph.nodes}
        assert graph.cross_region_effects
        assert graph.emergent_opportunities

        history = result.effect_history
        assert history.original_action_id == "act_help_merchant"
        assert "csq_ally" in history.persistent_effects
        assert len(self.scheduler.jobs) == len(graph.cross_region_effects)

    def test_cross_region_arrival_and_discovery(self):
        result = self.pipeline.process_action(_make_request(), MODEL_RESPONSE)

        assert all(self.scheduler.run_all())
        forest = next(r for r in self.gateway.get_current_state().regions if r.name == "Forest")
        assert "affected by events in Village" in forest.current_conditions

        updater = self.pipeline.updater
        assert updater.record_effect_discovery("player_2", "csq_trade") is True
        histories = updater.get_effect_history(player_id="player_2")
        assert [h.id for h in histories] == [result.effect_history.id]
        assert updater.get_emergent_opportunities(region_filter="forest")

    def test_empty_response_still_resolves(self):
        result = self.pipeline.process_action(_make_request(), "")

        assert result.generation.success is False
        assert result.success is False
        assert result.update.success is True
        assert len(result.update.applied_consequences) == 1

    def test_same_input_same_world(self):
        other_gateway = InMemoryWorldStateGateway(snapshot=_make_snapshot())
        other = _make_pipeline(other_gateway, _ManualScheduler())

        self.pipeline.process_action(_make_request(), MODEL_RESPONSE)
        other.process_action(_make_request(), MODEL_RESPONSE)

        first = self.gateway.get_current_state()
        second = other_gateway.get_current_state()
        assert first.regions == second.regions
        assert [
            (c.id, [(r.character_id, r.strength) for r in c.relationships]) for c in first.characters
        ] == [
            (c.id, [(r.character_id, r.strength) for r in c.relationships]) for c in second.characters
        ]
