"""Tests for the in-memory World-Rule/State Gateway."""

from datetime import datetime

from consequence_kernel.models.world import RegionState, RuleType, WorldRule, WorldStateSnapshot
from consequence_kernel.world_state.gateway import InMemoryWorldStateGateway, StaleSnapshotError


def _make_snapshot() -> WorldStateSnapshot:
    return WorldStateSnapshot(
        timestamp=datetime.utcnow(),
        regions=[RegionState(id="r_village", name="Village", prosperity=60)],
    )


class TestGateway:
    def setup_method(self):
        self.gateway = InMemoryWorldStateGateway(snapshot=_make_snapshot())

    def test_reads_are_copies(self):
        state = self.gateway.get_current_state()
        state.regions[0].prosperity = 5

        assert self.gateway.get_current_state().regions[0].prosperity == 60

    def test_write_increments_version(self):
        state = self.gateway.get_current_state()
        state.regions[0].prosperity = 70

        result = self.gateway.update_world_state(state, expected_version=0)

        assert result.success is True
        assert result.version == 1
        assert self.gateway.version == 1
        assert self.gateway.get_current_state().regions[0].prosperity == 70

    def test_stale_write_refused(self):
        first = self.gateway.get_current_state()
        second = self.gateway.get_current_state()

        assert self.gateway.update_world_state(first, expected_version=0).success is True
        second.regions[0].prosperity = 10
        result = self.gateway.update_world_state(second, expected_version=0)

        assert result.success is False
        assert "stale" in result.error
        assert result.version == 1
        assert self.gateway.get_current_state().regions[0].prosperity == 60

    def test_unconditional_write(self):
        result = self.gateway.update_world_state(_make_snapshot())
        assert result.success is True
        assert result.version == 1

    def test_rules(self):
        rule = WorldRule(
            id="no_magic",
            name="Dead magic",
            description="Magic cannot be cast in the castle",
            type=RuleType.MAGICAL,
        )
        self.gateway.add_rule(rule)
        assert [r.id for r in self.gateway.get_world_rules()] == ["no_magic"]

        assert self.gateway.remove_rule("no_magic") is True
        assert self.gateway.remove_rule("no_magic") is False
        assert self.gateway.get_world_rules() == []


class TestStaleSnapshotError:
    def test_message(self):
        error = StaleSnapshotError(expected_version=2, current_version=5)
        assert error.expected_version == 2
        assert error.current_version == 5
        assert "version 2 is stale" in str(error)
