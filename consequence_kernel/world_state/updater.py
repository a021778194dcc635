"""
World-State Updater — applies validated consequences to the world and keeps
the butterfly-effect history.

Behavioral Contract:
- Works on a deep copy; the caller's snapshot is never mutated
- Consequences are applied in score order, each through its type's mutator
- One audit entry per mutation; a consequence that raises is marked failed
  with a ``failed`` audit entry and the batch continues (no rollback)
- applied + failed always equals the number of consequences given
- Conflict resolution is advisory: strategies are annotated, never enforced
- The updated snapshot is persisted once, compare-and-swap on its version;
  a refused or failed write makes the update unsuccessful
- Delayed writers (cross-region arrivals, deferred effects) re-read the
  current snapshot and write compare-and-swap with bounded retry
"""

import logging
import sqlite3
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from uuid import uuid4

from consequence_kernel.audit.ledger import AuditLedger
from consequence_kernel.classification.keywords import (
    ConsequenceClassifier,
    KeywordClassifier,
)
from consequence_kernel.effects.scheduler import DelayedEffectScheduler, EffectScheduler
from consequence_kernel.effects.store import EffectHistoryStore
from consequence_kernel.models.butterfly import (
    CascadeGraph,
    CrossRegionEffectRecord,
    DiscoveryMethod,
    EffectDiscoveryRecord,
    EffectHistory,
    EmergentOpportunity,
    NodeType,
    PersistenceOptions,
)
from consequence_kernel.models.config import UpdaterConfig
from consequence_kernel.models.consequence import (
    CascadingEffect,
    Consequence,
    DurationType,
    consequence_score,
)
from consequence_kernel.models.update import (
    AuditAction,
    AuditEntry,
    Conflict,
    ConflictResolution,
    ConflictSeverity,
    ConflictType,
    ResolutionStrategy,
    UpdateMetadata,
    WorldStateUpdateResult,
)
from consequence_kernel.models.world import WorldEvent, WorldStateSnapshot
from consequence_kernel.world_state.gateway import GatewayWriteResult, WorldStateGateway
from consequence_kernel.world_state.mutators import (
    MutationLog,
    apply_generic,
    derived_id,
    mutator_for,
)

logger = logging.getLogger(__name__)

PERSISTENT_MAGNITUDE = 8


class UnknownEffectError(Exception):
    """Raised when a discovery names an effect no history knows about."""

    def __init__(self, effect_id: str):
        self.effect_id = effect_id
        super().__init__(f"No effect history for {effect_id}")


def resolve_conflicts(conflicts: List[Conflict]) -> List[Conflict]:
    """Annotate each conflict with a resolution strategy. Nothing is undone."""
    for conflict in conflicts:
        if conflict.resolution is not None:
            continue
        if conflict.type == ConflictType.STATE_CONFLICT:
            if conflict.severity == ConflictSeverity.LOW:
                conflict.resolution = ConflictResolution(
                    strategy=ResolutionStrategy.OVERWRITE,
                    notes="Low severity conflict auto-resolved",
                )
            else:
                conflict.resolution = ConflictResolution(
                    strategy=ResolutionStrategy.ESCALATE,
                    notes="Requires manual review",
                )
        elif conflict.type == ConflictType.RELATIONSHIP_CONFLICT:
            conflict.resolution = ConflictResolution(
                strategy=ResolutionStrategy.MERGE,
                notes="Relationship changes merged",
            )
        elif conflict.type == ConflictType.RESOURCE_CONFLICT:
            conflict.resolution = ConflictResolution(
                strategy=ResolutionStrategy.REJECT,
                notes="Change beyond resource bounds rejected",
            )
    return conflicts


class WorldStateUpdater:
    """Applies consequences to world state and persists butterfly effects."""

    def __init__(
        self,
        gateway: WorldStateGateway,
        effect_store: Optional[EffectHistoryStore] = None,
        scheduler: Optional[EffectScheduler] = None,
        audit_ledger: Optional[AuditLedger] = None,
        config: Optional[UpdaterConfig] = None,
        classifier: Optional[ConsequenceClassifier] = None,
    ):
        self._gateway = gateway
        self._effects = effect_store or EffectHistoryStore()
        self._scheduler = scheduler or DelayedEffectScheduler()
        self._ledger = audit_ledger
        self.config = config or UpdaterConfig()
        self._classifier = classifier or KeywordClassifier()
        self._deferred_lock = threading.Lock()
        self._deferred_audit: List[AuditEntry] = []

    @property
    def effect_store(self) -> EffectHistoryStore:
        return self._effects

    @property
    def audit_ledger(self) -> Optional[AuditLedger]:
        return self._ledger

    @property
    def deferred_audit_trail(self) -> List[AuditEntry]:
        """Audit entries written by delayed arrivals and deferred effects."""
        with self._deferred_lock:
            return list(self._deferred_audit)

    # === APPLYING CONSEQUENCES ===

    def apply_consequences(
        self,
        consequences: List[Consequence],
        current_state: Optional[WorldStateSnapshot] = None,
    ) -> WorldStateUpdateResult:
        """Apply ``consequences`` to a copy of the world and persist it."""
        started = time.perf_counter()
        batch_id = f"upd_{uuid4().hex[:12]}"

        if current_state is None:
            try:
                current_state = self._gateway.get_current_state()
            except Exception as e:
                logger.exception("Could not read world state for batch %s", batch_id)
                return self._unreadable_state_result(consequences, e, started)

        working = current_state.model_copy(deep=True)
        applied: List[Consequence] = []
        failed: List[Consequence] = []
        conflicts: List[Conflict] = []
        audit: List[AuditEntry] = []
        affected_systems: List[str] = []
        deferred: List[tuple] = []

        for consequence in sorted(consequences, key=consequence_score, reverse=True):
            log = MutationLog(consequence)
            effect_logs: List[MutationLog] = []
            try:
                mutator_for(consequence.type)(consequence, working, log)
                for effect in consequence.cascading_effects:
                    if self.config.defer_cascading_effects:
                        deferred.append((effect, consequence))
                    else:
                        effect_log = MutationLog(self._effect_as_consequence(effect, consequence))
                        apply_generic(effect_log.consequence, working, effect_log)
                        effect_logs.append(effect_log)
            except Exception as e:
                logger.exception("Failed to apply consequence %s", consequence.id)
                audit.extend(log.audit)
                for effect_log in effect_logs:
                    audit.extend(effect_log.audit)
                audit.append(AuditEntry(
                    timestamp=consequence.timestamp,
                    consequence_id=consequence.id,
                    action=AuditAction.FAILED,
                    system=consequence.type,
                    change="application error",
                    new_value=str(e),
                ))
                failed.append(consequence)
                deferred = [d for d in deferred if d[1] is not consequence]
                continue

            audit.extend(log.audit)
            conflicts.extend(log.conflicts)
            for effect_log in effect_logs:
                audit.extend(effect_log.audit)
                conflicts.extend(effect_log.conflicts)
            applied.append(consequence)
            for system in consequence.impact.affected_systems:
                if system not in affected_systems:
                    affected_systems.append(system)
            logger.debug(
                "Applied %s (%s): %d changes", consequence.id, consequence.type, log.change_count
            )

        conflicts = resolve_conflicts(conflicts)

        if consequences:
            working.timestamp = max(c.timestamp for c in consequences)
        working.version = current_state.version + 1

        write = self._persist(working, current_state.version)
        success = write.success
        if not success:
            conflicts.extend(resolve_conflicts([Conflict(
                type=ConflictType.STATE_CONFLICT,
                consequence_id="save_failed",
                description=f"Failed to save updated world state: {write.error}",
                severity=ConflictSeverity.CRITICAL,
            )]))
        else:
            conflicts.extend(self._record_audit(batch_id, audit))
            for effect, parent in deferred:
                self._scheduler.schedule(effect.delay, self.apply_deferred_effect, effect, parent)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Batch %s: %d applied, %d failed, %d conflicts, persisted=%s",
            batch_id, len(applied), len(failed), len(conflicts), success,
        )
        return WorldStateUpdateResult(
            success=success,
            updated_world_state=working,
            applied_consequences=applied,
            failed_consequences=failed,
            conflicts=conflicts,
            audit_trail=audit,
            metadata=UpdateMetadata(
                update_time_ms=elapsed_ms,
                affected_systems=affected_systems,
                total_changes=sum(1 for a in audit if a.action == AuditAction.APPLIED),
            ),
        )

    def resolve_conflicts(self, conflicts: List[Conflict]) -> List[Conflict]:
        return resolve_conflicts(conflicts)

    def _effect_as_consequence(self, effect: CascadingEffect, parent: Consequence) -> Consequence:
        return Consequence(
            id=effect.id,
            action_id=parent.action_id,
            type=self._classifier.infer_type(effect.description),
            description=effect.description,
            impact=effect.impact,
            timestamp=parent.timestamp,
            confidence=effect.probability,
        )

    def _persist(self, snapshot: WorldStateSnapshot, expected_version: int) -> GatewayWriteResult:
        try:
            return self._gateway.update_world_state(snapshot, expected_version=expected_version)
        except Exception as e:
            logger.exception("World-state write raised")
            return GatewayWriteResult(success=False, error=str(e))

    def _record_audit(self, batch_id: str, entries: List[AuditEntry]) -> List[Conflict]:
        if self._ledger is None or not entries:
            return []
        try:
            self._ledger.append_batch(batch_id, entries)
        except sqlite3.Error as e:
            logger.exception("Audit ledger write failed for batch %s", batch_id)
            return resolve_conflicts([Conflict(
                type=ConflictType.STATE_CONFLICT,
                consequence_id="audit_failed",
                description=f"Audit ledger write failed: {e}",
                severity=ConflictSeverity.HIGH,
            )])
        return []

    def _unreadable_state_result(
        self, consequences: List[Consequence], error: Exception, started: float
    ) -> WorldStateUpdateResult:
        return WorldStateUpdateResult(
            success=False,
            updated_world_state=WorldStateSnapshot(timestamp=datetime.utcnow()),
            failed_consequences=list(consequences),
            conflicts=resolve_conflicts([Conflict(
                type=ConflictType.STATE_CONFLICT,
                consequence_id="update_failed",
                description=str(error),
                severity=ConflictSeverity.CRITICAL,
            )]),
            audit_trail=[
                AuditEntry(
                    timestamp=c.timestamp,
                    consequence_id=c.id,
                    action=AuditAction.FAILED,
                    system=c.type,
                    change="world state unavailable",
                    new_value=str(error),
                )
                for c in consequences
            ],
            metadata=UpdateMetadata(update_time_ms=(time.perf_counter() - started) * 1000),
        )

    # === DELAYED WRITERS ===

    def _compare_and_swap(
        self, label: str, mutate: Callable[[WorldStateSnapshot], List[AuditEntry]]
    ) -> bool:
        """Read-modify-write against the live snapshot, retrying on a stale version."""
        for attempt in range(1, self.config.cas_retry_limit + 1):
            state = self._gateway.get_current_state()
            expected = state.version
            entries = mutate(state)
            state.version = expected + 1
            write = self._gateway.update_world_state(state, expected_version=expected)
            if write.success:
                with self._deferred_lock:
                    self._deferred_audit.extend(entries)
                self._record_audit(f"dly_{uuid4().hex[:12]}", entries)
                return True
            logger.debug("%s lost compare-and-swap on attempt %d", label, attempt)
        logger.warning("%s abandoned after %d attempts", label, self.config.cas_retry_limit)
        return False

    def apply_deferred_effect(self, effect: CascadingEffect, parent: Consequence) -> bool:
        """Apply one cascading effect to the live world after its delay."""
        consequence = self._effect_as_consequence(effect, parent)

        def mutate(state: WorldStateSnapshot) -> List[AuditEntry]:
            log = MutationLog(consequence)
            apply_generic(consequence, state, log)
            return log.audit

        return self._compare_and_swap(f"Deferred effect {effect.id}", mutate)

    def apply_cross_region_effect(self, record_id: str) -> bool:
        """Land a cross-region ripple on its target region."""
        record = self._effects.get_cross_region(record_id)
        if record is None or record.applied:
            return False

        def mutate(state: WorldStateSnapshot) -> List[AuditEntry]:
            target = record.target_region.lower()
            region = next((r for r in state.regions if target in r.name.lower()), None)
            if region is None:
                return []
            previous = region.current_conditions
            region.current_conditions = (
                f"{previous or 'normal'}, affected by events in {record.source_region}"
            )
            event = WorldEvent(
                id=derived_id("evt", record.id, "arrival"),
                name=f"Ripple from {record.source_region}",
                description=(
                    f"Effects of events in {record.source_region} reach {region.name}"
                ),
                type="social",
                timestamp=record.arrival_timestamp,
                affected_regions=[region.name],
                consequence_id=record.effect_id,
            )
            state.events.append(event)
            return [AuditEntry(
                timestamp=record.arrival_timestamp,
                consequence_id=record.effect_id,
                action=AuditAction.APPLIED,
                system="environment",
                change=f"Cross-region effect arrived in {region.name}",
                previous_value=previous,
                new_value=region.current_conditions,
            )]

        landed = self._compare_and_swap(f"Cross-region effect {record.id}", mutate)
        if landed:
            self._effects.mark_cross_region_applied(record.id, datetime.utcnow())
            logger.info(
                "Cross-region effect %s arrived in %s", record.effect_id, record.target_region
            )
        return landed

    # === BUTTERFLY EFFECTS ===

    def persist_butterfly_effect(
        self,
        action_id: str,
        graph: CascadeGraph,
        options: Optional[PersistenceOptions] = None,
    ) -> EffectHistory:
        """Store an effect graph and schedule its cross-region arrivals."""
        options = options or PersistenceOptions()
        now = datetime.utcnow()
        history = EffectHistory(
            id=f"hist_{uuid4().hex[:12]}",
            original_action_id=action_id,
            timestamp=now,
            graph=graph if options.include_graph else None,
            persistent_effects=[
                node.id
                for node in graph.nodes
                if node.type != NodeType.ACTION
                and (
                    node.duration == DurationType.PERMANENT.value
                    or node.magnitude >= PERSISTENT_MAGNITUDE
                )
            ],
        )
        self._effects.save_history(history)

        if options.persist_emergent_opportunities:
            for opportunity in graph.emergent_opportunities:
                stored = opportunity.model_copy(deep=True)
                stored.history_id = history.id
                self._effects.save_opportunity(stored)

        if options.track_cross_region_effects:
            for effect in graph.cross_region_effects:
                record = CrossRegionEffectRecord(
                    id=f"xre_{uuid4().hex[:12]}",
                    effect_id=effect.effect_id,
                    history_id=history.id,
                    source_region=effect.source_region,
                    target_region=effect.target_region,
                    arrival_timestamp=now + timedelta(milliseconds=effect.travel_time),
                    modified_impact=effect.magnitude,
                    propagation_path=[effect.source_region, effect.target_region],
                )
                self._effects.save_cross_region(record)
                delay = int(effect.travel_time * self.config.travel_time_scale)
                self._scheduler.schedule(delay, self.apply_cross_region_effect, record.id)

        logger.info(
            "Persisted effect history %s for action %s (%d persistent, %d cross-region)",
            history.id, action_id, len(history.persistent_effects),
            len(graph.cross_region_effects) if options.track_cross_region_effects else 0,
        )
        return history

    def record_effect_discovery(
        self,
        player_id: str,
        effect_id: str,
        method: DiscoveryMethod = DiscoveryMethod.DIRECT,
    ) -> bool:
        """
        Record that ``player_id`` discovered ``effect_id``.

        Returns False when the player had already discovered it. Raises
        UnknownEffectError when no history refers to the effect.
        """
        histories = self._effects.find_histories_for_effect(effect_id)
        if not histories:
            raise UnknownEffectError(effect_id)

        newly_recorded = self._effects.record_discovery(EffectDiscoveryRecord(
            effect_id=effect_id,
            player_id=player_id,
            discovery_timestamp=datetime.utcnow(),
            discovery_method=method,
        ))
        if not newly_recorded:
            logger.debug("Player %s already discovered %s", player_id, effect_id)
            return False

        for history in histories:
            if player_id in history.discovered_by:
                continue
            history.discovered_by.append(player_id)
            if len(history.discovered_by) >= self.config.achievement_threshold:
                if not history.achievement_unlocked:
                    logger.info("Achievement unlocked for effect history %s", history.id)
                history.achievement_unlocked = True
            self._effects.save_history(history)
        return True

    def get_effect_history(
        self,
        action_id: Optional[str] = None,
        player_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[EffectHistory]:
        """Effect histories, newest first."""
        histories = self._effects.list_histories(action_id)
        if player_id:
            histories = [h for h in histories if player_id in h.discovered_by]
        return histories[offset: offset + limit]

    def get_emergent_opportunities(
        self,
        player_id: Optional[str] = None,
        region_filter: Optional[str] = None,
    ) -> List[EmergentOpportunity]:
        """Active opportunities, optionally unseen by a player and tied to a region."""
        opportunities = [o for o in self._effects.list_opportunities() if o.is_active]
        if player_id:
            opportunities = [o for o in opportunities if player_id not in o.discovered_by]
        if region_filter:
            region = region_filter.lower()
            opportunities = [
                o for o in opportunities
                if any(region in condition.lower() for condition in o.required_conditions)
            ]
        return opportunities
