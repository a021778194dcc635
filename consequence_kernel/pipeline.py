"""
Consequence Pipeline — one player action, end to end.

  model response → generate → validate → expand → apply → effect graph → history

Each stage's full result is kept on the PipelineResult so callers (and the
API) can show why a consequence was dropped, merged or failed.
"""

import logging
import random
from typing import List, Optional

from pydantic import BaseModel

from consequence_kernel.audit.ledger import AuditLedger
from consequence_kernel.cascade.expander import CascadeExpander
from consequence_kernel.effects.scheduler import EffectScheduler
from consequence_kernel.effects.store import EffectHistoryStore
from consequence_kernel.generation.generator import ConsequenceGenerator
from consequence_kernel.models.butterfly import CascadeGraph, EffectHistory
from consequence_kernel.models.cascade import CascadeNetwork
from consequence_kernel.models.config import KernelConfig
from consequence_kernel.models.consequence import ActionRequest
from consequence_kernel.models.generation import ConsequenceParsingResult
from consequence_kernel.models.update import WorldStateUpdateResult
from consequence_kernel.models.validation import BatchValidationResult
from consequence_kernel.models.world import WorldRule
from consequence_kernel.validation.validator import ConsequenceValidator
from consequence_kernel.world_state.gateway import WorldStateGateway
from consequence_kernel.world_state.updater import WorldStateUpdater

logger = logging.getLogger(__name__)


class PipelineResult(BaseModel):
    action_id: str
    generation: ConsequenceParsingResult
    validation: BatchValidationResult
    cascade: CascadeNetwork
    update: WorldStateUpdateResult
    graph: Optional[CascadeGraph] = None
    effect_history: Optional[EffectHistory] = None

    @property
    def success(self) -> bool:
        return self.generation.success and self.update.success


class ConsequencePipeline:
    """Wires the generator, validator, expander and updater around one gateway."""

    def __init__(
        self,
        gateway: WorldStateGateway,
        generator: Optional[ConsequenceGenerator] = None,
        validator: Optional[ConsequenceValidator] = None,
        expander: Optional[CascadeExpander] = None,
        updater: Optional[WorldStateUpdater] = None,
        config: Optional[KernelConfig] = None,
    ):
        self.config = config or KernelConfig()
        self.gateway = gateway
        self.validator = validator or ConsequenceValidator()
        self.generator = generator or ConsequenceGenerator(
            gateway=gateway, validator=self.validator, config=self.config.generator
        )
        self.expander = expander or CascadeExpander(options=self.config.cascade)
        self.updater = updater or WorldStateUpdater(gateway=gateway, config=self.config.updater)

    @classmethod
    def from_config(
        cls,
        gateway: WorldStateGateway,
        config: KernelConfig,
        scheduler: Optional[EffectScheduler] = None,
        rng: Optional[random.Random] = None,
    ) -> "ConsequencePipeline":
        """Build a pipeline with stores at the configured paths."""
        updater = WorldStateUpdater(
            gateway=gateway,
            effect_store=EffectHistoryStore(config.effect_db_path),
            scheduler=scheduler,
            audit_ledger=AuditLedger(config.audit_db_path),
            config=config.updater,
        )
        return cls(
            gateway=gateway,
            expander=CascadeExpander(rng=rng, options=config.cascade),
            updater=updater,
            config=config,
        )

    def process_action(
        self,
        request: ActionRequest,
        response_text: str,
        action_description: Optional[str] = None,
    ) -> PipelineResult:
        """Turn one model response into applied, audited world changes."""
        generation = self.generator.generate(response_text, request)

        validation = self.validator.validate_consequences(
            generation.consequences,
            world_rules=self._world_rules(),
            parallel=self.config.parallel_validation,
        )
        valid = validation.valid_consequences

        cascade = self.expander.expand(valid)
        update = self.updater.apply_consequences(valid)

        graph = None
        history = None
        if update.success and valid:
            graph = self.expander.build_effect_graph(
                request.action_id,
                action_description or request.original_input or request.intent,
                cascade,
            )
            history = self.updater.persist_butterfly_effect(request.action_id, graph)

        logger.info(
            "Action %s: %d generated, %d valid, %d applied, %d cascading effects",
            request.action_id,
            len(generation.consequences),
            len(valid),
            len(update.applied_consequences),
            cascade.total_effects,
        )
        return PipelineResult(
            action_id=request.action_id,
            generation=generation,
            validation=validation,
            cascade=cascade,
            update=update,
            graph=graph,
            effect_history=history,
        )

    def _world_rules(self) -> List[WorldRule]:
        try:
            return self.gateway.get_world_rules()
        except Exception as e:
            logger.warning("Validating without world rules: %s", e)
            return []
