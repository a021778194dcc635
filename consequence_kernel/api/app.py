"""
Consequence Kernel API — FastAPI endpoints.

Exposes the pipeline via a REST API for:
- Consequence generation and validation
- World state and rule inspection
- Applying consequences and processing whole actions
- Effect history, discoveries and emergent opportunities
- Audit ledger verification
- Updater configuration
"""

import random
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ValidationError

from consequence_kernel.config import configure_logging, load_config
from consequence_kernel.effects.scheduler import EffectScheduler
from consequence_kernel.models.butterfly import DiscoveryMethod
from consequence_kernel.models.config import GeneratorConfig, KernelConfig, UpdaterConfig
from consequence_kernel.models.consequence import ActionRequest, Consequence
from consequence_kernel.models.world import WorldRule, WorldStateSnapshot
from consequence_kernel.pipeline import ConsequencePipeline
from consequence_kernel.world_state.gateway import InMemoryWorldStateGateway, WorldStateGateway
from consequence_kernel.world_state.updater import UnknownEffectError


# --- Request/Response Models ---

class ActionPayload(BaseModel):
    response_text: str
    action_id: Optional[str] = None
    player_id: str = "api_user"
    intent: str = ""
    original_input: str = ""
    action_description: Optional[str] = None


class GenerateRequest(ActionPayload):
    options: Optional[GeneratorConfig] = None


class ConsequenceBatchRequest(BaseModel):
    consequences: List[dict]
    parallel: bool = False


class DiscoveryRequest(BaseModel):
    player_id: str
    method: DiscoveryMethod = DiscoveryMethod.DIRECT


def _action_request(payload: ActionPayload) -> ActionRequest:
    return ActionRequest(
        action_id=payload.action_id or f"act_{uuid4().hex[:12]}",
        player_id=payload.player_id,
        intent=payload.intent,
        original_input=payload.original_input,
    )


def _parse_consequences(raw: List[dict]) -> List[Consequence]:
    try:
        return [Consequence.model_validate(c) for c in raw]
    except ValidationError as e:
        raise HTTPException(422, f"Malformed consequence: {e.errors()[0]['msg']}")


# --- Application Factory ---

@asynccontextmanager
async def _lifespan(app: FastAPI):
    configure_logging(app.state.config.log_level)
    yield


def create_app(
    gateway: Optional[WorldStateGateway] = None,
    config: Optional[KernelConfig] = None,
    scheduler: Optional[EffectScheduler] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Consequence Kernel API",
        description="Living-world consequence processing pipeline",
        version="0.1.0-alpha",
        lifespan=_lifespan,
    )

    # Initialize components
    gw = gateway or InMemoryWorldStateGateway()
    cfg = config or KernelConfig()
    pipeline = ConsequencePipeline.from_config(gw, cfg, scheduler=scheduler, rng=rng)
    updater = pipeline.updater
    ledger = updater.audit_ledger

    # Store components on app state for access in endpoints
    app.state.gateway = gw
    app.state.config = cfg
    app.state.pipeline = pipeline

    # === CONSEQUENCES ===

    @app.post("/consequences/generate")
    def generate_consequences(req: GenerateRequest):
        """Parse a model response into consequences (no world changes)."""
        result = pipeline.generator.generate(req.response_text, _action_request(req), req.options)
        return result.model_dump(mode="json")

    @app.post("/consequences/validate")
    def validate_consequences(req: ConsequenceBatchRequest):
        """Validate a batch against the current world rules."""
        result = pipeline.validator.validate_consequences(
            _parse_consequences(req.consequences),
            world_rules=gw.get_world_rules(),
            parallel=req.parallel,
        )
        return result.model_dump(mode="json")

    # === WORLD STATE ===

    @app.get("/world/state")
    def get_world_state():
        """Current world snapshot."""
        return gw.get_current_state().model_dump(mode="json")

    @app.put("/world/state")
    def replace_world_state(snapshot: WorldStateSnapshot):
        """Replace the world snapshot (seeding and testing)."""
        result = gw.update_world_state(snapshot)
        return result.model_dump(mode="json")

    @app.post("/world/apply")
    def apply_consequences(req: ConsequenceBatchRequest):
        """Apply already-validated consequences to the world."""
        result = updater.apply_consequences(_parse_consequences(req.consequences))
        return result.model_dump(mode="json")

    @app.get("/world/rules")
    def list_world_rules():
        return [r.model_dump(mode="json") for r in gw.get_world_rules()]

    @app.post("/world/rules")
    def add_world_rule(rule: WorldRule):
        """Register a world rule."""
        if not hasattr(gw, "add_rule"):
            raise HTTPException(405, "Gateway rules are read-only")
        gw.add_rule(rule)
        return {"status": "added", "rule_id": rule.id}

    @app.delete("/world/rules/{rule_id}")
    def delete_world_rule(rule_id: str):
        if not hasattr(gw, "remove_rule"):
            raise HTTPException(405, "Gateway rules are read-only")
        if not gw.remove_rule(rule_id):
            raise HTTPException(404, "Rule not found")
        return {"status": "removed", "rule_id": rule_id}

    # === ACTIONS ===

    @app.post("/actions/process")
    def process_action(req: ActionPayload):
        """Run the full pipeline for one model response."""
        result = pipeline.process_action(
            _action_request(req), req.response_text, req.action_description
        )
        body = result.model_dump(mode="json")
        body["success"] = result.success
        return body

    # === EFFECTS ===

    @app.get("/effects/history")
    def get_effect_history(
        action_id: Optional[str] = None,
        player_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ):
        """Effect histories, newest first."""
        histories = updater.get_effect_history(action_id, player_id, limit, offset)
        return [h.model_dump(mode="json") for h in histories]

    @app.post("/effects/{effect_id}/discover")
    def discover_effect(effect_id: str, req: DiscoveryRequest):
        """A player discovers an effect."""
        try:
            recorded = updater.record_effect_discovery(req.player_id, effect_id, req.method)
        except UnknownEffectError:
            raise HTTPException(404, "Effect not found")
        return {
            "effect_id": effect_id,
            "player_id": req.player_id,
            "newly_recorded": recorded,
            "discovered_at": datetime.utcnow().isoformat(),
        }

    @app.get("/effects/opportunities")
    def get_opportunities(player_id: Optional[str] = None, region: Optional[str] = None):
        return [
            o.model_dump(mode="json")
            for o in updater.get_emergent_opportunities(player_id, region)
        ]

    @app.get("/effects/cross-region")
    def get_cross_region_effects(pending_only: bool = False):
        return [
            r.model_dump(mode="json")
            for r in updater.effect_store.list_cross_region(pending_only)
        ]

    # === AUDIT ===

    @app.get("/audit/verify")
    def verify_audit_chain():
        """Verify the audit ledger hash chain."""
        return {"valid": ledger.verify_chain_integrity(), "records": ledger.count()}

    @app.get("/audit/recent")
    def recent_audit(limit: int = 50):
        return [r.model_dump(mode="json") for r in ledger.query_recent(limit)]

    @app.get("/audit/consequences/{consequence_id}")
    def audit_for_consequence(consequence_id: str):
        records = ledger.query_by_consequence(consequence_id)
        if not records:
            raise HTTPException(404, "No audit records for consequence")
        return [r.model_dump(mode="json") for r in records]

    # === CONFIGURATION ===

    @app.get("/config/updater")
    def get_updater_config():
        return updater.config.model_dump(mode="json")

    @app.put("/config/updater")
    def update_updater_config(new_config: UpdaterConfig):
        """Replace the updater configuration."""
        updater.config = new_config
        return new_config.model_dump(mode="json")

    return app


# Default application instance
app = create_app(config=load_config())
