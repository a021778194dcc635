"""
Process configuration.

Settings come from two sources, highest priority first:

    1. Environment variables - for containerized deployments
    2. Built-in defaults (KernelConfig field defaults)

Environment Variable Mapping:
    CK_LOG_LEVEL                 -> log_level
    CK_EFFECT_DB_PATH            -> effect_db_path
    CK_AUDIT_DB_PATH             -> audit_db_path
    CK_MAX_CONSEQUENCES          -> generator.max_consequences
    CK_MIN_CONFIDENCE            -> generator.min_confidence
    CK_DEFER_CASCADING_EFFECTS   -> updater.defer_cascading_effects
    CK_TRAVEL_TIME_SCALE         -> updater.travel_time_scale
    CK_PARALLEL_VALIDATION       -> parallel_validation
"""

import logging
import os
from typing import Mapping, Optional

from consequence_kernel.models.config import KernelConfig

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_bool(value: str) -> bool:
    """Parse a string value to boolean."""
    return value.lower() in ("true", "yes", "1", "on", "enabled")


def load_config(environ: Optional[Mapping[str, str]] = None) -> KernelConfig:
    """Build a KernelConfig from defaults overridden by the environment."""
    env = os.environ if environ is None else environ
    cfg = KernelConfig()

    if log_level := env.get("CK_LOG_LEVEL"):
        cfg.log_level = log_level.upper()
    if effect_db := env.get("CK_EFFECT_DB_PATH"):
        cfg.effect_db_path = effect_db
    if audit_db := env.get("CK_AUDIT_DB_PATH"):
        cfg.audit_db_path = audit_db

    if max_consequences := env.get("CK_MAX_CONSEQUENCES"):
        cfg.generator.max_consequences = max(1, int(max_consequences))
    if min_confidence := env.get("CK_MIN_CONFIDENCE"):
        cfg.generator.min_confidence = float(min_confidence)

    if defer := env.get("CK_DEFER_CASCADING_EFFECTS"):
        cfg.updater.defer_cascading_effects = _parse_bool(defer)
    if scale := env.get("CK_TRAVEL_TIME_SCALE"):
        cfg.updater.travel_time_scale = float(scale)

    if parallel := env.get("CK_PARALLEL_VALIDATION"):
        cfg.parallel_validation = _parse_bool(parallel)

    return cfg


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler for the service process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("consequence_kernel").setLevel(level.upper())
