"""Pipeline configuration."""

from pydantic import BaseModel, Field

from consequence_kernel.models.cascade import CascadeOptions


class GeneratorConfig(BaseModel):
    """Options for turning a model response into consequences."""

    max_consequences: int = Field(ge=1, default=4)
    require_logical_consistency: bool = True
    min_confidence: float = Field(ge=0, le=1, default=0.6)


class UpdaterConfig(BaseModel):
    """Options for the World-State Updater."""

    defer_cascading_effects: bool = False   # Honour effect delays via the scheduler
    travel_time_scale: float = Field(ge=0, default=1.0)
    cas_retry_limit: int = Field(ge=1, default=3)
    achievement_threshold: int = Field(ge=1, default=5)


class KernelConfig(BaseModel):
    """Process-level configuration, see ``consequence_kernel.config``."""

    log_level: str = "INFO"
    effect_db_path: str = ":memory:"
    audit_db_path: str = ":memory:"
    generator: GeneratorConfig = GeneratorConfig()
    cascade: CascadeOptions = CascadeOptions()
    updater: UpdaterConfig = UpdaterConfig()
    parallel_validation: bool = False
