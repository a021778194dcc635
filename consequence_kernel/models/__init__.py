"""Consequence Kernel data models."""

from consequence_kernel.models.butterfly import (
    CascadeGraph,
    CrossRegionEffect,
    CrossRegionEffectRecord,
    DiscoveryMethod,
    EffectConnection,
    EffectDiscoveryRecord,
    EffectHistory,
    EffectNode,
    EmergentOpportunity,
    NodeType,
    PersistenceOptions,
)
from consequence_kernel.models.cascade import (
    CascadeNetwork,
    CascadeOptions,
    EffectRelationship,
    RelationshipType,
)
from consequence_kernel.models.config import GeneratorConfig, KernelConfig, UpdaterConfig
from consequence_kernel.models.consequence import (
    ActionRequest,
    CascadingEffect,
    Consequence,
    ConsequenceImpact,
    ConsequenceType,
    DurationType,
    ImpactLevel,
)
from consequence_kernel.models.generation import (
    ConsequenceParsingResult,
    ParsingMetadata,
    SourceFormat,
)
from consequence_kernel.models.update import (
    AuditAction,
    AuditEntry,
    AuditRecord,
    Conflict,
    ConflictResolution,
    ConflictSeverity,
    ConflictType,
    ResolutionStrategy,
    UpdateMetadata,
    WorldStateUpdateResult,
)
from consequence_kernel.models.validation import (
    BatchValidationResult,
    ConflictKind,
    ConsequenceConflict,
    ResolutionType,
    ValidationContext,
    ValidationResult,
)
from consequence_kernel.models.world import (
    CharacterRelationship,
    CharacterState,
    EconomyState,
    EnvironmentState,
    MarketState,
    RegionState,
    ResourceState,
    RuleActivation,
    RuleType,
    TradeRoute,
    WorldEvent,
    WorldRule,
    WorldStateSnapshot,
)

__all__ = [
    "ActionRequest",
    "AuditAction",
    "AuditEntry",
    "AuditRecord",
    "BatchValidationResult",
    "CascadeGraph",
    "CascadeNetwork",
    "CascadeOptions",
    "CascadingEffect",
    "CharacterRelationship",
    "CharacterState",
    "Conflict",
    "ConflictKind",
    "ConflictResolution",
    "ConflictSeverity",
    "ConflictType",
    "Consequence",
    "ConsequenceConflict",
    "ConsequenceImpact",
    "ConsequenceParsingResult",
    "ConsequenceType",
    "CrossRegionEffect",
    "CrossRegionEffectRecord",
    "DiscoveryMethod",
    "DurationType",
    "EconomyState",
    "EffectConnection",
    "EffectDiscoveryRecord",
    "EffectHistory",
    "EffectNode",
    "EffectRelationship",
    "EmergentOpportunity",
    "EnvironmentState",
    "GeneratorConfig",
    "ImpactLevel",
    "KernelConfig",
    "MarketState",
    "NodeType",
    "ParsingMetadata",
    "PersistenceOptions",
    "RegionState",
    "RelationshipType",
    "ResolutionStrategy",
    "ResolutionType",
    "ResourceState",
    "RuleActivation",
    "RuleType",
    "SourceFormat",
    "TradeRoute",
    "UpdateMetadata",
    "UpdaterConfig",
    "ValidationContext",
    "ValidationResult",
    "WorldEvent",
    "WorldRule",
    "WorldStateSnapshot",
    "WorldStateUpdateResult",
]
