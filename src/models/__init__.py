"""Models package for the headshot generation core."""

from .generation_models import (
    Purpose,
    QualityLevel,
    SpeedPreference,
    BudgetLevel,
    StylePreference,
    PlanTier,
    LightingType,
    InputComplexity,
    BackgroundType,
    GenerationModel,
    UserRequirements,
    ImageCharacteristics,
    ModelCandidate,
    ModelSelection,
    GenerationRequest,
    GeneratedImage,
    GenerationResult,
    DispatchResult,
    CacheStats,
    SelectionInfo,
    GenerationResponse,
    JobStatus,
    TrainingJob,
)
from .cache_models import CacheKind, CacheMetadata, CacheEntry
from .quota_models import QuotaType, QuotaWindow, QuotaDecision
from .metrics_models import (
    PerformanceTrend,
    PerformanceMetric,
    PerformanceAggregate,
)

__all__ = [
    # Requirement enums
    "Purpose",
    "QualityLevel",
    "SpeedPreference",
    "BudgetLevel",
    "StylePreference",
    "PlanTier",
    "LightingType",
    "InputComplexity",
    "BackgroundType",
    "GenerationModel",
    # Selection models
    "UserRequirements",
    "ImageCharacteristics",
    "ModelCandidate",
    "ModelSelection",
    # Generation models
    "GenerationRequest",
    "GeneratedImage",
    "GenerationResult",
    "DispatchResult",
    "CacheStats",
    "SelectionInfo",
    "GenerationResponse",
    "JobStatus",
    "TrainingJob",
    # Cache models
    "CacheKind",
    "CacheMetadata",
    "CacheEntry",
    # Quota models
    "QuotaType",
    "QuotaWindow",
    "QuotaDecision",
    # Metrics models
    "PerformanceTrend",
    "PerformanceMetric",
    "PerformanceAggregate",
]
