"""Generation orchestration: selection, caching, quotas and dispatch."""

from .errors import (
    OrchestrationError,
    ValidationError,
    QuotaExceeded,
    NoEligibleModel,
    ModelInvocationError,
    RateLimitError,
    ModelTimeoutError,
    BackendUnreachableError,
    CacheUnavailable,
    InfrastructureError,
)
from .keys import derive_key, generation_key, selection_key, user_preference_key
from .cache_store import (
    CacheStore,
    InMemoryCacheStore,
    RedisCacheStore,
    TieredCacheStore,
    FailOpenCache,
)
from .quota import QuotaEnforcer, InMemoryQuotaStore, RedisQuotaStore
from .tracker import PerformanceTracker, InMemoryMetricsStore, RedisMetricsStore
from .selector import ModelSelector
from .dispatcher import GenerationDispatcher

__all__ = [
    # Errors
    "OrchestrationError",
    "ValidationError",
    "QuotaExceeded",
    "NoEligibleModel",
    "ModelInvocationError",
    "RateLimitError",
    "ModelTimeoutError",
    "BackendUnreachableError",
    "CacheUnavailable",
    "InfrastructureError",
    # Keys
    "derive_key",
    "generation_key",
    "selection_key",
    "user_preference_key",
    # Stores
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "TieredCacheStore",
    "FailOpenCache",
    "InMemoryQuotaStore",
    "RedisQuotaStore",
    "InMemoryMetricsStore",
    "RedisMetricsStore",
    # Components
    "QuotaEnforcer",
    "PerformanceTracker",
    "ModelSelector",
    "GenerationDispatcher",
]
