"""Orchestration configuration with environment variable loading."""

import os
from typing import Optional
from pydantic import BaseModel, Field, model_validator
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class OrchestrationConfig(BaseModel):
    """Configuration for the generation orchestration core."""

    # Generation backend
    fal_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("FAL_API_KEY"),
        description="Hosted generation API key",
    )
    fal_base_url: str = Field(
        default_factory=lambda: os.getenv("FAL_BASE_URL", "https://fal.run"),
        description="Synchronous generation endpoint",
    )
    fal_queue_url: str = Field(
        default_factory=lambda: os.getenv("FAL_QUEUE_URL", "https://queue.fal.run"),
        description="Queue endpoint for training jobs",
    )
    model_call_timeout: float = Field(
        default_factory=lambda: float(os.getenv("MODEL_CALL_TIMEOUT", "180")),
        gt=0,
        description="Seconds to wait on one model call",
    )

    # Persistent store
    store_backend: str = Field(
        default_factory=lambda: os.getenv("STORE_BACKEND", "memory"),
        description="Store implementation: memory or redis",
    )
    redis_url: str = Field(
        default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        description="Redis connection URL",
    )
    redis_prefix: str = Field(
        default_factory=lambda: os.getenv("REDIS_PREFIX", "headshot"),
        description="Key prefix for all Redis keys",
    )

    # Cache
    generation_cache_ttl: int = Field(
        default_factory=lambda: int(os.getenv("GENERATION_CACHE_TTL", "3600")),
        gt=0,
        description="Generation cache time-to-live in seconds",
    )
    selection_cache_ttl: int = Field(
        default_factory=lambda: int(os.getenv("SELECTION_CACHE_TTL", "600")),
        gt=0,
        description="Model selection cache time-to-live in seconds",
    )
    user_preference_cache_ttl: int = Field(
        default_factory=lambda: int(os.getenv("USER_PREFERENCE_CACHE_TTL", "86400")),
        gt=0,
        description="User preference cache time-to-live in seconds",
    )
    cache_max_size: int = Field(
        default_factory=lambda: int(os.getenv("CACHE_MAX_SIZE", "1000")),
        gt=0,
        description="Maximum in-memory cache entries",
    )
    memory_tier_ttl: int = Field(
        default_factory=lambda: int(os.getenv("MEMORY_TIER_TTL", "300")),
        gt=0,
        description="Longest a memory-tier copy of a shared cache entry lives, in seconds",
    )
    cache_op_timeout: float = Field(
        default_factory=lambda: float(os.getenv("CACHE_OP_TIMEOUT", "2.0")),
        gt=0,
        description="Seconds to wait on one cache operation",
    )

    # Selection
    history_window_size: int = Field(
        default_factory=lambda: int(os.getenv("HISTORY_WINDOW_SIZE", "50")),
        gt=0,
        description="Most recent metrics considered per model",
    )
    history_window_days: int = Field(
        default_factory=lambda: int(os.getenv("HISTORY_WINDOW_DAYS", "7")),
        gt=0,
        description="Oldest metric age considered, in days",
    )
    min_history_samples: int = Field(
        default_factory=lambda: int(os.getenv("MIN_HISTORY_SAMPLES", "10")),
        gt=0,
        description="Samples at which history carries half its weight",
    )
    high_confidence_threshold: float = Field(
        default_factory=lambda: float(os.getenv("HIGH_CONFIDENCE_THRESHOLD", "0.8")),
        ge=0,
        le=1,
    )
    cold_start_confidence_cap: float = Field(
        default_factory=lambda: float(os.getenv("COLD_START_CONFIDENCE_CAP", "0.75")),
        ge=0,
        le=1,
    )

    # Tracking
    metrics_queue_size: int = Field(
        default_factory=lambda: int(os.getenv("METRICS_QUEUE_SIZE", "1000")),
        gt=0,
        description="Pending metrics before new ones are dropped",
    )

    class Config:
        """Pydantic config."""

        env_file = ".env"
        env_file_encoding = "utf-8"

    @model_validator(mode="after")
    def _check_consistency(self) -> "OrchestrationConfig":
        if self.selection_cache_ttl >= self.generation_cache_ttl:
            raise ValueError(
                "selection_cache_ttl must be shorter than generation_cache_ttl"
            )
        if self.cold_start_confidence_cap >= self.high_confidence_threshold:
            raise ValueError(
                "cold_start_confidence_cap must be below high_confidence_threshold"
            )
        if self.store_backend not in ("memory", "redis"):
            raise ValueError(
                f"store_backend must be 'memory' or 'redis', got {self.store_backend}"
            )
        return self
