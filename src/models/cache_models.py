"""Cache entry data models."""

from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, Optional
from enum import Enum
from datetime import datetime


class CacheKind(str, Enum):
    """Namespaces sharing one physical cache store."""

    GENERATION = "generation"
    MODEL_SELECTION = "model_selection"
    USER_PREFERENCE = "user_preference"


class CacheMetadata(BaseModel):
    """Provenance of a cached payload."""

    model_id: Optional[str] = None
    user_id: Optional[str] = None
    quality_score: Optional[float] = None
    generation_time: Optional[float] = Field(
        default=None,
        description="Backend processing time in seconds",
    )
    cost: Optional[float] = Field(default=None, description="Cost in USD")
    cost_estimated: bool = Field(
        default=False,
        description="Cost came from the catalog, not the backend",
    )


class CacheEntry(BaseModel):
    """
    A cached payload with expiry and access accounting.

    CRITICAL: expires_at must be after created_at
    CRITICAL: access_count only grows, once per read hit
    """

    key: str = Field(min_length=1)
    kind: CacheKind
    payload: Dict[str, Any]
    metadata: CacheMetadata = Field(default_factory=CacheMetadata)
    created_at: datetime
    expires_at: datetime
    access_count: int = Field(default=0, ge=0)
    last_accessed_at: datetime

    class Config:
        """Pydantic configuration."""

        use_enum_values = True
        frozen = True

    @model_validator(mode="after")
    def _check_expiry(self) -> "CacheEntry":
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: datetime) -> bool:
        """True once now has reached expires_at."""
        return now >= self.expires_at

    def touched(self, now: datetime) -> "CacheEntry":
        """Copy of this entry with one more recorded access."""
        return self.model_copy(
            update={
                "access_count": self.access_count + 1,
                "last_accessed_at": now,
            }
        )
