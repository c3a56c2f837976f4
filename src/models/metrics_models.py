"""Model performance metric data models."""

from pydantic import BaseModel, Field
from typing import Dict, Optional
from enum import Enum
from datetime import datetime


class PerformanceTrend(str, Enum):
    """Direction of a model's recent success rate."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class PerformanceMetric(BaseModel):
    """
    Outcome of one completed model invocation.

    Append-only: never mutated after it is written.
    """

    model_id: str
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
    processing_time: float = Field(ge=0, description="Milliseconds")
    success: bool
    cost: float = Field(default=0.0, ge=0, description="Cost in USD")
    quality_score: Optional[float] = Field(default=None, ge=0, le=1)
    error_type: Optional[str] = None

    class Config:
        """Pydantic configuration."""

        frozen = True


class PerformanceAggregate(BaseModel):
    """Rollup of recent metrics for one model."""

    model_id: str
    success_rate: float = Field(default=0.0, ge=0, le=1)
    avg_latency: float = Field(default=0.0, description="Milliseconds")
    avg_cost: float = Field(default=0.0)
    avg_quality: Optional[float] = None
    sample_size: int = Field(default=0)
    error_breakdown: Dict[str, int] = Field(default_factory=dict)
    trend: PerformanceTrend = Field(default=PerformanceTrend.STABLE)

    class Config:
        """Pydantic configuration."""

        use_enum_values = True
