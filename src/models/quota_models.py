"""Usage quota data models."""

from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime


class QuotaType(str, Enum):
    """Metered actions with a per-plan monthly ceiling."""

    TRAINING_RUNS = "training_runs"
    PROMPTS = "prompts"
    ENHANCEMENTS = "enhancements"


class QuotaWindow(BaseModel):
    """Usage counter for one user and quota type within one period."""

    user_id: str
    quota_type: QuotaType
    period_start: datetime
    period_end: datetime
    used: int = Field(default=0, ge=0)
    limit: int = Field(ge=0)

    class Config:
        """Pydantic configuration."""

        use_enum_values = True

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


class QuotaDecision(BaseModel):
    """Result of a check-and-reserve call."""

    allowed: bool
    used: int
    limit: int
    remaining: int
    quota_type: QuotaType
    period_end: datetime

    class Config:
        """Pydantic configuration."""

        use_enum_values = True
