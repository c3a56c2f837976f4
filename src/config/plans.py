"""Plan tier limits, validated at import time."""

from typing import Dict
from pydantic import BaseModel, Field
from ..models.generation_models import PlanTier
from ..models.quota_models import QuotaType


class PlanLimits(BaseModel):
    """Usage ceilings and model access for one plan tier."""

    tier: PlanTier
    monthly_training_limit: int = Field(gt=0)
    monthly_prompt_limit: int = Field(gt=0)
    monthly_enhancement_limit: int = Field(gt=0)
    max_parallel_models: int = Field(
        gt=0,
        description="Models run per request with intelligent selection",
    )
    max_manual_models: int = Field(
        gt=0,
        description="Models run per request when the caller picks them",
    )
    premium_access: bool = Field(default=False)

    class Config:
        """Pydantic configuration."""

        use_enum_values = True
        frozen = True

    def limit_for(self, quota_type: QuotaType) -> int:
        """
        Get the monthly ceiling for a quota type.

        Args:
            quota_type: Metered action

        Returns:
            Maximum uses per period
        """
        quota_type = QuotaType(quota_type)
        if quota_type == QuotaType.TRAINING_RUNS:
            return self.monthly_training_limit
        if quota_type == QuotaType.PROMPTS:
            return self.monthly_prompt_limit
        return self.monthly_enhancement_limit


PLAN_LIMITS: Dict[PlanTier, PlanLimits] = {
    PlanTier.BASIC: PlanLimits(
        tier=PlanTier.BASIC,
        monthly_training_limit=1,
        monthly_prompt_limit=10,
        monthly_enhancement_limit=5,
        max_parallel_models=1,
        max_manual_models=2,
        premium_access=False,
    ),
    PlanTier.PROFESSIONAL: PlanLimits(
        tier=PlanTier.PROFESSIONAL,
        monthly_training_limit=5,
        monthly_prompt_limit=100,
        monthly_enhancement_limit=20,
        max_parallel_models=2,
        max_manual_models=3,
        premium_access=True,
    ),
    PlanTier.EXECUTIVE: PlanLimits(
        tier=PlanTier.EXECUTIVE,
        monthly_training_limit=10,
        monthly_prompt_limit=200,
        monthly_enhancement_limit=100,
        max_parallel_models=3,
        max_manual_models=5,
        premium_access=True,
    ),
}

# Ascending order; ceilings must not shrink on upgrade
TIER_ORDER = [PlanTier.BASIC, PlanTier.PROFESSIONAL, PlanTier.EXECUTIVE]


def validate_plan_table(table: Dict[PlanTier, PlanLimits]) -> None:
    """
    Validate a plan table.

    Args:
        table: Tier to limits mapping

    Raises:
        ValueError: If a tier is missing, mislabelled, or a ceiling
            decreases from one tier to the next
    """
    missing = [tier.value for tier in TIER_ORDER if tier not in table]
    if missing:
        raise ValueError(f"Plan table missing tiers: {missing}")

    for tier in TIER_ORDER:
        if table[tier].tier != tier.value:
            raise ValueError(
                f"Plan table entry for {tier.value} is labelled {table[tier].tier}"
            )

    for lower, higher in zip(TIER_ORDER, TIER_ORDER[1:]):
        low, high = table[lower], table[higher]
        for quota_type in QuotaType:
            if high.limit_for(quota_type) < low.limit_for(quota_type):
                raise ValueError(
                    f"{quota_type.value} limit for {higher.value} is below "
                    f"{lower.value}"
                )
        if high.max_parallel_models < low.max_parallel_models:
            raise ValueError(
                f"max_parallel_models for {higher.value} is below {lower.value}"
            )


def get_plan_limits(tier: PlanTier) -> PlanLimits:
    """
    Look up limits for a tier.

    Args:
        tier: Plan tier (enum or its string value)

    Returns:
        PlanLimits for the tier

    Raises:
        ValueError: If the tier is unknown
    """
    return PLAN_LIMITS[PlanTier(tier)]


validate_plan_table(PLAN_LIMITS)
