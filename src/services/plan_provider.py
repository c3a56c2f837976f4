"""Plan lookup for users."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..config.plans import PLAN_LIMITS, PlanLimits
from ..models.generation_models import PlanTier

logger = logging.getLogger(__name__)


class PlanProvider(ABC):
    """Resolves a user's subscription plan."""

    @abstractmethod
    async def get_plan(self, user_id: str) -> PlanLimits:
        """
        Get the plan limits for a user.

        Args:
            user_id: User identifier

        Returns:
            PlanLimits for the user's tier
        """
        pass


class StaticPlanProvider(PlanProvider):
    """
    Plan provider backed by a fixed user-to-tier mapping.

    GOTCHA: Unknown users get the default tier
    """

    def __init__(
        self,
        assignments: Optional[Dict[str, PlanTier]] = None,
        default_tier: PlanTier = PlanTier.BASIC,
        plan_table: Optional[Dict[PlanTier, PlanLimits]] = None,
    ):
        self.assignments = {
            user_id: PlanTier(tier) for user_id, tier in (assignments or {}).items()
        }
        self.default_tier = PlanTier(default_tier)
        self.plan_table = plan_table or PLAN_LIMITS

    def assign(self, user_id: str, tier: PlanTier) -> None:
        """Set a user's tier."""
        self.assignments[user_id] = PlanTier(tier)
        logger.info(f"Assigned {user_id} to {PlanTier(tier).value} plan")

    async def get_plan(self, user_id: str) -> PlanLimits:
        return self.plan_table[self.assignments.get(user_id, self.default_tier)]
