"""Services package for the headshot generation core."""

from .plan_provider import PlanProvider, StaticPlanProvider
from .orchestration_service import GenerationOrchestrator, DEFAULT_GENERATION_OPTIONS

__all__ = [
    "PlanProvider",
    "StaticPlanProvider",
    "GenerationOrchestrator",
    "DEFAULT_GENERATION_OPTIONS",
]
