"""Static catalog of image generation models and their compatibility tables."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from ..models.generation_models import GenerationModel


class ModelProfile(BaseModel):
    """Static facts about one generation model."""

    model_id: GenerationModel
    endpoint: str = Field(description="Hosted application path")
    display_name: str
    cost_per_image: float = Field(gt=0, description="List price in USD")
    base_latency: float = Field(gt=0, description="Typical seconds per image")
    premium: bool = Field(default=False, description="Paid plans only")
    detail_strength: float = Field(
        default=0.5,
        ge=0,
        le=1,
        description="How well the model copes with hard inputs",
    )
    quality_fit: Dict[str, float]
    speed_fit: Dict[str, float]
    budget_fit: Dict[str, float]
    purpose_fit: Dict[str, float]
    style_fit: Dict[str, float]

    class Config:
        """Pydantic configuration."""

        use_enum_values = True
        frozen = True


# Fit tables score 0-1 how well the model serves each requirement value
DEFAULT_CATALOG: List[ModelProfile] = [
    ModelProfile(
        model_id=GenerationModel.FLUX_PRO_ULTRA,
        endpoint="fal-ai/flux-pro/v1.1-ultra",
        display_name="Flux Pro Ultra",
        cost_per_image=3.0,
        base_latency=180,
        premium=True,
        detail_strength=0.95,
        quality_fit={"ultra": 1.0, "premium": 0.9, "standard": 0.7, "basic": 0.5},
        speed_fit={"fast": 0.3, "balanced": 0.7, "quality": 1.0},
        budget_fit={"low": 0.2, "medium": 0.5, "high": 0.8, "unlimited": 1.0},
        purpose_fit={
            "professional": 1.0, "corporate": 1.0, "portfolio": 0.9,
            "creative": 0.6, "social": 0.5,
        },
        style_fit={
            "realistic": 1.0, "professional": 1.0, "casual": 0.7,
            "artistic": 0.5, "creative": 0.5,
        },
    ),
    ModelProfile(
        model_id=GenerationModel.FLUX_PRO,
        endpoint="fal-ai/flux-pro",
        display_name="Flux Pro",
        cost_per_image=2.0,
        base_latency=120,
        detail_strength=0.8,
        quality_fit={"ultra": 0.8, "premium": 1.0, "standard": 0.9, "basic": 0.7},
        speed_fit={"fast": 0.6, "balanced": 1.0, "quality": 0.8},
        budget_fit={"low": 0.4, "medium": 0.8, "high": 1.0, "unlimited": 1.0},
        purpose_fit={
            "professional": 0.9, "corporate": 0.9, "portfolio": 1.0,
            "creative": 0.7, "social": 0.6,
        },
        style_fit={
            "realistic": 0.9, "professional": 0.9, "casual": 0.8,
            "artistic": 0.6, "creative": 0.6,
        },
    ),
    ModelProfile(
        model_id=GenerationModel.FLUX_DEV,
        endpoint="fal-ai/flux/dev",
        display_name="Flux Dev",
        cost_per_image=1.0,
        base_latency=45,
        detail_strength=0.5,
        quality_fit={"ultra": 0.4, "premium": 0.6, "standard": 0.8, "basic": 1.0},
        speed_fit={"fast": 1.0, "balanced": 0.8, "quality": 0.5},
        budget_fit={"low": 1.0, "medium": 1.0, "high": 0.8, "unlimited": 0.6},
        purpose_fit={
            "professional": 0.6, "corporate": 0.5, "portfolio": 0.7,
            "creative": 0.8, "social": 1.0,
        },
        style_fit={
            "realistic": 0.7, "professional": 0.6, "casual": 1.0,
            "artistic": 0.8, "creative": 0.8,
        },
    ),
    ModelProfile(
        model_id=GenerationModel.IMAGEN4,
        endpoint="fal-ai/imagen4/preview",
        display_name="Imagen 4",
        cost_per_image=2.0,
        base_latency=90,
        detail_strength=0.7,
        quality_fit={"ultra": 0.7, "premium": 0.9, "standard": 1.0, "basic": 0.8},
        speed_fit={"fast": 0.7, "balanced": 0.9, "quality": 0.8},
        budget_fit={"low": 0.5, "medium": 0.8, "high": 1.0, "unlimited": 1.0},
        purpose_fit={
            "professional": 0.8, "corporate": 0.8, "portfolio": 0.9,
            "creative": 0.7, "social": 0.7,
        },
        style_fit={
            "realistic": 0.8, "professional": 0.8, "casual": 0.8,
            "artistic": 0.7, "creative": 0.7,
        },
    ),
    ModelProfile(
        model_id=GenerationModel.RECRAFT_V3,
        endpoint="fal-ai/recraft-v3",
        display_name="Recraft V3",
        cost_per_image=2.5,
        base_latency=150,
        premium=True,
        detail_strength=0.6,
        quality_fit={"ultra": 0.8, "premium": 1.0, "standard": 0.8, "basic": 0.6},
        speed_fit={"fast": 0.4, "balanced": 0.7, "quality": 1.0},
        budget_fit={"low": 0.3, "medium": 0.6, "high": 0.9, "unlimited": 1.0},
        purpose_fit={
            "professional": 0.6, "corporate": 0.5, "portfolio": 0.8,
            "creative": 1.0, "social": 0.9,
        },
        style_fit={
            "realistic": 0.5, "professional": 0.6, "casual": 0.8,
            "artistic": 1.0, "creative": 1.0,
        },
    ),
    ModelProfile(
        model_id=GenerationModel.AURA_SR,
        endpoint="fal-ai/aura-sr",
        display_name="AuraSR",
        cost_per_image=1.5,
        base_latency=60,
        detail_strength=0.85,
        quality_fit={"ultra": 1.0, "premium": 0.9, "standard": 0.7, "basic": 0.5},
        speed_fit={"fast": 0.9, "balanced": 1.0, "quality": 0.7},
        budget_fit={"low": 0.6, "medium": 0.9, "high": 1.0, "unlimited": 1.0},
        purpose_fit={
            "professional": 0.9, "corporate": 0.9, "portfolio": 1.0,
            "creative": 0.7, "social": 0.6,
        },
        style_fit={
            "realistic": 1.0, "professional": 0.9, "casual": 0.7,
            "artistic": 0.6, "creative": 0.6,
        },
    ),
    ModelProfile(
        model_id=GenerationModel.CLARITY_UPSCALER,
        endpoint="fal-ai/clarity-upscaler",
        display_name="Clarity Upscaler",
        cost_per_image=2.0,
        base_latency=90,
        premium=True,
        detail_strength=0.9,
        quality_fit={"ultra": 1.0, "premium": 0.9, "standard": 0.7, "basic": 0.5},
        speed_fit={"fast": 0.6, "balanced": 0.8, "quality": 1.0},
        budget_fit={"low": 0.4, "medium": 0.7, "high": 1.0, "unlimited": 1.0},
        purpose_fit={
            "professional": 0.9, "corporate": 0.9, "portfolio": 1.0,
            "creative": 0.7, "social": 0.6,
        },
        style_fit={
            "realistic": 1.0, "professional": 0.9, "casual": 0.7,
            "artistic": 0.6, "creative": 0.6,
        },
    ),
    ModelProfile(
        model_id=GenerationModel.FLUX_LORA,
        endpoint="fal-ai/flux-lora",
        display_name="Flux LoRA",
        cost_per_image=2.0,
        base_latency=120,
        detail_strength=0.75,
        quality_fit={"ultra": 0.9, "premium": 1.0, "standard": 0.8, "basic": 0.6},
        speed_fit={"fast": 0.5, "balanced": 0.8, "quality": 1.0},
        budget_fit={"low": 0.5, "medium": 0.8, "high": 1.0, "unlimited": 1.0},
        purpose_fit={
            "professional": 0.8, "corporate": 0.7, "portfolio": 0.9,
            "creative": 0.9, "social": 0.8,
        },
        style_fit={
            "realistic": 0.8, "professional": 0.8, "casual": 0.8,
            "artistic": 0.9, "creative": 0.9,
        },
    ),
]

TRAINING_ENDPOINT = "fal-ai/flux-lora-fast-training"


class ModelCatalog:
    """Lookup over a list of model profiles."""

    def __init__(self, profiles: Optional[List[ModelProfile]] = None):
        self.profiles = list(profiles if profiles is not None else DEFAULT_CATALOG)
        self._by_id: Dict[str, ModelProfile] = {
            profile.model_id: profile for profile in self.profiles
        }

    def get(self, model_id: str) -> Optional[ModelProfile]:
        """Profile for a model id, or None if unknown."""
        return self._by_id.get(str(getattr(model_id, "value", model_id)))

    def require(self, model_id: str) -> ModelProfile:
        """Profile for a model id; raises KeyError if unknown."""
        profile = self.get(model_id)
        if profile is None:
            raise KeyError(f"Unknown model: {model_id}")
        return profile

    def model_ids(self) -> List[str]:
        return [profile.model_id for profile in self.profiles]

    def eligible_for(self, premium_access: bool) -> List[ModelProfile]:
        """
        Models a plan may use.

        Args:
            premium_access: Whether the plan unlocks premium models

        Returns:
            Eligible profiles in catalog order
        """
        return [p for p in self.profiles if premium_access or not p.premium]

    def __contains__(self, model_id: object) -> bool:
        return self.get(model_id) is not None

    def __len__(self) -> int:
        return len(self.profiles)
