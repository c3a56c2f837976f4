"""Generation request, selection and dispatch data models."""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from enum import Enum


class Purpose(str, Enum):
    """What the headshots will be used for."""

    PROFESSIONAL = "professional"
    CREATIVE = "creative"
    SOCIAL = "social"
    PORTFOLIO = "portfolio"
    CORPORATE = "corporate"


class QualityLevel(str, Enum):
    """Requested output quality."""

    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"
    ULTRA = "ultra"


class SpeedPreference(str, Enum):
    """Trade-off between turnaround time and fidelity."""

    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"


class BudgetLevel(str, Enum):
    """Spend tolerance for a request."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNLIMITED = "unlimited"


class StylePreference(str, Enum):
    """Visual style of the generated headshots."""

    REALISTIC = "realistic"
    ARTISTIC = "artistic"
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    CREATIVE = "creative"


class PlanTier(str, Enum):
    """Subscription tiers."""

    BASIC = "basic"
    PROFESSIONAL = "professional"
    EXECUTIVE = "executive"


class LightingType(str, Enum):
    """Lighting of the source photos."""

    NATURAL = "natural"
    STUDIO = "studio"
    OUTDOOR = "outdoor"
    INDOOR = "indoor"


class InputComplexity(str, Enum):
    """Perceived difficulty of the source photos."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class BackgroundType(str, Enum):
    """Background of the source photos."""

    SIMPLE = "simple"
    DETAILED = "detailed"
    TRANSPARENT = "transparent"


class GenerationModel(str, Enum):
    """Image generation models exposed by the hosted backend."""

    FLUX_PRO_ULTRA = "flux-pro-ultra"
    FLUX_PRO = "flux-pro"
    FLUX_DEV = "flux-dev"
    IMAGEN4 = "imagen4"
    RECRAFT_V3 = "recraft-v3"
    AURA_SR = "aura-sr"
    CLARITY_UPSCALER = "clarity-upscaler"
    FLUX_LORA = "flux-lora"


class UserRequirements(BaseModel):
    """Immutable description of what the user asked for."""

    purpose: Purpose
    quality: QualityLevel
    speed: SpeedPreference
    budget: BudgetLevel
    style: StylePreference
    output_count: int = Field(default=1, ge=1, le=10, description="Images per model")
    user_plan: PlanTier

    class Config:
        """Pydantic configuration."""

        use_enum_values = True
        frozen = True
        extra = "forbid"


class ImageCharacteristics(BaseModel):
    """Perceptual hints about the uploaded source photos."""

    resolution: Optional[str] = Field(default=None, description="WIDTHxHEIGHT")
    aspect_ratio: Optional[str] = Field(default=None)
    lighting: Optional[LightingType] = Field(default=None)
    complexity: Optional[InputComplexity] = Field(default=None)
    face_count: Optional[int] = Field(default=None, ge=0)
    background_type: Optional[BackgroundType] = Field(default=None)

    class Config:
        """Pydantic configuration."""

        use_enum_values = True
        frozen = True

    def difficulty(self) -> float:
        """
        Estimate how hard the inputs are to render well.

        Returns:
            Difficulty in [0, 1], 0 meaning no special handling needed
        """
        score = 0.0

        if self.complexity == InputComplexity.COMPLEX:
            score += 0.5
        elif self.complexity == InputComplexity.MODERATE:
            score += 0.25

        if self.face_count is not None and self.face_count > 1:
            score += 0.2

        if self.background_type == BackgroundType.DETAILED:
            score += 0.1

        pixels = self._parse_resolution()
        if pixels is not None and max(pixels) >= 2048:
            score += 0.2

        return min(score, 1.0)

    def _parse_resolution(self) -> Optional[tuple]:
        if not self.resolution:
            return None
        parts = self.resolution.lower().split("x")
        if len(parts) != 2:
            return None
        try:
            return int(parts[0]), int(parts[1])
        except ValueError:
            return None


class ModelCandidate(BaseModel):
    """A scored model considered for a request."""

    model_id: str = Field(description="Catalog model identifier")
    confidence: float = Field(ge=0, le=1, description="Estimated fit")
    estimated_cost: float = Field(ge=0, description="Estimated cost in USD")
    estimated_latency: float = Field(ge=0, description="Estimated seconds")
    quality_score: float = Field(default=0.5, ge=0, le=1)
    suitability_score: float = Field(default=0.5, ge=0, le=1)
    reasoning: List[str] = Field(default_factory=list)


class ModelSelection(BaseModel):
    """Ranked result of model selection."""

    primary_model: ModelCandidate
    alternative_models: List[ModelCandidate] = Field(default_factory=list)
    total_estimated_cost: float = Field(default=0.0)
    total_estimated_time: float = Field(default=0.0)
    recommendations: List[str] = Field(default_factory=list)
    cold_start: bool = Field(
        default=False,
        description="No performance history backed this ranking",
    )
    from_cache: bool = Field(default=False)

    def candidates(self) -> List[ModelCandidate]:
        """All candidates, primary first."""
        return [self.primary_model] + list(self.alternative_models)

    def model_ids(self) -> List[str]:
        """Model ids in rank order."""
        return [c.model_id for c in self.candidates()]


class GenerationRequest(BaseModel):
    """Logical identity of one generation, hashed into cache keys."""

    prompt: str = Field(min_length=1)
    model_id: Optional[str] = Field(default=None)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    user_id: str = Field(min_length=1)


class GeneratedImage(BaseModel):
    """One image produced by the backend."""

    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    content_type: Optional[str] = None


class GenerationResult(BaseModel):
    """Successful backend response for one model."""

    images: List[GeneratedImage] = Field(default_factory=list)
    timings: Dict[str, float] = Field(default_factory=dict)
    seed: Optional[int] = None
    has_nsfw_concepts: List[bool] = Field(default_factory=list)
    cost: Optional[float] = Field(default=None, description="Billed cost in USD")
    quality_score: Optional[float] = Field(default=None, ge=0, le=1)


class DispatchResult(BaseModel):
    """Outcome for one model in a multi-model dispatch."""

    model_id: str
    success: bool
    images: List[GeneratedImage] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    from_cache: bool = False
    timings: Dict[str, float] = Field(default_factory=dict)
    seed: Optional[int] = None
    cost: Optional[float] = None
    quality_score: Optional[float] = None
    latency_ms: Optional[int] = None


class CacheStats(BaseModel):
    """Per-request cache statistics reported to callers."""

    total_requests: int = 0
    cache_hits: int = 0
    cache_hit_rate: float = Field(default=0.0, description="Percentage 0-100")


class SelectionInfo(BaseModel):
    """Whether intelligent selection drove the model list."""

    used: bool = False
    confidence: float = 0.0


class GenerationResponse(BaseModel):
    """Aggregate response for a multi-model generation request."""

    prompt: str
    models: List[str]
    results: List[DispatchResult]
    intelligent_selection: SelectionInfo = Field(default_factory=SelectionInfo)
    cache_stats: CacheStats = Field(default_factory=CacheStats)

    @property
    def successful(self) -> List[DispatchResult]:
        return [r for r in self.results if r.success]


class JobStatus(BaseModel):
    """Status of an asynchronous backend job (training)."""

    job_id: str
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class TrainingJob(BaseModel):
    """Accepted training submission."""

    training_id: str
    name: str
    trigger_word: str
    quota_remaining: int
