"""Intelligent model selection with performance-history feedback."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from ..config.model_catalog import ModelCatalog, ModelProfile
from ..config.plans import PLAN_LIMITS, PlanLimits
from ..models.cache_models import CacheKind, CacheMetadata
from ..models.generation_models import (
    ImageCharacteristics,
    ModelCandidate,
    ModelSelection,
    PlanTier,
    UserRequirements,
)
from ..models.metrics_models import PerformanceAggregate
from .cache_store import FailOpenCache, build_entry
from .errors import NoEligibleModel, ValidationError
from .keys import selection_key, user_preference_key
from .tracker import PerformanceTracker

logger = logging.getLogger(__name__)

# Score weights; cold start drops the history term and renormalizes
COMPATIBILITY_WEIGHT = 0.5
EFFICIENCY_WEIGHT = 0.25
HISTORY_WEIGHT = 0.25

# Share of the speed/budget term taken by measured latency/cost
SPEED_MEASURE_WEIGHT = {"fast": 0.5, "balanced": 0.3, "quality": 0.1}
BUDGET_MEASURE_WEIGHT = {"low": 0.5, "medium": 0.3, "high": 0.15, "unlimited": 0.0}

DIFFICULTY_BIAS = 0.2
PREFERENCE_BONUS = 0.1
MIN_ALTERNATIVE_CONFIDENCE = 0.3


class ModelSelector:
    """
    Ranks catalog models for a set of user requirements.

    PATTERN: Filter by plan, score, rank, truncate to plan allowance
    CRITICAL: Same inputs and history always give the same ranking
    GOTCHA: Without history, confidence is capped below the
        high-confidence threshold
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        tracker: PerformanceTracker,
        cache: FailOpenCache,
        plan_table: Optional[Dict[PlanTier, PlanLimits]] = None,
        selection_ttl: int = 600,
        preference_ttl: int = 86400,
        min_history_samples: int = 10,
        cold_start_cap: float = 0.75,
        high_confidence_threshold: float = 0.8,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize model selector.

        Args:
            catalog: Model catalog
            tracker: Performance history source
            cache: Fail-open cache for selections and preferences
            plan_table: Tier to limits mapping (defaults to PLAN_LIMITS)
            selection_ttl: Seconds a selection stays cached
            preference_ttl: Seconds stored preferences stay cached
            min_history_samples: Samples at which history has half weight
            cold_start_cap: Maximum confidence without history
            high_confidence_threshold: Confidence considered reliable
            clock: Time source (defaults to datetime.now)
        """
        self.catalog = catalog
        self.tracker = tracker
        self.cache = cache
        self.plan_table = plan_table or PLAN_LIMITS
        self.selection_ttl = selection_ttl
        self.preference_ttl = preference_ttl
        self.min_history_samples = min_history_samples
        self.cold_start_cap = cold_start_cap
        self.high_confidence_threshold = high_confidence_threshold
        self.clock = clock or datetime.now
        self.logger = logging.getLogger(__name__)

    async def select(
        self,
        requirements: Union[UserRequirements, Dict[str, Any]],
        image_characteristics: Optional[Union[ImageCharacteristics, Dict[str, Any]]] = None,
        user_id: Optional[str] = None,
        plan: Optional[PlanLimits] = None,
    ) -> ModelSelection:
        """
        Select models for a request.

        PATTERN: Cache lookup, then filter, score and rank

        Args:
            requirements: User requirements (model or dict)
            image_characteristics: Optional hints about the source photos
            user_id: Requesting user, for preferences and cache scoping
            plan: Resolved plan limits (looked up from requirements.user_plan
                if None)

        Returns:
            ModelSelection ordered by confidence, primary first

        Raises:
            ValidationError: On malformed requirements
            NoEligibleModel: When the plan can use no catalog model
        """
        requirements = self._coerce(UserRequirements, requirements, "requirements")
        if image_characteristics is not None:
            image_characteristics = self._coerce(
                ImageCharacteristics, image_characteristics, "image_characteristics"
            )

        if plan is None:
            plan = self.plan_table[PlanTier(requirements.user_plan)]
        favorites = await self._favorites(user_id)

        key = selection_key(
            requirements, image_characteristics, user_id, plan, favorites
        )
        cached = await self.cache.lookup(key)
        if cached is not None:
            try:
                selection = ModelSelection.model_validate(cached.payload)
                self.logger.debug(f"Selection cache hit for {user_id}")
                return selection.model_copy(update={"from_cache": True})
            except PydanticValidationError as e:
                self.logger.warning(f"Discarding unreadable cached selection: {e}")

        eligible = self.catalog.eligible_for(plan.premium_access)
        if not eligible:
            self.logger.error(
                f"No eligible model for plan {plan.tier}; catalog has {len(self.catalog)} models"
            )
            raise NoEligibleModel(f"No model available for plan {plan.tier}")

        history = await self._history([p.model_id for p in eligible])
        cold_start = all(agg.sample_size == 0 for agg in history.values())
        difficulty = image_characteristics.difficulty() if image_characteristics else 0.0

        estimates = {
            p.model_id: self._estimate(p, history.get(p.model_id), requirements.output_count)
            for p in eligible
        }
        fastest = min(latency for _, latency in estimates.values())
        cheapest = min(cost for cost, _ in estimates.values())

        candidates = [
            self._score(
                profile,
                requirements,
                history.get(profile.model_id),
                estimates[profile.model_id],
                fastest,
                cheapest,
                difficulty,
                profile.model_id in favorites,
                cold_start,
            )
            for profile in eligible
        ]
        ranked = self._rank(candidates)[:plan.max_parallel_models]

        selection = ModelSelection(
            primary_model=ranked[0],
            alternative_models=ranked[1:],
            total_estimated_cost=round(sum(c.estimated_cost for c in ranked), 4),
            total_estimated_time=max(c.estimated_latency for c in ranked),
            recommendations=self._recommendations(ranked[0], requirements),
            cold_start=cold_start,
        )

        await self.cache.save(
            build_entry(
                key,
                CacheKind.MODEL_SELECTION,
                selection.model_dump(mode="json"),
                self.selection_ttl,
                CacheMetadata(user_id=user_id),
                now=self.clock(),
            )
        )

        self.logger.info(
            f"Selected {selection.model_ids()} for {user_id or 'anonymous'} "
            f"(confidence: {selection.primary_model.confidence:.2f}, "
            f"cold_start: {cold_start})"
        )
        return selection

    def is_high_confidence(self, selection: ModelSelection) -> bool:
        """True when the primary model's confidence reaches the threshold."""
        return selection.primary_model.confidence >= self.high_confidence_threshold

    async def remember_preferences(self, user_id: str, favorite_models: List[str]) -> bool:
        """
        Store a user's favourite models.

        Args:
            user_id: User identifier
            favorite_models: Catalog model ids the user prefers

        Returns:
            True if stored, False if the cache skipped the write

        Raises:
            ValidationError: On an empty user id or unknown model id
        """
        if not user_id:
            raise ValidationError("user_id is required")
        unknown = [m for m in favorite_models if m not in self.catalog]
        if unknown:
            raise ValidationError(f"Unknown models: {unknown}")

        entry = build_entry(
            user_preference_key(user_id),
            CacheKind.USER_PREFERENCE,
            {"favorite_models": list(favorite_models)},
            self.preference_ttl,
            CacheMetadata(user_id=user_id),
            now=self.clock(),
        )
        return await self.cache.save(entry)

    def _coerce(self, model_cls, value, name: str):
        if isinstance(value, model_cls):
            return value
        try:
            return model_cls.model_validate(value)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {name}: {e}") from e

    async def _history(self, model_ids: List[str]) -> Dict[str, PerformanceAggregate]:
        """Aggregates per model; tracker trouble counts as no history."""
        try:
            return await self.tracker.aggregate_many(model_ids)
        except Exception as e:
            self.logger.warning(f"Performance history unavailable, ranking cold: {e}")
            return {m: PerformanceAggregate(model_id=m) for m in model_ids}

    async def _favorites(self, user_id: Optional[str]) -> List[str]:
        if not user_id:
            return []
        entry = await self.cache.lookup(user_preference_key(user_id))
        if entry is None:
            return []
        return list(entry.payload.get("favorite_models", []))

    def _estimate(
        self,
        profile: ModelProfile,
        aggregate: Optional[PerformanceAggregate],
        output_count: int,
    ) -> Tuple[float, float]:
        """
        Estimated (cost, latency seconds) for a request.

        Observed averages replace catalog figures once enough samples exist.
        """
        cost = profile.cost_per_image
        latency = profile.base_latency
        if aggregate is not None and aggregate.sample_size >= self.min_history_samples:
            if aggregate.avg_cost > 0:
                cost = aggregate.avg_cost
            if aggregate.avg_latency > 0:
                latency = aggregate.avg_latency / 1000
        return cost * output_count, latency * output_count

    def _history_score(self, aggregate: Optional[PerformanceAggregate]) -> float:
        """Observed reliability shrunk toward 0.5 for small samples."""
        if aggregate is None or aggregate.sample_size == 0:
            return 0.5
        quality = (
            aggregate.avg_quality
            if aggregate.avg_quality is not None
            else aggregate.success_rate
        )
        observed = 0.5 * aggregate.success_rate + 0.5 * quality
        n = aggregate.sample_size
        weight = n / (n + self.min_history_samples)
        return 0.5 + weight * (observed - 0.5)

    def _score(
        self,
        profile: ModelProfile,
        requirements: UserRequirements,
        aggregate: Optional[PerformanceAggregate],
        estimate: Tuple[float, float],
        fastest: float,
        cheapest: float,
        difficulty: float,
        is_favorite: bool,
        cold_start: bool,
    ) -> ModelCandidate:
        """
        Score one model.

        Returns:
            ModelCandidate with confidence in [0, 1]
        """
        reasoning: List[str] = []

        quality = profile.quality_fit.get(requirements.quality, 0.5)
        if quality > 0.8:
            reasoning.append(f"Excellent quality match for {requirements.quality} requirements")
        purpose = profile.purpose_fit.get(requirements.purpose, 0.5)
        if purpose > 0.8:
            reasoning.append(f"Highly suitable for {requirements.purpose} use case")
        style = profile.style_fit.get(requirements.style, 0.5)
        if style > 0.8:
            reasoning.append(f"Perfect style match for {requirements.style} aesthetic")
        compatibility = (quality + purpose + style) / 3

        cost, latency = estimate
        speed_weight = SPEED_MEASURE_WEIGHT.get(requirements.speed, 0.3)
        speed = (
            (1 - speed_weight) * profile.speed_fit.get(requirements.speed, 0.5)
            + speed_weight * (fastest / latency)
        )
        if speed > 0.8:
            reasoning.append(f"Optimal speed for {requirements.speed} preference")
        budget_weight = BUDGET_MEASURE_WEIGHT.get(requirements.budget, 0.3)
        budget = (
            (1 - budget_weight) * profile.budget_fit.get(requirements.budget, 0.5)
            + budget_weight * (cheapest / cost)
        )
        if budget > 0.8:
            reasoning.append(f"Cost-effective for {requirements.budget} budget")
        efficiency = (speed + budget) / 2

        if cold_start:
            score = (
                COMPATIBILITY_WEIGHT * compatibility + EFFICIENCY_WEIGHT * efficiency
            ) / (COMPATIBILITY_WEIGHT + EFFICIENCY_WEIGHT)
        else:
            history = self._history_score(aggregate)
            score = (
                COMPATIBILITY_WEIGHT * compatibility
                + EFFICIENCY_WEIGHT * efficiency
                + HISTORY_WEIGHT * history
            )
            if aggregate is not None and aggregate.sample_size > 0:
                reasoning.append(
                    f"{aggregate.success_rate:.0%} success over "
                    f"{aggregate.sample_size} recent generations"
                )

        if difficulty > 0:
            score += difficulty * (profile.detail_strength - 0.5) * DIFFICULTY_BIAS
            if profile.detail_strength >= 0.8:
                reasoning.append("Handles complex source photos well")

        if is_favorite:
            score += PREFERENCE_BONUS
            reasoning.append("Based on your previous preferences")

        confidence = min(max(score, 0.0), 1.0)
        if cold_start:
            confidence = min(confidence, self.cold_start_cap)

        if (
            aggregate is not None
            and aggregate.avg_quality is not None
            and aggregate.sample_size >= self.min_history_samples
        ):
            quality_score = aggregate.avg_quality
        else:
            quality_score = quality

        return ModelCandidate(
            model_id=profile.model_id,
            confidence=round(confidence, 6),
            estimated_cost=round(cost, 4),
            estimated_latency=round(latency, 3),
            quality_score=quality_score,
            suitability_score=round(compatibility, 6),
            reasoning=reasoning,
        )

    def _rank(self, candidates: List[ModelCandidate]) -> List[ModelCandidate]:
        """
        Order candidates and drop weak alternatives.

        PATTERN: Confidence desc, then cost, latency and id ascending
        GOTCHA: The top candidate is kept whatever its confidence
        """
        ordered = sorted(
            candidates,
            key=lambda c: (-c.confidence, c.estimated_cost, c.estimated_latency, c.model_id),
        )
        primary, rest = ordered[0], ordered[1:]
        return [primary] + [c for c in rest if c.confidence >= MIN_ALTERNATIVE_CONFIDENCE]

    def _recommendations(
        self,
        primary: ModelCandidate,
        requirements: UserRequirements,
    ) -> List[str]:
        recommendations: List[str] = []

        if primary.confidence > 0.9:
            recommendations.append("Excellent model match for your requirements")
        elif primary.confidence > 0.7:
            recommendations.append("Good model match with minor trade-offs")
        else:
            recommendations.append("Consider adjusting requirements for better results")

        if requirements.budget == "low" and primary.estimated_cost > 5:
            recommendations.append("Consider flux-dev for more cost-effective results")

        if requirements.speed == "fast" and primary.estimated_latency > 120:
            recommendations.append("For faster results, consider flux-dev or aura-sr")

        if requirements.quality == "ultra" and primary.quality_score < 0.9:
            recommendations.append("For maximum quality, consider flux-pro-ultra")

        return recommendations
