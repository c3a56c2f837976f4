"""High-level generation service integrating quotas, selection, caching and dispatch."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from ..config.model_catalog import ModelCatalog
from ..config.orchestration_config import OrchestrationConfig
from ..models.cache_models import CacheEntry, CacheKind
from ..models.generation_models import (
    CacheStats,
    GenerationRequest,
    GenerationResponse,
    ImageCharacteristics,
    JobStatus,
    ModelSelection,
    SelectionInfo,
    TrainingJob,
    UserRequirements,
)
from ..models.metrics_models import PerformanceAggregate
from ..models.quota_models import QuotaDecision, QuotaType
from ..orchestration import (
    CacheStore,
    FailOpenCache,
    GenerationDispatcher,
    InMemoryCacheStore,
    InMemoryMetricsStore,
    InMemoryQuotaStore,
    ModelSelector,
    NoEligibleModel,
    PerformanceTracker,
    QuotaEnforcer,
    RedisCacheStore,
    RedisMetricsStore,
    RedisQuotaStore,
    TieredCacheStore,
    ValidationError,
)
from ..orchestration.backends import FalBackend, GenerationBackend
from ..orchestration.keys import generation_key
from ..orchestration.quota import QuotaStore
from ..orchestration.tracker import MetricsStore
from .plan_provider import PlanProvider, StaticPlanProvider

logger = logging.getLogger(__name__)

# Merged under caller options for every generation
DEFAULT_GENERATION_OPTIONS: Dict[str, Any] = {
    "num_images": 1,
    "image_size": "portrait_4_3",
    "guidance_scale": 3.5,
    "num_inference_steps": 28,
    "enable_safety_checker": True,
}


def _coerce(model_cls, value, name: str):
    if isinstance(value, model_cls):
        return value
    try:
        return model_cls.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {name}: {e}") from e


class GenerationOrchestrator:
    """
    Caller-facing generation service.

    PATTERN: Facade over quota, selection, cache and dispatch components
    CRITICAL: Input is validated and quota reserved before any paid call
    GOTCHA: A reserved prompt unit is not refunded if every model fails
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        backend: GenerationBackend,
        cache_store: CacheStore,
        quota_store: QuotaStore,
        metrics_store: MetricsStore,
        plan_provider: Optional[PlanProvider] = None,
        catalog: Optional[ModelCatalog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        redis_client=None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Orchestration configuration
            backend: Generation backend client
            cache_store: Store for generation, selection and preference caches
            quota_store: Store for quota windows
            metrics_store: Store for performance metrics
            plan_provider: Plan lookup (every user on basic if None)
            catalog: Model catalog (default catalog if None)
            clock: Time source (defaults to datetime.now)
            redis_client: Shared Redis client to close on shutdown
        """
        self.config = config
        self.backend = backend
        self.catalog = catalog or ModelCatalog()
        self.plan_provider = plan_provider or StaticPlanProvider()
        self.clock = clock or datetime.now
        self.logger = logging.getLogger(__name__)
        self._redis = redis_client

        self.cache = FailOpenCache(cache_store, timeout=config.cache_op_timeout)
        self.tracker = PerformanceTracker(
            metrics_store,
            queue_size=config.metrics_queue_size,
            window_size=config.history_window_size,
            window=timedelta(days=config.history_window_days),
            clock=self.clock,
        )
        self.quota = QuotaEnforcer(quota_store, clock=self.clock)
        self.selector = ModelSelector(
            self.catalog,
            self.tracker,
            self.cache,
            selection_ttl=config.selection_cache_ttl,
            preference_ttl=config.user_preference_cache_ttl,
            min_history_samples=config.min_history_samples,
            cold_start_cap=config.cold_start_confidence_cap,
            high_confidence_threshold=config.high_confidence_threshold,
            clock=self.clock,
        )
        self.dispatcher = GenerationDispatcher(
            backend,
            self.cache,
            self.tracker,
            catalog=self.catalog,
            generation_ttl=config.generation_cache_ttl,
            call_timeout=config.model_call_timeout,
            clock=self.clock,
        )

        self.logger.info(
            f"Generation orchestrator initialized with {len(self.catalog)} models "
            f"({config.store_backend} stores)"
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[OrchestrationConfig] = None,
        plan_provider: Optional[PlanProvider] = None,
    ) -> "GenerationOrchestrator":
        """
        Build an orchestrator with stores chosen by configuration.

        Args:
            config: Orchestration configuration (loads from env if None)
            plan_provider: Plan lookup

        Returns:
            Configured GenerationOrchestrator
        """
        config = config or OrchestrationConfig()
        catalog = ModelCatalog()
        redis_client = None

        if config.store_backend == "redis":
            redis_client = redis.from_url(config.redis_url)
            cache_store = TieredCacheStore(
                InMemoryCacheStore(max_size=config.cache_max_size),
                RedisCacheStore(redis_client, prefix=config.redis_prefix),
                front_ttl=config.memory_tier_ttl,
            )
            quota_store = RedisQuotaStore(redis_client, prefix=config.redis_prefix)
            metrics_store = RedisMetricsStore(redis_client, prefix=config.redis_prefix)
        else:
            cache_store = InMemoryCacheStore(max_size=config.cache_max_size)
            quota_store = InMemoryQuotaStore()
            metrics_store = InMemoryMetricsStore()

        if not config.fal_api_key:
            logger.warning("FAL_API_KEY not configured; generation calls will be rejected")

        backend = FalBackend(
            config.fal_api_key,
            catalog=catalog,
            base_url=config.fal_base_url,
            queue_url=config.fal_queue_url,
            timeout=config.model_call_timeout,
        )

        return cls(
            config,
            backend,
            cache_store,
            quota_store,
            metrics_store,
            plan_provider=plan_provider,
            catalog=catalog,
            redis_client=redis_client,
        )

    async def start(self) -> None:
        """Start background workers."""
        await self.tracker.start()

    async def aclose(self) -> None:
        """Finish late writes, flush metrics and release connections."""
        await self.dispatcher.drain()
        await self.tracker.stop()
        await self.backend.close()
        if self._redis is not None:
            await self._redis.aclose()
        self.logger.info("Generation orchestrator closed")

    async def select_models(
        self,
        requirements: Union[UserRequirements, Dict[str, Any]],
        image_characteristics: Optional[Union[ImageCharacteristics, Dict[str, Any]]] = None,
        user_id: Optional[str] = None,
    ) -> ModelSelection:
        """
        Rank models for a requirement set.

        GOTCHA: With a user id, the user's plan replaces requirements.user_plan
        """
        if not user_id:
            return await self.selector.select(requirements, image_characteristics)

        requirements = _coerce(UserRequirements, requirements, "requirements")
        plan = await self.plan_provider.get_plan(user_id)
        return await self.selector.select(
            requirements.model_copy(update={"user_plan": plan.tier}),
            image_characteristics,
            user_id,
            plan=plan,
        )

    async def remember_preferences(self, user_id: str, favorite_models: List[str]) -> bool:
        """Store a user's favourite models for future selections."""
        return await self.selector.remember_preferences(user_id, favorite_models)

    async def generate(
        self,
        user_id: str,
        prompt: str,
        models: Optional[List[str]] = None,
        use_intelligent_selection: bool = False,
        requirements: Optional[Union[UserRequirements, Dict[str, Any]]] = None,
        image_characteristics: Optional[Union[ImageCharacteristics, Dict[str, Any]]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResponse:
        """
        Generate headshots with one or more models.

        PATTERN: Validate, reserve quota, pick models, dispatch
        CRITICAL: QuotaExceeded is raised before any backend call

        Args:
            user_id: Requesting user
            prompt: Text prompt
            models: Model ids to run when not using intelligent selection
            use_intelligent_selection: Let the selector pick models
            requirements: User requirements for intelligent selection
            image_characteristics: Optional hints about the source photos
            options: Generation options merged over the defaults

        Returns:
            GenerationResponse with one result per model

        Raises:
            ValidationError: On empty prompt, missing or unknown models
            QuotaExceeded: When the prompt quota is used up
            NoEligibleModel: When selection finds no model for the plan
            InfrastructureError: When the backend is unreachable for all models
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt is required")

        if use_intelligent_selection:
            if requirements is None:
                raise ValidationError("Requirements are required for intelligent selection")
            requirements = _coerce(UserRequirements, requirements, "requirements")
            if image_characteristics is not None:
                image_characteristics = _coerce(
                    ImageCharacteristics, image_characteristics, "image_characteristics"
                )
        else:
            if not models:
                raise ValidationError("At least one model is required")
            unknown = [m for m in models if m not in self.catalog]
            if unknown:
                raise ValidationError(f"Unknown models: {unknown}")

        plan = await self.plan_provider.get_plan(user_id)

        if not use_intelligent_selection:
            models = list(dict.fromkeys(models))
            if len(models) > plan.max_manual_models:
                raise ValidationError(
                    f"{plan.tier} plan allows at most {plan.max_manual_models} "
                    f"models per request"
                )
            locked = [
                m for m in models
                if self.catalog.require(m).premium and not plan.premium_access
            ]
            if locked:
                raise ValidationError(f"Models require a paid plan: {locked}")
        elif not self.catalog.eligible_for(plan.premium_access):
            raise NoEligibleModel(f"No model available for plan {plan.tier}")

        parameters = dict(DEFAULT_GENERATION_OPTIONS)
        if use_intelligent_selection:
            parameters["num_images"] = requirements.output_count
        parameters.update(options or {})
        try:
            request = GenerationRequest(prompt=prompt, parameters=parameters, user_id=user_id)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid generation request: {e}") from e
        # Rejects options that cannot be cached (NaN, unsupported types)
        generation_key(request)

        await self.quota.require(user_id, QuotaType.PROMPTS, plan)

        if use_intelligent_selection:
            requirements = requirements.model_copy(update={"user_plan": plan.tier})
            selection = await self.selector.select(
                requirements, image_characteristics, user_id, plan=plan
            )
            model_ids = selection.model_ids()
            selection_info = SelectionInfo(
                used=True,
                confidence=selection.primary_model.confidence,
            )
        else:
            model_ids = models
            selection_info = SelectionInfo()

        results = await self.dispatcher.generate(request, model_ids)

        hits = sum(1 for r in results if r.from_cache)
        cache_stats = CacheStats(
            total_requests=len(results),
            cache_hits=hits,
            cache_hit_rate=round(hits / len(results) * 100, 2) if results else 0.0,
        )

        self.logger.info(
            f"Generation for {user_id}: {len(results)} model(s), "
            f"{hits} from cache"
        )
        return GenerationResponse(
            prompt=prompt,
            models=model_ids,
            results=results,
            intelligent_selection=selection_info,
            cache_stats=cache_stats,
        )

    async def train(
        self,
        user_id: str,
        images_data_url: str,
        name: str,
        trigger_word: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> TrainingJob:
        """
        Submit a personalization training run.

        Args:
            user_id: Requesting user
            images_data_url: URL of the zipped training photos
            name: Model name
            trigger_word: Token that invokes the trained subject
            options: Extra training options

        Returns:
            TrainingJob with the backend job id and remaining quota

        Raises:
            ValidationError: On missing fields
            QuotaExceeded: When the training quota is used up
            ModelInvocationError: When the backend rejects the submission
        """
        if not user_id:
            raise ValidationError("user_id is required")
        missing = [
            field for field, value in (
                ("images_data_url", images_data_url),
                ("name", name),
                ("trigger_word", trigger_word),
            )
            if not value
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {missing}")

        plan = await self.plan_provider.get_plan(user_id)
        decision = await self.quota.require(user_id, QuotaType.TRAINING_RUNS, plan)

        training_id = await self.backend.train(
            images_data_url, name, trigger_word, options or {}
        )
        return TrainingJob(
            training_id=training_id,
            name=name,
            trigger_word=trigger_word,
            quota_remaining=decision.remaining,
        )

    async def get_training_status(self, job_id: str) -> JobStatus:
        if not job_id:
            raise ValidationError("job_id is required")
        return await self.backend.get_status(job_id)

    async def get_usage(self, user_id: str) -> Dict[str, QuotaDecision]:
        """
        Current usage for every quota type.

        Returns:
            Mapping of quota type value to QuotaDecision
        """
        plan = await self.plan_provider.get_plan(user_id)
        return {
            quota_type.value: await self.quota.get_usage(user_id, quota_type, plan)
            for quota_type in QuotaType
        }

    def cache_stats(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.get_stats(),
            "metrics": self.tracker.get_stats(),
        }

    async def clear_cache(self, kind: Optional[CacheKind] = None) -> int:
        """Remove cached entries of one kind, or of every kind."""
        removed = await self.cache.clear(kind)
        self.logger.info(f"Cleared {removed} cache entries ({kind or 'all kinds'})")
        return removed

    async def invalidate_cache_entry(self, key: str) -> bool:
        return await self.cache.invalidate(key)

    async def list_cache_entries(
        self,
        kind: Optional[CacheKind] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[CacheEntry]:
        return await self.cache.recent(kind=kind, user_id=user_id, limit=limit)

    async def model_performance(
        self,
        model_id: str,
        window_days: Optional[int] = None,
    ) -> PerformanceAggregate:
        """
        Performance report for one model.

        Raises:
            ValidationError: On an unknown model id
        """
        if model_id not in self.catalog:
            raise ValidationError(f"Unknown model: {model_id}")
        window = timedelta(days=window_days) if window_days else None
        return await self.tracker.model_report(model_id, window)
