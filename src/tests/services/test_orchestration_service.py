"""Tests for the generation orchestrator facade."""

import pytest

from src.config.orchestration_config import OrchestrationConfig
from src.config.plans import PlanLimits
from src.models.cache_models import CacheKind
from src.orchestration.cache_store import InMemoryCacheStore, TieredCacheStore
from src.orchestration.errors import QuotaExceeded, ValidationError
from src.orchestration.quota import InMemoryQuotaStore
from src.orchestration.tracker import InMemoryMetricsStore
from src.services.orchestration_service import GenerationOrchestrator
from src.services.plan_provider import PlanProvider, StaticPlanProvider
from src.tests.fakes import FixedClock, ScriptedBackend


def _config(**overrides):
    fields = {
        "fal_api_key": "test-key",
        "store_backend": "memory",
        "model_call_timeout": 5.0,
        "cache_op_timeout": 1.0,
        "generation_cache_ttl": 3600,
        "selection_cache_ttl": 600,
    }
    fields.update(overrides)
    return OrchestrationConfig(**fields)


REQUIREMENTS = {
    "purpose": "corporate",
    "quality": "premium",
    "speed": "balanced",
    "budget": "high",
    "style": "professional",
    "output_count": 2,
    "user_plan": "executive",
}


class TestGenerationOrchestrator:
    """Test suite for GenerationOrchestrator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FixedClock()
        self.backend = ScriptedBackend()
        self.cache_store = InMemoryCacheStore(clock=self.clock)
        self.plans = StaticPlanProvider({"pro": "professional", "exec": "executive"})
        self.orchestrator = GenerationOrchestrator(
            _config(),
            self.backend,
            self.cache_store,
            InMemoryQuotaStore(),
            InMemoryMetricsStore(),
            plan_provider=self.plans,
            clock=self.clock,
        )

    @pytest.mark.asyncio
    async def test_generate_with_manual_models(self):
        """Test a manual model list runs every model."""
        response = await self.orchestrator.generate(
            "pro", "linkedin headshot", models=["flux-pro", "imagen4"]
        )

        assert response.models == ["flux-pro", "imagen4"]
        assert len(response.successful) == 2
        assert response.intelligent_selection.used is False
        assert response.cache_stats.total_requests == 2
        assert response.cache_stats.cache_hits == 0

    @pytest.mark.asyncio
    async def test_default_options_merged(self):
        """Test defaults are applied beneath caller options."""
        await self.orchestrator.generate(
            "pro", "headshot", models=["flux-dev"], options={"guidance_scale": 5.0}
        )

        _, _, parameters = self.backend.calls[0]
        assert parameters["image_size"] == "portrait_4_3"
        assert parameters["num_inference_steps"] == 28
        assert parameters["enable_safety_checker"] is True
        assert parameters["num_images"] == 1
        assert parameters["guidance_scale"] == 5.0

    @pytest.mark.asyncio
    async def test_repeat_request_served_from_cache(self):
        """Test an identical second request is fully cached."""
        await self.orchestrator.generate("pro", "headshot", models=["flux-dev", "imagen4"])
        response = await self.orchestrator.generate("pro", "headshot", models=["flux-dev", "imagen4"])

        assert response.cache_stats.cache_hits == 2
        assert response.cache_stats.cache_hit_rate == 100.0
        assert self.backend.call_count() == 2

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected_before_quota(self):
        """Test validation happens before quota is touched."""
        with pytest.raises(ValidationError):
            await self.orchestrator.generate("pro", "   ", models=["flux-dev"])

        usage = await self.orchestrator.get_usage("pro")
        assert usage["prompts"].used == 0
        assert self.backend.call_count() == 0

    @pytest.mark.asyncio
    async def test_missing_models_rejected(self):
        """Test manual mode needs at least one model."""
        with pytest.raises(ValidationError):
            await self.orchestrator.generate("pro", "headshot", models=[])

    @pytest.mark.asyncio
    async def test_unknown_model_rejected(self):
        """Test unknown model ids are rejected."""
        with pytest.raises(ValidationError):
            await self.orchestrator.generate("pro", "headshot", models=["dall-e"])

    @pytest.mark.asyncio
    async def test_manual_model_allowance(self):
        """Test the basic plan may pick at most two models."""
        with pytest.raises(ValidationError):
            await self.orchestrator.generate(
                "someone", "headshot", models=["flux-dev", "imagen4", "flux-pro"]
            )

    @pytest.mark.asyncio
    async def test_premium_model_needs_paid_plan(self):
        """Test basic users cannot pick premium models."""
        with pytest.raises(ValidationError):
            await self.orchestrator.generate("someone", "headshot", models=["flux-pro-ultra"])

    @pytest.mark.asyncio
    async def test_prompt_quota_enforced(self):
        """Test the eleventh prompt of a basic user is refused before any call."""
        for i in range(10):
            await self.orchestrator.generate("someone", f"headshot {i}", models=["flux-dev"])

        with pytest.raises(QuotaExceeded):
            await self.orchestrator.generate("someone", "one more", models=["flux-dev"])

        assert self.backend.call_count() == 10

    @pytest.mark.asyncio
    async def test_intelligent_selection(self):
        """Test selection picks models within the plan allowance."""
        response = await self.orchestrator.generate(
            "exec",
            "executive portrait",
            use_intelligent_selection=True,
            requirements=REQUIREMENTS,
        )

        assert response.intelligent_selection.used is True
        assert 0 < response.intelligent_selection.confidence <= 1
        assert 1 <= len(response.models) <= 3
        _, _, parameters = self.backend.calls[0]
        assert parameters["num_images"] == 2

    @pytest.mark.asyncio
    async def test_plan_comes_from_provider(self):
        """Test a basic user claiming executive still gets one model."""
        response = await self.orchestrator.generate(
            "someone",
            "portrait",
            use_intelligent_selection=True,
            requirements=REQUIREMENTS,
        )

        assert len(response.models) == 1

    @pytest.mark.asyncio
    async def test_intelligent_selection_needs_requirements(self):
        """Test intelligent selection without requirements is rejected."""
        with pytest.raises(ValidationError):
            await self.orchestrator.generate("exec", "portrait", use_intelligent_selection=True)

    @pytest.mark.asyncio
    async def test_train_reserves_quota(self):
        """Test training consumes the training quota."""
        job = await self.orchestrator.train("someone", "https://files/photos.zip", "Alex", "ohwx")

        assert job.training_id == "train-1"
        assert job.quota_remaining == 0

        with pytest.raises(QuotaExceeded):
            await self.orchestrator.train("someone", "https://files/photos.zip", "Alex", "ohwx")
        assert len(self.backend.trainings) == 1

    @pytest.mark.asyncio
    async def test_train_requires_fields(self):
        """Test missing training fields are rejected."""
        with pytest.raises(ValidationError):
            await self.orchestrator.train("someone", "", "Alex", "ohwx")

    @pytest.mark.asyncio
    async def test_training_status(self):
        """Test status is read from the backend."""
        status = await self.orchestrator.get_training_status("train-1")
        assert status.status == "IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_usage_reports_every_quota(self):
        """Test usage covers all quota types."""
        await self.orchestrator.generate("pro", "headshot", models=["flux-dev"])

        usage = await self.orchestrator.get_usage("pro")

        assert set(usage) == {"training_runs", "prompts", "enhancements"}
        assert usage["prompts"].used == 1
        assert usage["prompts"].limit == 100

    @pytest.mark.asyncio
    async def test_cache_management(self):
        """Test listing, invalidating and clearing cache entries."""
        await self.orchestrator.generate("pro", "headshot", models=["flux-dev", "imagen4"])

        entries = await self.orchestrator.list_cache_entries(kind=CacheKind.GENERATION, user_id="pro")
        assert len(entries) == 2

        assert await self.orchestrator.invalidate_cache_entry(entries[0].key) is True
        assert await self.orchestrator.clear_cache(CacheKind.GENERATION) == 1
        assert self.orchestrator.cache_stats()["cache"]["errors"] == 0

    @pytest.mark.asyncio
    async def test_model_performance(self):
        """Test generation history shows up in the model report."""
        await self.orchestrator.generate("pro", "headshot", models=["flux-dev"])
        await self.orchestrator.tracker.flush()

        report = await self.orchestrator.model_performance("flux-dev")

        assert report.sample_size == 1
        assert report.success_rate == 1.0

    @pytest.mark.asyncio
    async def test_model_performance_unknown_model(self):
        """Test reports for unknown models are rejected."""
        with pytest.raises(ValidationError):
            await self.orchestrator.model_performance("dall-e")

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        """Test start and close manage the worker and backend."""
        await self.orchestrator.start()
        await self.orchestrator.generate("pro", "headshot", models=["flux-dev"])
        await self.orchestrator.aclose()

        assert self.backend.closed is True
        assert self.orchestrator.tracker.get_stats()["recorded"] == 1

    @pytest.mark.asyncio
    async def test_from_config_memory(self):
        """Test the in-memory configuration builds without external services."""
        orchestrator = GenerationOrchestrator.from_config(_config())

        assert isinstance(orchestrator.cache.store, InMemoryCacheStore)
        await orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_from_config_redis_uses_memory_tier(self):
        """Test the redis configuration puts a memory tier in front of redis."""
        orchestrator = GenerationOrchestrator.from_config(
            _config(store_backend="redis", redis_url="redis://localhost:6379/0", memory_tier_ttl=120)
        )

        assert isinstance(orchestrator.cache.store, TieredCacheStore)
        assert isinstance(orchestrator.cache.store.front, InMemoryCacheStore)
        assert orchestrator.cache.store.front_ttl == 120
        await orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_bad_image_characteristics_rejected_before_quota(self):
        """Test invalid source-photo hints fail without using a prompt."""
        with pytest.raises(ValidationError):
            await self.orchestrator.generate(
                "exec",
                "portrait",
                use_intelligent_selection=True,
                requirements=REQUIREMENTS,
                image_characteristics={"complexity": "extreme"},
            )

        usage = await self.orchestrator.get_usage("exec")
        assert usage["prompts"].used == 0
        assert self.backend.call_count() == 0

    @pytest.mark.asyncio
    async def test_nan_option_rejected_before_quota(self):
        """Test options that cannot be keyed fail as ValidationError without using a prompt."""
        with pytest.raises(ValidationError):
            await self.orchestrator.generate(
                "pro", "headshot", models=["flux-dev"], options={"guidance_scale": float("nan")}
            )

        usage = await self.orchestrator.get_usage("pro")
        assert usage["prompts"].used == 0
        assert self.backend.call_count() == 0


class WideBasicPlanProvider(PlanProvider):
    """Basic-tier plan with a larger model allowance than the built-in table."""

    async def get_plan(self, user_id):
        return PlanLimits(
            tier="basic",
            monthly_training_limit=1,
            monthly_prompt_limit=10,
            monthly_enhancement_limit=5,
            max_parallel_models=3,
            max_manual_models=2,
        )


class TestCustomPlanProvider:
    """Test suite for plans resolved by a custom provider."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FixedClock()
        self.backend = ScriptedBackend()
        self.orchestrator = GenerationOrchestrator(
            _config(),
            self.backend,
            InMemoryCacheStore(clock=self.clock),
            InMemoryQuotaStore(),
            InMemoryMetricsStore(),
            plan_provider=WideBasicPlanProvider(),
            clock=self.clock,
        )

    @pytest.mark.asyncio
    async def test_generate_uses_provider_allowance(self):
        """Test intelligent generation honours the provider's model allowance."""
        response = await self.orchestrator.generate(
            "someone", "portrait", use_intelligent_selection=True, requirements=REQUIREMENTS
        )

        assert 1 < len(response.models) <= 3
        assert not any(self.orchestrator.catalog.require(m).premium for m in response.models)

    @pytest.mark.asyncio
    async def test_select_models_uses_provider_allowance(self):
        """Test ranking for a user honours the provider's plan."""
        selection = await self.orchestrator.select_models(REQUIREMENTS, user_id="someone")

        assert 1 < len(selection.model_ids()) <= 3
        assert not any(self.orchestrator.catalog.require(m).premium for m in selection.model_ids())
