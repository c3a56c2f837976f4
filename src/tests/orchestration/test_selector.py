"""Tests for intelligent model selection."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from src.config.model_catalog import DEFAULT_CATALOG, ModelCatalog
from src.config.plans import PlanLimits
from src.models.metrics_models import PerformanceMetric
from src.orchestration.cache_store import FailOpenCache, InMemoryCacheStore
from src.orchestration.errors import NoEligibleModel, ValidationError
from src.orchestration.selector import ModelSelector
from src.orchestration.tracker import InMemoryMetricsStore, PerformanceTracker
from src.tests.fakes import FixedClock


def _requirements(**overrides):
    fields = {
        "purpose": "professional",
        "quality": "premium",
        "speed": "balanced",
        "budget": "medium",
        "style": "professional",
        "output_count": 1,
        "user_plan": "professional",
    }
    fields.update(overrides)
    return fields


class TestModelSelector:
    """Test suite for ModelSelector."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FixedClock()
        self.catalog = ModelCatalog()
        self.tracker = PerformanceTracker(InMemoryMetricsStore(), clock=self.clock)
        self.store = InMemoryCacheStore(clock=self.clock)
        self.cache = FailOpenCache(self.store)
        self.selector = self._selector(self.catalog)

    def _selector(self, catalog):
        return ModelSelector(
            catalog,
            self.tracker,
            self.cache,
            selection_ttl=600,
            min_history_samples=10,
            cold_start_cap=0.75,
            high_confidence_threshold=0.8,
            clock=self.clock,
        )

    async def _seed_history(self, model_id, success, count=40, latency=100000.0, cost=2.0, quality=None):
        for minute in range(count):
            self.tracker.record(
                PerformanceMetric(
                    model_id=model_id,
                    timestamp=self.clock() - timedelta(minutes=minute),
                    processing_time=latency,
                    success=success,
                    cost=cost if success else 0.0,
                    quality_score=quality if success else None,
                    error_type=None if success else "invocation_error",
                )
            )
        await self.tracker.flush()

    @pytest.mark.asyncio
    async def test_basic_plan_gets_one_candidate(self):
        """Test the basic plan runs exactly one model, never a premium one."""
        selection = await self.selector.select(_requirements(user_plan="basic"))

        assert len(selection.candidates()) == 1
        assert not self.catalog.require(selection.primary_model.model_id).premium

    @pytest.mark.asyncio
    async def test_plan_allowance_caps_candidates(self):
        """Test candidate count never exceeds the plan's parallel allowance."""
        professional = await self.selector.select(_requirements(user_plan="professional"))
        executive = await self.selector.select(_requirements(user_plan="executive"))

        assert len(professional.candidates()) <= 2
        assert len(executive.candidates()) <= 3

    @pytest.mark.asyncio
    async def test_cold_start_confidence_is_capped(self):
        """Test confidence stays below the high-confidence threshold without history."""
        selection = await self.selector.select(_requirements(user_plan="executive"))

        assert selection.cold_start is True
        assert all(c.confidence <= 0.75 for c in selection.candidates())
        assert self.selector.is_high_confidence(selection) is False

    @pytest.mark.asyncio
    async def test_cold_start_ranking_is_deterministic(self):
        """Test two independent selectors agree on the ranking."""
        other = ModelSelector(
            self.catalog,
            PerformanceTracker(InMemoryMetricsStore(), clock=self.clock),
            FailOpenCache(InMemoryCacheStore(clock=self.clock)),
            clock=self.clock,
        )

        first = await self.selector.select(_requirements(user_plan="executive"))
        second = await other.select(_requirements(user_plan="executive"))

        assert first.model_ids() == second.model_ids()

    @pytest.mark.asyncio
    async def test_candidates_ordered_by_confidence(self):
        """Test candidates never increase in confidence."""
        selection = await self.selector.select(_requirements(user_plan="executive"))
        confidences = [c.confidence for c in selection.candidates()]

        assert confidences == sorted(confidences, reverse=True)

    @pytest.mark.asyncio
    async def test_selection_is_cached(self):
        """Test a repeated request is answered from cache."""
        first = await self.selector.select(_requirements(), user_id="u1")
        second = await self.selector.select(_requirements(), user_id="u1")

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.model_ids() == first.model_ids()

    @pytest.mark.asyncio
    async def test_selection_cache_expires(self):
        """Test a cached selection is recomputed after its TTL."""
        await self.selector.select(_requirements(), user_id="u1")
        self.clock.advance(seconds=601)

        selection = await self.selector.select(_requirements(), user_id="u1")

        assert selection.from_cache is False

    @pytest.mark.asyncio
    async def test_invalid_requirements(self):
        """Test malformed requirements raise ValidationError."""
        with pytest.raises(ValidationError):
            await self.selector.select(_requirements(output_count=11))
        with pytest.raises(ValidationError):
            await self.selector.select(_requirements(purpose="wedding"))

    @pytest.mark.asyncio
    async def test_history_changes_ranking(self):
        """Test a reliable cheap model overtakes failing premium models."""
        for profile in DEFAULT_CATALOG:
            if profile.model_id == "flux-dev":
                await self._seed_history("flux-dev", True, latency=45000.0, cost=1.0, quality=0.95)
            else:
                await self._seed_history(profile.model_id, False)

        selection = await self.selector.select(_requirements(user_plan="executive"))

        assert selection.cold_start is False
        assert selection.primary_model.model_id == "flux-dev"
        assert any("success" in reason for reason in selection.primary_model.reasoning)

    @pytest.mark.asyncio
    async def test_favourite_model_bonus(self):
        """Test a stored favourite gains a confidence bonus."""
        selector = self._selector(
            ModelCatalog([p for p in DEFAULT_CATALOG if p.model_id in ("flux-pro", "flux-dev")])
        )
        requirements = _requirements(
            purpose="corporate",
            quality="ultra",
            speed="quality",
            budget="unlimited",
            user_plan="executive",
        )

        await selector.remember_preferences("fan", ["flux-dev"])
        plain = await selector.select(requirements, user_id="someone")
        favoured = await selector.select(requirements, user_id="fan")

        def confidence(selection):
            return next(c.confidence for c in selection.candidates() if c.model_id == "flux-dev")

        assert confidence(favoured) == pytest.approx(confidence(plain) + 0.1, abs=1e-5)
        flux_dev = next(c for c in favoured.candidates() if c.model_id == "flux-dev")
        assert "Based on your previous preferences" in flux_dev.reasoning

    @pytest.mark.asyncio
    async def test_remember_unknown_model(self):
        """Test unknown favourites are rejected."""
        with pytest.raises(ValidationError):
            await self.selector.remember_preferences("u1", ["dall-e"])

    @pytest.mark.asyncio
    async def test_no_eligible_model(self):
        """Test a plan with no usable model raises NoEligibleModel."""
        selector = self._selector(
            ModelCatalog([p for p in DEFAULT_CATALOG if p.premium])
        )

        with pytest.raises(NoEligibleModel):
            await selector.select(_requirements(user_plan="basic"))

    @pytest.mark.asyncio
    async def test_tracker_failure_ranks_cold(self):
        """Test history outages fall back to a cold ranking."""
        self.tracker.aggregate_many = AsyncMock(side_effect=ConnectionError("down"))

        selection = await self.selector.select(_requirements())

        assert selection.cold_start is True

    @pytest.mark.asyncio
    async def test_difficult_inputs_favour_detail(self):
        """Test hard inputs raise the confidence of detail-strong models only."""
        selector = self._selector(
            ModelCatalog(
                [p for p in DEFAULT_CATALOG if p.model_id in ("flux-pro-ultra", "flux-dev")]
            )
        )
        requirements = _requirements(
            purpose="social",
            quality="basic",
            speed="fast",
            budget="low",
            style="casual",
            user_plan="executive",
        )

        easy = await selector.select(requirements, user_id="a")
        hard = await selector.select(
            requirements,
            image_characteristics={
                "resolution": "4096x4096",
                "complexity": "complex",
                "face_count": 2,
                "background_type": "detailed",
            },
            user_id="b",
        )

        def by_id(selection):
            return {c.model_id: c.confidence for c in selection.candidates()}

        assert by_id(hard)["flux-pro-ultra"] == pytest.approx(
            by_id(easy)["flux-pro-ultra"] + 0.09, abs=1e-5
        )
        assert by_id(hard)["flux-dev"] == by_id(easy)["flux-dev"]

    @pytest.mark.asyncio
    async def test_recommendations_present(self):
        """Test at least one recommendation accompanies each selection."""
        selection = await self.selector.select(_requirements())
        assert selection.recommendations

    @pytest.mark.asyncio
    async def test_resolved_plan_overrides_table(self):
        """Test explicit plan limits decide the candidate count."""
        plan = PlanLimits(
            tier="basic",
            monthly_training_limit=1,
            monthly_prompt_limit=10,
            monthly_enhancement_limit=5,
            max_parallel_models=3,
            max_manual_models=2,
            premium_access=False,
        )

        table = await self.selector.select(_requirements(user_plan="basic"), user_id="u1")
        resolved = await self.selector.select(
            _requirements(user_plan="basic"), user_id="u1", plan=plan
        )

        assert len(table.candidates()) == 1
        assert resolved.from_cache is False
        assert len(resolved.candidates()) > 1
        assert all(not self.catalog.require(m).premium for m in resolved.model_ids())

    @pytest.mark.asyncio
    async def test_new_favourite_bypasses_cached_selection(self):
        """Test storing a favourite takes effect before the selection TTL."""
        selector = self._selector(
            ModelCatalog([p for p in DEFAULT_CATALOG if p.model_id in ("flux-pro", "flux-dev")])
        )
        requirements = _requirements(
            purpose="corporate",
            quality="ultra",
            speed="quality",
            budget="unlimited",
            user_plan="executive",
        )

        before = await selector.select(requirements, user_id="u1")
        await selector.remember_preferences("u1", ["flux-dev"])
        after = await selector.select(requirements, user_id="u1")

        flux_dev = next(c for c in after.candidates() if c.model_id == "flux-dev")
        assert after.from_cache is False
        assert "Based on your previous preferences" in flux_dev.reasoning
        assert flux_dev.confidence > next(
            c.confidence for c in before.candidates() if c.model_id == "flux-dev"
        )
