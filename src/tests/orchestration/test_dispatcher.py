"""Tests for concurrent multi-model dispatch."""

import asyncio
import pytest

from src.models.generation_models import GenerationRequest
from src.orchestration.cache_store import FailOpenCache, InMemoryCacheStore
from src.orchestration.dispatcher import GenerationDispatcher
from src.orchestration.errors import (
    BackendUnreachableError,
    InfrastructureError,
    ModelInvocationError,
    RateLimitError,
    ValidationError,
)
from src.orchestration.tracker import InMemoryMetricsStore, PerformanceTracker
from src.tests.fakes import FixedClock, ScriptedBackend, make_result


class TestGenerationDispatcher:
    """Test suite for GenerationDispatcher."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FixedClock()
        self.backend = ScriptedBackend()
        self.store = InMemoryCacheStore(clock=self.clock)
        self.metrics = InMemoryMetricsStore()
        self.tracker = PerformanceTracker(self.metrics, clock=self.clock)
        self.dispatcher = self._dispatcher(call_timeout=5.0)
        self.request = GenerationRequest(
            prompt="corporate headshot, navy suit",
            parameters={"num_images": 1, "image_size": "portrait_4_3"},
            user_id="u1",
        )

    def _dispatcher(self, call_timeout):
        return GenerationDispatcher(
            self.backend,
            FailOpenCache(self.store),
            self.tracker,
            generation_ttl=3600,
            call_timeout=call_timeout,
            clock=self.clock,
        )

    async def _metric_count(self):
        await self.tracker.flush()
        return sum(len(items) for items in self.metrics.metrics.values())

    @pytest.mark.asyncio
    async def test_empty_candidates_rejected(self):
        """Test an empty candidate list raises ValidationError."""
        with pytest.raises(ValidationError):
            await self.dispatcher.generate(self.request, [])

    @pytest.mark.asyncio
    async def test_all_succeed_in_candidate_order(self):
        """Test results follow candidate order."""
        results = await self.dispatcher.generate(self.request, ["imagen4", "flux-dev", "flux-pro"])

        assert [r.model_id for r in results] == ["imagen4", "flux-dev", "flux-pro"]
        assert all(r.success for r in results)
        assert await self._metric_count() == 3

    @pytest.mark.asyncio
    async def test_partial_failure(self):
        """Test one failing model does not fail the others."""
        self.backend.scripts["flux-pro"] = ModelInvocationError("bad input", model_id="flux-pro")

        results = await self.dispatcher.generate(self.request, ["flux-dev", "flux-pro", "imagen4"])

        assert len(results) == 3
        assert [r.success for r in results] == [True, False, True]
        assert results[1].error_type == "invocation_error"
        assert results[1].images == []

    @pytest.mark.asyncio
    async def test_rate_limit_is_isolated(self):
        """Test rate limiting surfaces as a per-model error type."""
        self.backend.scripts["flux-dev"] = RateLimitError("slow down", model_id="flux-dev")

        results = await self.dispatcher.generate(self.request, ["flux-dev", "imagen4"])

        assert results[0].error_type == "rate_limited"
        assert results[1].success is True

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_isolated(self):
        """Test arbitrary exceptions become invocation errors."""
        self.backend.scripts["flux-dev"] = KeyError("images")

        results = await self.dispatcher.generate(self.request, ["flux-dev", "imagen4"])

        assert results[0].success is False
        assert results[0].error_type == "invocation_error"

    @pytest.mark.asyncio
    async def test_idempotent_generation(self):
        """Test a repeated request makes one backend call and one cache write."""
        first = await self.dispatcher.generate(self.request, ["flux-pro"])
        second = await self.dispatcher.generate(self.request, ["flux-pro"])

        assert self.backend.call_count("flux-pro") == 1
        assert len(self.store.entries) == 1
        assert first[0].from_cache is False
        assert second[0].from_cache is True
        assert second[0].images == first[0].images
        assert await self._metric_count() == 1

    @pytest.mark.asyncio
    async def test_users_do_not_share_cache(self):
        """Test the same prompt for another user is generated again."""
        await self.dispatcher.generate(self.request, ["flux-pro"])
        other = self.request.model_copy(update={"user_id": "u2"})

        results = await self.dispatcher.generate(other, ["flux-pro"])

        assert results[0].from_cache is False
        assert self.backend.call_count("flux-pro") == 2

    @pytest.mark.asyncio
    async def test_duplicates_collapse(self):
        """Test duplicate candidates run once."""
        results = await self.dispatcher.generate(self.request, ["flux-dev", "flux-dev", "imagen4"])

        assert [r.model_id for r in results] == ["flux-dev", "imagen4"]
        assert self.backend.call_count("flux-dev") == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self):
        """Test a failed model is retried on the next request."""
        self.backend.scripts["flux-pro"] = ModelInvocationError("boom", model_id="flux-pro")
        await self.dispatcher.generate(self.request, ["flux-pro"])
        del self.backend.scripts["flux-pro"]

        results = await self.dispatcher.generate(self.request, ["flux-pro"])

        assert results[0].success is True
        assert self.backend.call_count("flux-pro") == 2

    @pytest.mark.asyncio
    async def test_backend_cost_recorded(self):
        """Test the backend-reported cost is cached and returned."""
        self.backend.scripts["flux-pro"] = make_result("flux-pro", cost=0.55)

        results = await self.dispatcher.generate(self.request, ["flux-pro"])

        assert results[0].cost == 0.55
        entry = next(iter(self.store.entries.values()))
        assert entry.metadata.cost == 0.55
        assert entry.metadata.cost_estimated is False
        assert entry.metadata.user_id == "u1"

    @pytest.mark.asyncio
    async def test_missing_cost_uses_catalog_estimate(self):
        """Test an unreported cost falls back to the catalog price."""
        self.backend.scripts["flux-dev"] = make_result("flux-dev", cost=None)

        results = await self.dispatcher.generate(self.request, ["flux-dev"])

        assert results[0].cost == 1.0
        entry = next(iter(self.store.entries.values()))
        assert entry.metadata.cost_estimated is True

    @pytest.mark.asyncio
    async def test_timeout_and_late_cache_write(self):
        """Test a slow model times out but its late result is still cached."""
        dispatcher = self._dispatcher(call_timeout=0.05)
        self.backend.scripts["flux-pro"] = (0.2, make_result("flux-pro"))

        results = await dispatcher.generate(self.request, ["flux-dev", "flux-pro"])

        assert results[0].success is True
        assert results[1].success is False
        assert results[1].error_type == "timeout"
        assert len(self.store.entries) == 1

        await dispatcher.drain()

        assert len(self.store.entries) == 2
        assert await self._metric_count() == 2

    @pytest.mark.asyncio
    async def test_all_unreachable_raises(self):
        """Test a full backend outage raises a retryable infrastructure error."""
        for model_id in ("flux-dev", "imagen4"):
            self.backend.scripts[model_id] = BackendUnreachableError("refused", model_id=model_id)

        with pytest.raises(InfrastructureError) as exc_info:
            await self.dispatcher.generate(self.request, ["flux-dev", "imagen4"])

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unreachable_with_cache_hit_returns(self):
        """Test cache hits still answer during an outage."""
        await self.dispatcher.generate(self.request, ["flux-dev"])
        self.backend.scripts["imagen4"] = BackendUnreachableError("refused", model_id="imagen4")

        results = await self.dispatcher.generate(self.request, ["flux-dev", "imagen4"])

        assert results[0].from_cache is True
        assert results[1].error_type == "backend_unreachable"

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self):
        """Test three slow models finish in about one call's time."""
        for model_id in ("flux-dev", "imagen4", "flux-pro"):
            self.backend.scripts[model_id] = (0.1, make_result(model_id))

        loop = asyncio.get_running_loop()
        started = loop.time()
        await self.dispatcher.generate(self.request, ["flux-dev", "imagen4", "flux-pro"])

        assert loop.time() - started < 0.25
