"""Concurrent multi-model generation with per-model failure isolation."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from ..config.model_catalog import ModelCatalog
from ..models.cache_models import CacheEntry, CacheKind, CacheMetadata
from ..models.generation_models import (
    DispatchResult,
    GenerationRequest,
    GenerationResult,
)
from ..models.metrics_models import PerformanceMetric
from .backends.base import GenerationBackend
from .cache_store import FailOpenCache, build_entry
from .errors import InfrastructureError, ModelInvocationError, ValidationError
from .keys import generation_key
from .tracker import PerformanceTracker

logger = logging.getLogger(__name__)


class GenerationDispatcher:
    """
    Fans a generation request out to several models at once.

    PATTERN: Cache first, then one concurrent backend call per miss
    CRITICAL: One model failing never fails the others
    CRITICAL: Exactly one metric per backend invocation
    GOTCHA: Calls past the timeout keep running; a late success is
        still cached but the caller has already been answered
    """

    def __init__(
        self,
        backend: GenerationBackend,
        cache: FailOpenCache,
        tracker: PerformanceTracker,
        catalog: Optional[ModelCatalog] = None,
        generation_ttl: int = 3600,
        call_timeout: float = 180.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            backend: Generation backend client
            cache: Fail-open generation cache
            tracker: Performance tracker for per-call metrics
            catalog: Model catalog for cost estimates
            generation_ttl: Seconds a generation stays cached
            call_timeout: Seconds to wait for model calls
            clock: Time source (defaults to datetime.now)
        """
        self.backend = backend
        self.cache = cache
        self.tracker = tracker
        self.catalog = catalog or ModelCatalog()
        self.generation_ttl = generation_ttl
        self.call_timeout = call_timeout
        self.clock = clock or datetime.now
        self.logger = logging.getLogger(__name__)

        self._background: Set[asyncio.Task] = set()

    async def generate(
        self,
        request: GenerationRequest,
        candidate_models: List[str],
    ) -> List[DispatchResult]:
        """
        Generate with every candidate model.

        PATTERN: Concurrent cache lookups, then concurrent backend calls

        Args:
            request: Prompt, parameters and user
            candidate_models: Model ids to run (duplicates collapse)

        Returns:
            One DispatchResult per distinct model, in candidate order

        Raises:
            ValidationError: If no candidates are given
            InfrastructureError: If nothing came from cache and the
                backend was unreachable for every model
        """
        if not candidate_models:
            raise ValidationError("At least one candidate model is required")

        models = list(dict.fromkeys(candidate_models))
        keys = {model_id: generation_key(request, model_id) for model_id in models}

        entries = await asyncio.gather(
            *(self.cache.lookup(keys[model_id]) for model_id in models)
        )

        results: Dict[str, DispatchResult] = {}
        pending: Dict[asyncio.Task, str] = {}

        for model_id, entry in zip(models, entries):
            cached = self._from_cache(model_id, entry) if entry is not None else None
            if cached is not None:
                results[model_id] = cached
                continue
            task = asyncio.create_task(self._invoke(request, model_id, keys[model_id]))
            pending[task] = model_id

        if pending:
            self.logger.info(
                f"Dispatching {len(pending)} model call(s) for {request.user_id}: "
                f"{list(pending.values())}"
            )
            done, not_done = await asyncio.wait(pending.keys(), timeout=self.call_timeout)

            for task in done:
                result = task.result()
                results[pending[task]] = result
                self._record(request.user_id, result)

            for task in not_done:
                model_id = pending[task]
                self._background.add(task)
                task.add_done_callback(self._background.discard)
                result = DispatchResult(
                    model_id=model_id,
                    success=False,
                    error=f"No result within {self.call_timeout}s",
                    error_type="timeout",
                    latency_ms=int(self.call_timeout * 1000),
                )
                results[model_id] = result
                self._record(request.user_id, result)
                self.logger.warning(f"Model {model_id} timed out after {self.call_timeout}s")

        ordered = [results[model_id] for model_id in models]

        if all(
            not r.from_cache and r.error_type == "backend_unreachable" for r in ordered
        ):
            self.logger.error(f"Generation backend unreachable for all of {models}")
            raise InfrastructureError("Generation backend unreachable")

        succeeded = sum(1 for r in ordered if r.success)
        self.logger.info(f"Dispatch finished: {succeeded}/{len(ordered)} succeeded")
        return ordered

    async def drain(self) -> None:
        """Wait for calls that outlived their timeout."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _from_cache(self, model_id: str, entry: CacheEntry) -> Optional[DispatchResult]:
        try:
            result = GenerationResult.model_validate(entry.payload)
        except PydanticValidationError as e:
            self.logger.warning(f"Ignoring unreadable cached result for {model_id}: {e}")
            return None

        self.logger.debug(f"Serving {model_id} from cache")
        return DispatchResult(
            model_id=model_id,
            success=True,
            images=result.images,
            from_cache=True,
            timings=result.timings,
            seed=result.seed,
            cost=entry.metadata.cost,
            quality_score=entry.metadata.quality_score,
            latency_ms=0,
        )

    async def _invoke(
        self,
        request: GenerationRequest,
        model_id: str,
        key: str,
    ) -> DispatchResult:
        """
        One backend call; failures become failed results.

        Returns:
            DispatchResult (success or failure)
        """
        start_time = datetime.now()

        try:
            result = await self.backend.generate(
                request.prompt, model_id, request.parameters
            )
        except ModelInvocationError as e:
            latency_ms = int((datetime.now() - start_time).total_seconds() * 1000)
            self.logger.warning(f"Model {model_id} failed ({e.error_type}): {e}")
            return DispatchResult(
                model_id=model_id,
                success=False,
                error=str(e),
                error_type=e.error_type,
                latency_ms=latency_ms,
            )
        except Exception as e:
            latency_ms = int((datetime.now() - start_time).total_seconds() * 1000)
            self.logger.error(f"Unexpected error on {model_id}: {e}", exc_info=True)
            return DispatchResult(
                model_id=model_id,
                success=False,
                error=str(e),
                error_type=ModelInvocationError.error_type,
                latency_ms=latency_ms,
            )

        latency_ms = int((datetime.now() - start_time).total_seconds() * 1000)

        cost = result.cost
        cost_estimated = cost is None
        if cost_estimated:
            cost = self._estimate_cost(model_id, request)

        await self.cache.save(
            build_entry(
                key,
                CacheKind.GENERATION,
                result.model_dump(mode="json"),
                self.generation_ttl,
                CacheMetadata(
                    model_id=model_id,
                    user_id=request.user_id,
                    quality_score=result.quality_score,
                    generation_time=latency_ms / 1000,
                    cost=cost,
                    cost_estimated=cost_estimated,
                ),
                now=self.clock(),
            )
        )

        return DispatchResult(
            model_id=model_id,
            success=True,
            images=result.images,
            timings=result.timings,
            seed=result.seed,
            cost=cost,
            quality_score=result.quality_score,
            latency_ms=latency_ms,
        )

    def _estimate_cost(self, model_id: str, request: GenerationRequest) -> float:
        profile = self.catalog.get(model_id)
        if profile is None:
            return 0.0
        return profile.cost_per_image * request.parameters.get("num_images", 1)

    def _record(self, user_id: str, result: DispatchResult) -> None:
        self.tracker.record(
            PerformanceMetric(
                model_id=result.model_id,
                user_id=user_id,
                timestamp=self.clock(),
                processing_time=result.latency_ms or 0,
                success=result.success,
                cost=result.cost or 0.0,
                quality_score=result.quality_score,
                error_type=result.error_type,
            )
        )
