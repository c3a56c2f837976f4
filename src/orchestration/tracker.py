"""Model performance tracking with a non-blocking recording path."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from redis.exceptions import RedisError

from ..models.metrics_models import (
    PerformanceAggregate,
    PerformanceMetric,
    PerformanceTrend,
)

logger = logging.getLogger(__name__)


class MetricsStore(ABC):
    """Append-only storage for performance metrics."""

    @abstractmethod
    async def append(self, metric: PerformanceMetric) -> None:
        pass

    @abstractmethod
    async def recent(
        self,
        model_id: str,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[PerformanceMetric]:
        """
        Most recent metrics for a model, newest first.

        Args:
            model_id: Model identifier
            limit: Maximum metrics to return (None for all)
            since: Oldest timestamp to include

        Returns:
            Metrics ordered by timestamp descending
        """
        pass


class InMemoryMetricsStore(MetricsStore):
    """Process-local metrics store."""

    def __init__(self):
        self.metrics: Dict[str, List[PerformanceMetric]] = defaultdict(list)

    async def append(self, metric: PerformanceMetric) -> None:
        self.metrics[metric.model_id].append(metric)

    async def recent(
        self,
        model_id: str,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[PerformanceMetric]:
        ordered = sorted(
            self.metrics.get(model_id, []),
            key=lambda m: m.timestamp,
            reverse=True,
        )
        if since is not None:
            ordered = [m for m in ordered if m.timestamp >= since]
        return ordered[:limit] if limit is not None else ordered


class RedisMetricsStore(MetricsStore):
    """
    Redis-backed metrics store.

    PATTERN: One list per model, newest at the head
    GOTCHA: Lists are never trimmed by this store
    """

    def __init__(self, redis_client, prefix: str = "headshot"):
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, model_id: str) -> str:
        return f"{self.prefix}:metrics:{model_id}"

    async def append(self, metric: PerformanceMetric) -> None:
        await self.redis.lpush(self._key(metric.model_id), metric.model_dump_json())

    async def recent(
        self,
        model_id: str,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[PerformanceMetric]:
        stop = limit - 1 if limit is not None else -1
        raw = await self.redis.lrange(self._key(model_id), 0, stop)
        metrics = [PerformanceMetric.model_validate_json(item) for item in raw]
        if since is not None:
            metrics = [m for m in metrics if m.timestamp >= since]
        return metrics


class PerformanceTracker:
    """
    Records per-invocation metrics and rolls them up per model.

    PATTERN: record() enqueues, a background worker persists
    CRITICAL: Recording never blocks or fails the generation path
    GOTCHA: Call flush() before reading back metrics you just recorded
    """

    def __init__(
        self,
        store: Optional[MetricsStore] = None,
        queue_size: int = 1000,
        window_size: int = 50,
        window: timedelta = timedelta(days=7),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize performance tracker.

        Args:
            store: Metrics storage (in-memory if None)
            queue_size: Pending metrics before new ones are dropped
            window_size: Most recent metrics used for aggregates
            window: Oldest metric age used for aggregates
            clock: Time source (defaults to datetime.now)
        """
        self.store = store or InMemoryMetricsStore()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.window_size = window_size
        self.window = window
        self.clock = clock or datetime.now
        self.logger = logging.getLogger(__name__)

        self._worker_task: Optional[asyncio.Task] = None

        # Statistics
        self.recorded = 0
        self.dropped = 0
        self.failed = 0

    async def start(self) -> None:
        """Start the background persistence worker."""
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self._worker())
            self.logger.info("Performance tracker started")

    async def stop(self) -> None:
        """Persist pending metrics and stop the worker."""
        await self.flush()
        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
            self.logger.info("Performance tracker stopped")

    def record(self, metric: PerformanceMetric) -> bool:
        """
        Queue a metric for persistence.

        Args:
            metric: Completed invocation outcome

        Returns:
            True if queued, False if dropped because the queue is full
        """
        try:
            self.queue.put_nowait(metric)
        except asyncio.QueueFull:
            self.dropped += 1
            self.logger.warning(
                f"Metrics queue full, dropped metric for {metric.model_id}"
            )
            return False
        return True

    async def flush(self) -> None:
        """Wait until every queued metric has been persisted."""
        if self._worker_task is not None and not self._worker_task.done():
            await self.queue.join()
            return

        while not self.queue.empty():
            metric = self.queue.get_nowait()
            try:
                await self._persist(metric)
            finally:
                self.queue.task_done()

    async def _worker(self) -> None:
        while True:
            metric = await self.queue.get()
            try:
                await self._persist(metric)
            finally:
                self.queue.task_done()

    async def _persist(self, metric: PerformanceMetric) -> None:
        try:
            await self.store.append(metric)
            self.recorded += 1
        except (RedisError, OSError) as e:
            self.failed += 1
            self.logger.warning(f"Failed to persist metric for {metric.model_id}: {e}")
        except Exception as e:
            self.failed += 1
            self.logger.error(
                f"Unexpected error persisting metric for {metric.model_id}: {e}",
                exc_info=True,
            )

    async def aggregate(
        self,
        model_id: str,
        window: Optional[timedelta] = None,
    ) -> PerformanceAggregate:
        """
        Roll up recent metrics for a model.

        Args:
            model_id: Model identifier
            window: Oldest metric age (defaults to the tracker window)

        Returns:
            Aggregate over at most window_size metrics; sample_size 0
            means no history
        """
        since = self.clock() - (window or self.window)
        metrics = await self.store.recent(model_id, limit=self.window_size, since=since)
        return self._summarize(model_id, metrics)

    async def aggregate_many(
        self,
        model_ids: List[str],
        window: Optional[timedelta] = None,
    ) -> Dict[str, PerformanceAggregate]:
        """Aggregates for several models, fetched concurrently."""
        aggregates = await asyncio.gather(
            *(self.aggregate(model_id, window) for model_id in model_ids)
        )
        return dict(zip(model_ids, aggregates))

    async def model_report(
        self,
        model_id: str,
        window: Optional[timedelta] = None,
    ) -> PerformanceAggregate:
        """
        Detailed report over every metric in the window.

        PATTERN: Adds error breakdown and trend to the plain aggregate

        Args:
            model_id: Model identifier
            window: Oldest metric age (defaults to the tracker window)

        Returns:
            PerformanceAggregate with error_breakdown and trend filled in
        """
        since = self.clock() - (window or self.window)
        metrics = await self.store.recent(model_id, since=since)
        summary = self._summarize(model_id, metrics)

        breakdown: Dict[str, int] = defaultdict(int)
        for metric in metrics:
            if not metric.success:
                breakdown[metric.error_type or "unknown"] += 1

        return summary.model_copy(
            update={
                "error_breakdown": dict(breakdown),
                "trend": self._trend(metrics),
            }
        )

    def _summarize(
        self,
        model_id: str,
        metrics: List[PerformanceMetric],
    ) -> PerformanceAggregate:
        if not metrics:
            return PerformanceAggregate(model_id=model_id, sample_size=0)

        successes = [m for m in metrics if m.success]
        qualities = [m.quality_score for m in successes if m.quality_score is not None]

        return PerformanceAggregate(
            model_id=model_id,
            success_rate=len(successes) / len(metrics),
            avg_latency=sum(m.processing_time for m in metrics) / len(metrics),
            avg_cost=(
                sum(m.cost for m in successes) / len(successes) if successes else 0.0
            ),
            avg_quality=sum(qualities) / len(qualities) if qualities else None,
            sample_size=len(metrics),
        )

    def _trend(self, metrics: List[PerformanceMetric]) -> PerformanceTrend:
        """
        Compare success rate of the newer half against the older half.

        Args:
            metrics: Metrics newest first

        Returns:
            Trend; stable below four samples or within 10 points
        """
        if len(metrics) < 4:
            return PerformanceTrend.STABLE

        half = len(metrics) // 2
        newer, older = metrics[:half], metrics[half:]
        newer_rate = sum(1 for m in newer if m.success) / len(newer)
        older_rate = sum(1 for m in older if m.success) / len(older)

        if newer_rate - older_rate > 0.1:
            return PerformanceTrend.IMPROVING
        if older_rate - newer_rate > 0.1:
            return PerformanceTrend.DECLINING
        return PerformanceTrend.STABLE

    def get_stats(self) -> Dict[str, int]:
        return {
            "recorded": self.recorded,
            "dropped": self.dropped,
            "failed": self.failed,
            "pending": self.queue.qsize(),
        }
