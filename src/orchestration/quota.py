"""Per-plan monthly usage quotas with atomic check-and-reserve."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple, Union

from redis.exceptions import RedisError

from ..config.plans import PLAN_LIMITS, PlanLimits, validate_plan_table
from ..models.generation_models import PlanTier
from ..models.quota_models import QuotaDecision, QuotaType, QuotaWindow
from .errors import InfrastructureError, QuotaExceeded, ValidationError

logger = logging.getLogger(__name__)


def advance_month(moment: datetime) -> datetime:
    """First instant of the month after the one containing moment."""
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def month_window(now: datetime) -> Tuple[datetime, datetime]:
    """
    Calendar-month period containing now.

    Args:
        now: Current time

    Returns:
        (period_start, period_end), end exclusive
    """
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, advance_month(start)


def _decision(window: QuotaWindow, allowed: bool) -> QuotaDecision:
    return QuotaDecision(
        allowed=allowed,
        used=window.used,
        limit=window.limit,
        remaining=window.remaining,
        quota_type=window.quota_type,
        period_end=window.period_end,
    )


class QuotaStore(ABC):
    """
    Storage for quota windows.

    CRITICAL: check_and_increment must be atomic per (user, type, period)
    """

    @abstractmethod
    async def check_and_increment(
        self,
        user_id: str,
        quota_type: QuotaType,
        limit: int,
        period_start: datetime,
        period_end: datetime,
    ) -> QuotaDecision:
        """
        Reserve one unit if the window has room.

        Args:
            user_id: Quota owner
            quota_type: Metered action
            limit: Ceiling for the period
            period_start: Start of the current period
            period_end: End of the current period

        Returns:
            Decision; used is unchanged when not allowed
        """
        pass

    @abstractmethod
    async def get_window(
        self,
        user_id: str,
        quota_type: QuotaType,
        limit: int,
        period_start: datetime,
        period_end: datetime,
    ) -> QuotaWindow:
        """Current window without reserving anything."""
        pass


class InMemoryQuotaStore(QuotaStore):
    """
    Process-local quota store.

    CRITICAL: No await inside check_and_increment, so the event loop
    cannot interleave two reservations for the same window
    """

    def __init__(self):
        self.windows: Dict[Tuple[str, str], QuotaWindow] = {}

    def _current(
        self,
        user_id: str,
        quota_type: QuotaType,
        limit: int,
        period_start: datetime,
        period_end: datetime,
    ) -> QuotaWindow:
        key = (user_id, QuotaType(quota_type).value)
        window = self.windows.get(key)
        if window is None or window.period_start != period_start:
            # Lazy creation and rollover
            window = QuotaWindow(
                user_id=user_id,
                quota_type=quota_type,
                period_start=period_start,
                period_end=period_end,
                used=0,
                limit=limit,
            )
        elif window.limit != limit:
            window = window.model_copy(update={"limit": limit})
        self.windows[key] = window
        return window

    async def check_and_increment(
        self,
        user_id: str,
        quota_type: QuotaType,
        limit: int,
        period_start: datetime,
        period_end: datetime,
    ) -> QuotaDecision:
        window = self._current(user_id, quota_type, limit, period_start, period_end)
        if window.used >= window.limit:
            return _decision(window, allowed=False)

        window = window.model_copy(update={"used": window.used + 1})
        self.windows[(user_id, QuotaType(quota_type).value)] = window
        return _decision(window, allowed=True)

    async def get_window(
        self,
        user_id: str,
        quota_type: QuotaType,
        limit: int,
        period_start: datetime,
        period_end: datetime,
    ) -> QuotaWindow:
        return self._current(user_id, quota_type, limit, period_start, period_end)


# Returns {allowed, used}. The counter expires a day after the period ends.
_CHECK_AND_INCREMENT = """
local used = tonumber(redis.call('GET', KEYS[1]) or '0')
local limit = tonumber(ARGV[1])
if used >= limit then
    return {0, used}
end
used = redis.call('INCR', KEYS[1])
redis.call('PEXPIREAT', KEYS[1], ARGV[2])
return {1, used}
"""


class RedisQuotaStore(QuotaStore):
    """
    Redis-backed quota store shared across workers.

    PATTERN: One counter per (user, type, period) so rollover is a new key
    CRITICAL: Check and increment run in one Lua script
    """

    def __init__(self, redis_client, prefix: str = "headshot"):
        """
        Initialize Redis quota store.

        Args:
            redis_client: redis.asyncio client instance
            prefix: Key prefix for namespacing
        """
        self.redis = redis_client
        self.prefix = prefix
        self._check_and_increment = redis_client.register_script(_CHECK_AND_INCREMENT)
        self.logger = logging.getLogger(__name__)

    def _key(self, user_id: str, quota_type: QuotaType, period_start: datetime) -> str:
        return (
            f"{self.prefix}:quota:{user_id}:{QuotaType(quota_type).value}:"
            f"{period_start.strftime('%Y%m')}"
        )

    async def check_and_increment(
        self,
        user_id: str,
        quota_type: QuotaType,
        limit: int,
        period_start: datetime,
        period_end: datetime,
    ) -> QuotaDecision:
        expire_ms = int((period_end + timedelta(days=1)).timestamp() * 1000)
        try:
            allowed, used = await self._check_and_increment(
                keys=[self._key(user_id, quota_type, period_start)],
                args=[limit, expire_ms],
            )
        except RedisError as e:
            raise InfrastructureError(f"Quota store unavailable: {e}") from e

        window = QuotaWindow(
            user_id=user_id,
            quota_type=quota_type,
            period_start=period_start,
            period_end=period_end,
            used=int(used),
            limit=limit,
        )
        return _decision(window, allowed=bool(int(allowed)))

    async def get_window(
        self,
        user_id: str,
        quota_type: QuotaType,
        limit: int,
        period_start: datetime,
        period_end: datetime,
    ) -> QuotaWindow:
        try:
            raw = await self.redis.get(self._key(user_id, quota_type, period_start))
        except RedisError as e:
            raise InfrastructureError(f"Quota store unavailable: {e}") from e

        return QuotaWindow(
            user_id=user_id,
            quota_type=quota_type,
            period_start=period_start,
            period_end=period_end,
            used=int(raw) if raw is not None else 0,
            limit=limit,
        )


class QuotaEnforcer:
    """
    Enforces monthly plan ceilings.

    PATTERN: Limits are a pure function of plan tier
    CRITICAL: Concurrent reservations never admit more than the limit
    GOTCHA: A refused reservation does not change the counter
    """

    def __init__(
        self,
        store: QuotaStore,
        plan_table: Optional[Dict[PlanTier, PlanLimits]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize quota enforcer.

        Args:
            store: Quota window storage
            plan_table: Tier to limits mapping (validated; defaults to PLAN_LIMITS)
            clock: Time source (defaults to datetime.now)
        """
        if plan_table is not None:
            validate_plan_table(plan_table)
        self.store = store
        self.plan_table = plan_table or PLAN_LIMITS
        self.clock = clock or datetime.now
        self.logger = logging.getLogger(__name__)

    def _limits(self, plan: Union[PlanTier, PlanLimits, str]) -> PlanLimits:
        if isinstance(plan, PlanLimits):
            return plan
        try:
            return self.plan_table[PlanTier(plan)]
        except (ValueError, KeyError) as e:
            raise ValidationError(f"Unknown plan tier: {plan}") from e

    def _validate(self, user_id: str, quota_type: QuotaType) -> QuotaType:
        if not user_id:
            raise ValidationError("user_id is required")
        try:
            return QuotaType(quota_type)
        except ValueError as e:
            raise ValidationError(f"Unknown quota type: {quota_type}") from e

    async def check_and_reserve(
        self,
        user_id: str,
        quota_type: QuotaType,
        plan: Union[PlanTier, PlanLimits, str],
    ) -> QuotaDecision:
        """
        Check the quota and reserve one unit if allowed.

        Args:
            user_id: Quota owner
            quota_type: Metered action
            plan: Plan tier or its limits

        Returns:
            QuotaDecision (allowed=False leaves usage untouched)

        Raises:
            ValidationError: On unknown plan or quota type
        """
        quota_type = self._validate(user_id, quota_type)
        limit = self._limits(plan).limit_for(quota_type)
        period_start, period_end = month_window(self.clock())

        decision = await self.store.check_and_increment(
            user_id, quota_type, limit, period_start, period_end
        )

        if decision.allowed:
            self.logger.debug(
                f"Reserved {quota_type.value} for {user_id}: "
                f"{decision.used}/{decision.limit}"
            )
        else:
            self.logger.info(
                f"Quota exhausted for {user_id}: {quota_type.value} "
                f"{decision.used}/{decision.limit}"
            )
        return decision

    async def require(
        self,
        user_id: str,
        quota_type: QuotaType,
        plan: Union[PlanTier, PlanLimits, str],
    ) -> QuotaDecision:
        """
        Reserve one unit or fail.

        Raises:
            QuotaExceeded: When the quota is exhausted
        """
        decision = await self.check_and_reserve(user_id, quota_type, plan)
        if not decision.allowed:
            raise QuotaExceeded(decision)
        return decision

    async def get_usage(
        self,
        user_id: str,
        quota_type: QuotaType,
        plan: Union[PlanTier, PlanLimits, str],
    ) -> QuotaDecision:
        """
        Read current usage without reserving.

        Returns:
            QuotaDecision whose allowed flag says whether one more use fits
        """
        quota_type = self._validate(user_id, quota_type)
        limit = self._limits(plan).limit_for(quota_type)
        period_start, period_end = month_window(self.clock())

        window = await self.store.get_window(
            user_id, quota_type, limit, period_start, period_end
        )
        return _decision(window, allowed=window.used < window.limit)
