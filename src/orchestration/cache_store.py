"""Cache store adapters for generation, selection and preference caching."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from redis.exceptions import RedisError

from ..models.cache_models import CacheEntry, CacheKind, CacheMetadata
from .errors import CacheUnavailable

logger = logging.getLogger(__name__)


def build_entry(
    key: str,
    kind: CacheKind,
    payload: Dict[str, Any],
    ttl: int,
    metadata: Optional[CacheMetadata] = None,
    now: Optional[datetime] = None,
) -> CacheEntry:
    """
    Create a fresh cache entry.

    Args:
        key: Derived cache key
        kind: Cache namespace
        payload: JSON-serializable payload
        ttl: Time-to-live in seconds
        metadata: Provenance metadata
        now: Creation time (defaults to now)

    Returns:
        CacheEntry with zero accesses
    """
    now = now or datetime.now()
    return CacheEntry(
        key=key,
        kind=kind,
        payload=payload,
        metadata=metadata or CacheMetadata(),
        created_at=now,
        expires_at=now + timedelta(seconds=ttl),
        access_count=0,
        last_accessed_at=now,
    )


class CacheStore(ABC):
    """
    Uniform access to a persistent cache table.

    CRITICAL: get() on an expired entry is a miss and deletes the entry
    CRITICAL: put() replaces the whole entry atomically (last write wins)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or datetime.now
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """
        Read an entry, counting the access on a hit.

        Args:
            key: Cache key

        Returns:
            Entry with its access already counted, or None on miss/expiry

        Raises:
            CacheUnavailable: When the backing store fails
        """
        pass

    @abstractmethod
    async def put(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any entry under the same key."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove an entry. Returns True if one existed."""
        pass

    @abstractmethod
    async def delete_by_kind(self, kind: CacheKind) -> int:
        """Remove every entry of a kind. Returns the number removed."""
        pass

    @abstractmethod
    async def list_recent(
        self,
        kind: Optional[CacheKind] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[CacheEntry]:
        """
        List live entries, newest first.

        Args:
            kind: Optional cache namespace filter
            user_id: Optional owner filter
            limit: Maximum entries to return

        Returns:
            Entries ordered by created_at descending
        """
        pass

    async def _discard_expired(self, key: str) -> None:
        """Best-effort removal of an expired entry."""
        try:
            await self.delete(key)
            self.logger.debug(f"Removed expired cache entry: {key[:24]}...")
        except Exception as e:
            self.logger.warning(f"Failed to remove expired entry {key[:24]}...: {e}")


class InMemoryCacheStore(CacheStore):
    """
    In-memory cache store with TTL and LRU eviction.

    PATTERN: Dict of immutable entries, replaced wholesale on write
    CRITICAL: No await between read and write, so updates are atomic
    GOTCHA: Process-local; use RedisCacheStore to share across workers
    """

    def __init__(
        self,
        max_size: int = 1000,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize in-memory store.

        Args:
            max_size: Maximum number of entries
            clock: Time source (defaults to datetime.now)
        """
        super().__init__(clock)
        self.max_size = max_size
        self.entries: Dict[str, CacheEntry] = {}

        # Statistics
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    async def get(self, key: str) -> Optional[CacheEntry]:
        entry = self.entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        now = self.clock()
        if entry.is_expired(now):
            self.misses += 1
            await self._discard_expired(key)
            return None

        touched = entry.touched(now)
        self.entries[key] = touched
        self.hits += 1
        return touched

    async def put(self, entry: CacheEntry) -> None:
        if entry.key not in self.entries and len(self.entries) >= self.max_size:
            self._evict_lru()
        self.entries[entry.key] = entry
        self.logger.debug(
            f"Cached {entry.kind} entry: {entry.key[:24]}... "
            f"(size: {len(self.entries)}/{self.max_size})"
        )

    async def delete(self, key: str) -> bool:
        return self.entries.pop(key, None) is not None

    async def delete_by_kind(self, kind: CacheKind) -> int:
        kind_value = CacheKind(kind).value
        doomed = [k for k, e in self.entries.items() if e.kind == kind_value]
        for key in doomed:
            del self.entries[key]
        self.logger.info(f"Cleared {len(doomed)} {kind_value} entries")
        return len(doomed)

    async def list_recent(
        self,
        kind: Optional[CacheKind] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[CacheEntry]:
        now = self.clock()
        kind_value = CacheKind(kind).value if kind else None
        live = [
            entry for entry in self.entries.values()
            if not entry.is_expired(now)
            and (kind_value is None or entry.kind == kind_value)
            and (user_id is None or entry.metadata.user_id == user_id)
        ]
        live.sort(key=lambda e: e.created_at, reverse=True)
        return live[:limit]

    def _evict_lru(self) -> None:
        """Evict the least recently accessed entry."""
        if not self.entries:
            return
        lru_key = min(
            self.entries.keys(),
            key=lambda k: self.entries[k].last_accessed_at,
        )
        del self.entries[lru_key]
        self.evictions += 1
        self.logger.debug(f"Evicted LRU entry: {lru_key[:24]}...")

    def cleanup_expired(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        expired = [k for k, e in self.entries.items() if e.is_expired(now)]
        for key in expired:
            del self.entries[key]
        if expired:
            self.logger.info(f"Cleaned up {len(expired)} expired entries")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "size": len(self.entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hits / total if total > 0 else 0.0,
        }


# Atomic read-and-count. Returns nil, {"expired"} or {"hit", body, count}.
# Expired hashes are deleted in the same script; index members are left
# for _scan_index to drop.
_GET_AND_TOUCH = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return false
end
local expires_ms = tonumber(redis.call('HGET', KEYS[1], 'expires_at_ms'))
if expires_ms ~= nil and expires_ms <= tonumber(ARGV[2]) then
    redis.call('DEL', KEYS[1])
    return {'expired'}
end
local count = redis.call('HINCRBY', KEYS[1], 'access_count', 1)
redis.call('HSET', KEYS[1], 'last_accessed_at', ARGV[1])
return {'hit', redis.call('HGET', KEYS[1], 'body'), count}
"""


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class RedisCacheStore(CacheStore):
    """
    Redis-backed cache store shared across workers.

    PATTERN: One hash per entry plus sorted-set indexes per kind and user
    CRITICAL: Writes are MULTI/EXEC; hit counting runs in a Lua script
    GOTCHA: User indexes are cleaned lazily when listing
    """

    def __init__(
        self,
        redis_client,
        prefix: str = "headshot",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize Redis-based store.

        Args:
            redis_client: redis.asyncio client instance
            prefix: Key prefix for namespacing
            clock: Time source (defaults to datetime.now)
        """
        super().__init__(clock)
        self.redis = redis_client
        self.prefix = prefix
        self._get_and_touch = redis_client.register_script(_GET_AND_TOUCH)

    def _entry_key(self, key: str) -> str:
        return f"{self.prefix}:cache:entry:{key}"

    def _kind_index(self, kind: str) -> str:
        return f"{self.prefix}:cache:kind:{kind}"

    def _user_index(self, user_id: str) -> str:
        return f"{self.prefix}:cache:user:{user_id}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        now = self.clock()
        try:
            result = await self._get_and_touch(
                keys=[self._entry_key(key)],
                args=[now.isoformat(), _millis(now)],
            )
        except RedisError as e:
            raise CacheUnavailable(f"Redis cache get failed: {e}") from e

        if not result:
            return None

        if _text(result[0]) == "expired":
            self.logger.debug(f"Removed expired cache entry: {key[:24]}...")
            return None

        entry = CacheEntry.model_validate_json(_text(result[1]))
        return entry.model_copy(
            update={"access_count": int(result[2]), "last_accessed_at": now}
        )

    async def put(self, entry: CacheEntry) -> None:
        entry_key = self._entry_key(entry.key)
        score = entry.created_at.timestamp()
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(entry_key)
                pipe.hset(
                    entry_key,
                    mapping={
                        "body": entry.model_dump_json(),
                        "expires_at_ms": _millis(entry.expires_at),
                        "access_count": entry.access_count,
                        "last_accessed_at": entry.last_accessed_at.isoformat(),
                    },
                )
                pipe.pexpireat(entry_key, _millis(entry.expires_at))
                pipe.zadd(self._kind_index(entry.kind), {entry.key: score})
                if entry.metadata.user_id:
                    pipe.zadd(self._user_index(entry.metadata.user_id), {entry.key: score})
                await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable(f"Redis cache put failed: {e}") from e

    async def delete(self, key: str) -> bool:
        entry_key = self._entry_key(key)
        try:
            body = await self.redis.hget(entry_key, "body")
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(entry_key)
                if body is not None:
                    entry = CacheEntry.model_validate_json(_text(body))
                    pipe.zrem(self._kind_index(entry.kind), key)
                    if entry.metadata.user_id:
                        pipe.zrem(self._user_index(entry.metadata.user_id), key)
                results = await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable(f"Redis cache delete failed: {e}") from e
        return bool(results[0])

    async def delete_by_kind(self, kind: CacheKind) -> int:
        kind_value = CacheKind(kind).value
        index = self._kind_index(kind_value)
        removed = 0
        try:
            members = await self.redis.zrange(index, 0, -1)
            for start in range(0, len(members), 500):
                batch = [self._entry_key(_text(m)) for m in members[start:start + 500]]
                removed += await self.redis.delete(*batch)
            await self.redis.delete(index)
        except RedisError as e:
            raise CacheUnavailable(f"Redis cache clear failed: {e}") from e
        self.logger.info(f"Cleared {removed} {kind_value} entries")
        return removed

    async def list_recent(
        self,
        kind: Optional[CacheKind] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[CacheEntry]:
        kind_value = CacheKind(kind).value if kind else None
        if user_id:
            indexes = [self._user_index(user_id)]
        elif kind_value:
            indexes = [self._kind_index(kind_value)]
        else:
            indexes = [self._kind_index(k.value) for k in CacheKind]

        now = self.clock()
        entries: List[CacheEntry] = []
        try:
            for index in indexes:
                entries.extend(
                    await self._scan_index(index, kind_value, now, limit)
                )
        except RedisError as e:
            raise CacheUnavailable(f"Redis cache list failed: {e}") from e

        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]

    async def _scan_index(
        self,
        index: str,
        kind_value: Optional[str],
        now: datetime,
        limit: int,
    ) -> List[CacheEntry]:
        """Walk an index newest first, dropping members whose entry is gone."""
        found: List[CacheEntry] = []
        page = max(limit, 50)
        start = 0

        while len(found) < limit:
            members = await self.redis.zrevrange(index, start, start + page - 1)
            if not members:
                break
            start += page

            async with self.redis.pipeline(transaction=False) as pipe:
                for member in members:
                    pipe.hget(self._entry_key(_text(member)), "body")
                bodies = await pipe.execute()

            stale = []
            for member, body in zip(members, bodies):
                if body is None:
                    stale.append(member)
                    continue
                entry = CacheEntry.model_validate_json(_text(body))
                if entry.is_expired(now):
                    continue
                if kind_value and entry.kind != kind_value:
                    continue
                found.append(entry)

            if stale:
                await self.redis.zrem(index, *stale)
                start -= len(stale)

        return found[:limit]


class TieredCacheStore(CacheStore):
    """
    Process-local memory tier in front of a shared store.

    PATTERN: Read memory then shared; fill memory on a shared hit;
        write and delete through both tiers
    CRITICAL: The shared store is written first, so the memory tier never
        holds an entry the shared store rejected
    GOTCHA: Invalidations made by other workers reach this worker's memory
        tier only when its copy expires (at most front_ttl seconds)
    GOTCHA: Memory-tier hits are not counted in the shared store
    """

    def __init__(
        self,
        front: InMemoryCacheStore,
        back: CacheStore,
        front_ttl: Optional[int] = 300,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize tiered store.

        Args:
            front: In-memory tier
            back: Shared persistent tier
            front_ttl: Longest a memory copy lives, in seconds (None for
                the entry's own expiry)
            clock: Time source (defaults to datetime.now)
        """
        super().__init__(clock)
        self.front = front
        self.back = back
        self.front_ttl = front_ttl

    async def get(self, key: str) -> Optional[CacheEntry]:
        entry = await self.front.get(key)
        if entry is not None:
            return entry

        entry = await self.back.get(key)
        if entry is not None:
            await self.front.put(self._front_copy(entry))
            self.logger.debug(f"Filled memory tier from shared store: {key[:24]}...")
        return entry

    async def put(self, entry: CacheEntry) -> None:
        await self.back.put(entry)
        await self.front.put(self._front_copy(entry))

    async def delete(self, key: str) -> bool:
        local = await self.front.delete(key)
        shared = await self.back.delete(key)
        return local or shared

    async def delete_by_kind(self, kind: CacheKind) -> int:
        await self.front.delete_by_kind(kind)
        return await self.back.delete_by_kind(kind)

    async def list_recent(
        self,
        kind: Optional[CacheKind] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[CacheEntry]:
        return await self.back.list_recent(kind=kind, user_id=user_id, limit=limit)

    def _front_copy(self, entry: CacheEntry) -> CacheEntry:
        if self.front_ttl is None:
            return entry
        cap = self.clock() + timedelta(seconds=self.front_ttl)
        if entry.expires_at <= cap:
            return entry
        return entry.model_copy(update={"expires_at": cap})


class FailOpenCache:
    """
    Wraps a CacheStore so cache trouble never fails a request.

    PATTERN: Timeouts and store errors become misses or skipped writes
    CRITICAL: Correctness over cache availability
    """

    def __init__(self, store: CacheStore, timeout: float = 2.0):
        """
        Initialize wrapper.

        Args:
            store: Underlying cache store
            timeout: Seconds allowed per cache operation
        """
        self.store = store
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

        # Statistics
        self.hits = 0
        self.misses = 0
        self.errors = 0

    async def _call(self, operation: str, awaitable, default):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            self.errors += 1
            self.logger.warning(f"Cache {operation} timed out after {self.timeout}s")
        except CacheUnavailable as e:
            self.errors += 1
            self.logger.warning(f"Cache {operation} unavailable: {e}")
        except Exception as e:
            self.errors += 1
            self.logger.error(f"Unexpected cache {operation} error: {e}", exc_info=True)
        return default

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        """Read an entry; any failure is a miss."""
        entry = await self._call("get", self.store.get(key), None)
        if entry is None:
            self.misses += 1
        else:
            self.hits += 1
            self.logger.debug(
                f"Cache hit: {key[:24]}... (accesses: {entry.access_count})"
            )
        return entry

    async def save(self, entry: CacheEntry) -> bool:
        """Write an entry; returns False if the write was skipped."""
        return await self._call("put", self._put(entry), False)

    async def _put(self, entry: CacheEntry) -> bool:
        await self.store.put(entry)
        return True

    async def invalidate(self, key: str) -> bool:
        return await self._call("delete", self.store.delete(key), False)

    async def clear(self, kind: Optional[CacheKind] = None) -> int:
        """Remove entries of one kind, or of every kind."""
        kinds = [CacheKind(kind)] if kind else list(CacheKind)
        removed = 0
        for each in kinds:
            removed += await self._call("clear", self.store.delete_by_kind(each), 0)
        return removed

    async def recent(
        self,
        kind: Optional[CacheKind] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[CacheEntry]:
        return await self._call(
            "list",
            self.store.list_recent(kind=kind, user_id=user_id, limit=limit),
            [],
        )

    def get_stats(self) -> Dict[str, Any]:
        """
        Get lookup statistics.

        Returns:
            Dictionary with hits, misses, errors and hit rate
        """
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "total_requests": total,
            "hit_rate": self.hits / total if total > 0 else 0.0,
        }
