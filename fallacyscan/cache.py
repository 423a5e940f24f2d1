"""
Analysis Cache — Tiered Store with TTL and Stale-While-Revalidate

Two tiers:
  - primary:  Redis (redis.asyncio), enabled when FALLACYSCAN_REDIS_URL is set
  - fallback: in-process dict with absolute expiry, swept lazily on read

Reads try the primary first and fall back to the in-process store on a
primary miss or error. Writes go to the primary, or to the fallback only
when the primary is disabled or the primary write fails. Cache errors are
logged and counted here and never reach the caller.

Payloads are typed through a Codec: the codec's tag namespaces the key
(cache:analysis:<key>) and its encode/decode pair converts between the
domain object and the JSON envelope stored in either tier.

Usage:
    from fallacyscan.cache import CacheService
    cache = CacheService()
    cached = await cache.get_cached_analysis(text)
    if cached is None:
        result = await analyze(...)
        await cache.cache_analysis(text, result)
"""

from __future__ import annotations

import asyncio
import base64
import json
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from fallacyscan.logging import get_logger
from fallacyscan.models import AnalysisResult

logger = get_logger("cache")

T = TypeVar("T")

# Fallback-tier lifetime for entries written without a TTL
DEFAULT_FALLBACK_TTL = 24 * 60 * 60


@dataclass(frozen=True)
class CacheConfig:
    """Freshness policy for one write or read-through."""
    ttl: Optional[int] = None  # seconds; None = never stale
    stale_while_revalidate: Optional[int] = None  # extra seconds served stale

    @property
    def lifetime(self) -> Optional[int]:
        """How long the entry physically survives in either tier."""
        if not self.ttl:
            return None
        return self.ttl + (self.stale_while_revalidate or 0)


CACHE_CONFIGS = {
    "short": CacheConfig(ttl=60, stale_while_revalidate=60),
    "medium": CacheConfig(ttl=300, stale_while_revalidate=300),
    "long": CacheConfig(ttl=3600, stale_while_revalidate=1800),
    "day": CacheConfig(ttl=86400, stale_while_revalidate=3600),
}


@dataclass(frozen=True)
class Codec(Generic[T]):
    """Typed access to cached payloads under one key namespace."""
    tag: str
    encode: Callable[[T], Any]
    decode: Callable[[Any], T]


def _identity(value):
    return value


RAW: Codec[Any] = Codec("", _identity, _identity)
ANALYSIS: Codec[AnalysisResult] = Codec(
    "analysis", AnalysisResult.to_dict, AnalysisResult.from_dict,
)


@dataclass(frozen=True)
class CacheEntry:
    """Envelope stored in both tiers. Replaced whole, never patched."""
    data: Any
    created_at: float
    updated_at: float
    expires_at: Optional[float] = None

    def dumps(self) -> str:
        return json.dumps({
            "data": self.data,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "expiresAt": self.expires_at,
        })

    @classmethod
    def loads(cls, raw: str) -> "CacheEntry":
        obj = json.loads(raw)
        return cls(
            data=obj["data"],
            created_at=float(obj["createdAt"]),
            updated_at=float(obj["updatedAt"]),
            expires_at=obj.get("expiresAt"),
        )


@dataclass(frozen=True)
class CacheStats:
    total_keys: int
    hit_rate: float
    primary_enabled: bool

    def to_dict(self) -> dict:
        return {
            "totalKeys": self.total_keys,
            "hitRate": self.hit_rate,
            "primaryEnabled": self.primary_enabled,
        }


# ============================================================
# STORES
# ============================================================

class MemoryStore:
    """In-process fallback tier. Expired entries are swept on read, never on a timer."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock

    def get(self, key: str) -> Optional[CacheEntry]:
        self.sweep()
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def sweep(self) -> None:
        now = self._clock()
        expired = [
            k for k, e in self._entries.items()
            if e.expires_at is not None and e.expires_at <= now
        ]
        for k in expired:
            del self._entries[k]

    def __len__(self) -> int:
        return len(self._entries)


class RedisStore:
    """Primary tier over a redis.asyncio client (decode_responses=True)."""

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        from redis import asyncio as aioredis
        return cls(aioredis.from_url(url, encoding="utf8", decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self._client.set(key, value, ex=ttl)
        else:
            await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def count(self, pattern: str) -> int:
        """Approximate key count by pattern. Not consistent with concurrent writes."""
        total = 0
        async for _ in self._client.scan_iter(match=pattern):
            total += 1
        return total

    async def close(self) -> None:
        await self._client.aclose()


# ============================================================
# SERVICE
# ============================================================

class CacheService:
    """Tiered cache with hit-rate accounting. Sole writer of both tiers."""

    def __init__(
        self,
        primary: Optional[RedisStore] = None,
        prefix: str = "cache",
        clock: Callable[[], float] = time.time,
    ):
        self._primary = primary
        self._fallback = MemoryStore(clock=clock)
        self._prefix = prefix
        self._clock = clock
        self._total_requests = 0
        self._hits = 0
        self._errors = 0
        self._revalidations: dict[str, asyncio.Task] = {}

    @property
    def primary_enabled(self) -> bool:
        return self._primary is not None

    @property
    def errors(self) -> int:
        return self._errors

    def _full_key(self, key: str, codec: Codec) -> str:
        if codec.tag:
            return f"{self._prefix}:{codec.tag}:{key}"
        return f"{self._prefix}:{key}"

    # --- reads ---

    async def _get_entry(self, full_key: str) -> Optional[CacheEntry]:
        self._total_requests += 1

        if self._primary is not None:
            try:
                raw = await self._primary.get(full_key)
                entry = CacheEntry.loads(raw) if raw is not None else None
            except Exception as e:
                # Counted once here; the fallback lookup below is not a second error
                self._errors += 1
                logger.error(
                    "Failed to get from cache",
                    extra={"cache_key": full_key, "error": str(e)},
                )
                entry = None
            if entry is not None:
                self._hits += 1
                return entry

        entry = self._fallback.get(full_key)
        if entry is not None:
            self._hits += 1
        return entry

    def _decode(self, entry: CacheEntry, codec: Codec[T], full_key: str) -> Optional[T]:
        try:
            return codec.decode(entry.data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Discarding undecodable cache entry",
                extra={"cache_key": full_key, "error": str(e)},
            )
            return None

    async def get(self, key: str, codec: Codec[T] = RAW) -> Optional[T]:
        """Return the cached value, or None on a miss in both tiers."""
        full_key = self._full_key(key, codec)
        entry = await self._get_entry(full_key)
        if entry is None:
            return None
        return self._decode(entry, codec, full_key)

    # --- writes ---

    async def set(
        self,
        key: str,
        value: T,
        config: Optional[CacheConfig] = None,
        codec: Codec[T] = RAW,
    ) -> None:
        """Store a value in exactly one tier."""
        config = config or CacheConfig()
        full_key = self._full_key(key, codec)
        now = self._clock()
        lifetime = config.lifetime
        entry = CacheEntry(
            data=codec.encode(value),
            created_at=now,
            updated_at=now,
            expires_at=now + (lifetime or DEFAULT_FALLBACK_TTL),
        )

        if self._primary is not None:
            try:
                ttl = math.ceil(lifetime) if lifetime else None
                await self._primary.set(full_key, entry.dumps(), ttl)
                return
            except Exception as e:
                self._errors += 1
                logger.error(
                    "Failed to set cache",
                    extra={"cache_key": full_key, "error": str(e)},
                )

        self._fallback.set(full_key, entry)

    async def delete(self, key: str, codec: Codec = RAW) -> None:
        """Best-effort primary delete; the fallback copy is always removed."""
        full_key = self._full_key(key, codec)
        if self._primary is not None:
            try:
                await self._primary.delete(full_key)
            except Exception as e:
                self._errors += 1
                logger.error(
                    "Failed to delete from cache",
                    extra={"cache_key": full_key, "error": str(e)},
                )
        self._fallback.delete(full_key)

    # --- read-through ---

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        config: Optional[CacheConfig] = None,
        codec: Codec[T] = RAW,
    ) -> T:
        """
        Read-through cache.

        Fresh entry: returned as-is. Stale entry (age within the
        stale-while-revalidate window): returned as-is while the factory
        recomputes it in the background. Otherwise the factory runs inline.

        Concurrent misses on one key are not coalesced; each caller runs
        its own factory and the last write stands.
        """
        config = config or CacheConfig()
        full_key = self._full_key(key, codec)
        entry = await self._get_entry(full_key)

        if entry is not None:
            value = self._decode(entry, codec, full_key)
            if value is not None:
                if self._is_valid(entry, config):
                    return value
                if config.stale_while_revalidate and self._is_stale(entry, config):
                    self._schedule_revalidation(key, factory, config, codec)
                    return value

        value = await factory()
        await self.set(key, value, config, codec)
        return value

    def _age(self, entry: CacheEntry) -> float:
        return self._clock() - entry.updated_at

    def _is_valid(self, entry: CacheEntry, config: CacheConfig) -> bool:
        if not config.ttl:
            return True
        return self._age(entry) < config.ttl

    def _is_stale(self, entry: CacheEntry, config: CacheConfig) -> bool:
        if not config.ttl or not config.stale_while_revalidate:
            return False
        age = self._age(entry)
        return config.ttl <= age < config.ttl + config.stale_while_revalidate

    def _schedule_revalidation(self, key, factory, config, codec) -> None:
        full_key = self._full_key(key, codec)
        running = self._revalidations.get(full_key)
        if running is not None and not running.done():
            return
        task = asyncio.create_task(self._revalidate(key, factory, config, codec))
        self._revalidations[full_key] = task
        task.add_done_callback(lambda t: self._forget_revalidation(full_key, t))

    def _forget_revalidation(self, full_key: str, task: asyncio.Task) -> None:
        # A newer refresh may already own the slot
        if self._revalidations.get(full_key) is task:
            del self._revalidations[full_key]

    async def _revalidate(self, key, factory, config, codec) -> None:
        try:
            value = await factory()
            await self.set(key, value, config, codec)
        except Exception as e:
            self._errors += 1
            logger.error(
                "Failed to revalidate cache",
                extra={"cache_key": self._full_key(key, codec), "error": str(e)},
            )

    async def wait_for_revalidations(self) -> None:
        """Await in-flight background refreshes (shutdown and tests)."""
        tasks = list(self._revalidations.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- stats ---

    async def get_cache_stats(self) -> CacheStats:
        """Snapshot of key count and lifetime hit rate."""
        self._fallback.sweep()

        primary_keys = 0
        if self._primary is not None:
            try:
                primary_keys = await self._primary.count(f"{self._prefix}:*")
            except Exception as e:
                self._errors += 1
                logger.error("Failed to get primary key count", extra={"error": str(e)})

        total = self._total_requests
        return CacheStats(
            total_keys=primary_keys if self._primary is not None else len(self._fallback),
            hit_rate=self._hits / total if total > 0 else 0.0,
            primary_enabled=self._primary is not None,
        )

    # --- analysis results ---

    @staticmethod
    def analysis_key(text: str) -> str:
        """Content-addressed key: reversible base64 of the exact UTF-8 text.

        Lone surrogates are kept byte-for-byte (surrogatepass) rather than
        failing the lookup.
        """
        return base64.urlsafe_b64encode(text.encode("utf-8", "surrogatepass")).decode("ascii")

    async def get_cached_analysis(self, text: str) -> Optional[AnalysisResult]:
        return await self.get(self.analysis_key(text), codec=ANALYSIS)

    async def cache_analysis(
        self, text: str, result: AnalysisResult, ttl_seconds: int = 86400,
    ) -> None:
        await self.set(
            self.analysis_key(text), result, CacheConfig(ttl=ttl_seconds), codec=ANALYSIS,
        )

    async def invalidate_analysis(self, text: str) -> None:
        await self.delete(self.analysis_key(text), codec=ANALYSIS)

    async def close(self) -> None:
        for task in list(self._revalidations.values()):
            task.cancel()
        if self._primary is not None:
            await self._primary.close()
