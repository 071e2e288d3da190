"""Response cache — fingerprint-keyed TTL store.

  - Keys are SHA-256 digests of a canonical JSON rendering of the request's
    semantic fields (kind, input, context, effective temperature and
    max_tokens, model override)
  - Expired entries are dead on read even before the sweep removes them
  - Values are deep-copied on write and on read
  - A background task sweeps expired entries on a fixed interval
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from counselflow.gateway.types import AnalysisKind, AnalysisRequest

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 600.0

# Legal-domain answers age slowly
DOMAIN_TTL_SECONDS: dict[AnalysisKind, float] = {
    AnalysisKind.CONTRACT_ANALYSIS: 24 * 3600.0,
    AnalysisKind.LEGAL_RESEARCH: 12 * 3600.0,
}


def ttl_for(kind: AnalysisKind, default: float = DEFAULT_TTL_SECONDS) -> float:
    return DOMAIN_TTL_SECONDS.get(kind, default)


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------


def _json_scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"Value of type {type(value).__name__} is not canonicalizable")


def canonical_json(value: Any) -> str:
    """Deterministic JSON: sorted keys at every depth, no whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_json_scalar)


def fingerprint(request: AnalysisRequest) -> str:
    """Cache key for a request.

    Identity and transport fields (request_id, created_at, timeout,
    cache toggle) are excluded, so two calls asking the same question
    share a key.
    """
    semantic = {
        "kind": request.kind.value,
        "input": request.input,
        "context": request.context.model_dump(mode="json") if request.context else None,
        "options": {"temperature": request.temperature, "max_tokens": request.max_tokens},
        "model": request.model,
    }
    return hashlib.sha256(canonical_json(semantic).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Cache store
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    ttl_seconds: float

    def is_alive(self, now: float) -> bool:
        return now - self.stored_at < self.ttl_seconds


class ResponseCache:
    """In-process TTL cache guarded by a single asyncio.Lock.

    Usage:
        cache = ResponseCache()
        cache.start_sweeper()

        await cache.set(key, response, ttl=ttl_for(kind))
        hit = await cache.get(key)

        await cache.stop_sweeper()
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if not entry.is_alive(self._clock()):
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None
            self._hits += 1
            value = entry.value
        # Stored values are private copies and never mutated in place
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        stored = copy.deepcopy(value)
        async with self._lock:
            self._entries[key] = CacheEntry(key=key, value=stored, stored_at=self._clock(), ttl_seconds=ttl)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        async with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.is_alive(self._clock())

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Response cache cleared (%d entries)", count)
        return count

    async def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if not e.is_alive(now)]
            for key in expired:
                del self._entries[key]
            self._evictions += len(expired)
            remaining = len(self._entries)
        if expired:
            logger.debug("Cache sweep removed %d entries, %d remain", len(expired), remaining)
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

    def start_sweeper(self) -> None:
        """Start the periodic sweep. Needs a running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def get_stats(self) -> dict:
        async with self._lock:
            size = len(self._entries)
        lookups = self._hits + self._misses
        return {
            "size": size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
        }

    def __len__(self) -> int:
        return len(self._entries)
