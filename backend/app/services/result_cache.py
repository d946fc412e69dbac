"""In-process TTL cache for computed ranking payloads."""
import asyncio
import hashlib
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple

from app import config

logger = logging.getLogger(__name__)

CACHE_KEY_VERSION = 1


def build_finder_cache_key(
    towns: Iterable[str],
    weights: Optional[Mapping[str, Any]],
    flat_type: str,
    price_policy: str,
) -> str:
    """Deterministic key for a ranking request.

    Towns are uppercased and sorted, so input order never changes the key.
    """
    payload = {
        "towns": sorted({(t or "").strip().upper() for t in towns}),
        "weights": dict(sorted((weights or {}).items())),
        "flat_type": (flat_type or "").strip().upper(),
        "price_policy": price_policy,
        "v": CACHE_KEY_VERSION,
    }
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()
    return f"finder:{digest}"


def build_batch_cache_key(composite_keys: Iterable[str], weights: Optional[Mapping[str, Any]]) -> str:
    payload = {
        "keys": list(composite_keys),
        "weights": dict(sorted((weights or {}).items())),
        "v": CACHE_KEY_VERSION,
    }
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()
    return f"score_batch:{digest}"


class ResultCache:
    """Memoize expensive results for a fixed time.

    Expired entries are dropped on lookup and swept on every write. When
    more than ``max_entries`` live entries remain, the ones closest to
    expiry are evicted. A ttl of 0 or less turns the cache into a
    pass-through.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = config.RESULT_CACHE_MAX_ENTRIES,
    ):
        self._clock = clock
        self.max_entries = max(1, max_entries)
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            return
        async with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries[key] = (now + ttl_seconds, value)
            overflow = len(self._entries) - self.max_entries
            if overflow > 0:
                soonest = sorted(self._entries, key=lambda k: self._entries[k][0])[:overflow]
                for stale in soonest:
                    del self._entries[stale]

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def get_or_compute(
        self,
        key: str,
        ttl_seconds: float,
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        if ttl_seconds > 0:
            hit = await self.get(key)
            if hit is not None:
                logger.debug(f"Result cache hit: {key}")
                return hit
        value = await compute()
        await self.set(key, value, ttl_seconds)
        return value

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
