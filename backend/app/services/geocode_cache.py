"""Positive (durable) and negative (short-lived) geocode caches."""
import asyncio
import fcntl
import json
import logging
import os
import re
import tempfile
import time
from contextlib import contextmanager, suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Tuple

from app import config

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class GeocodeResult:
    """A geocoded address as returned by the upstream geocoder."""
    lat: float
    lng: float
    postal: Optional[str] = None
    address: Optional[str] = None


def _norm(value: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", str(value or "")).strip().upper()


def build_cache_key(block: str, street: str, town: Optional[str] = None) -> str:
    """Normalized cache key: ``BLOCK|STREET`` or ``BLOCK|STREET|TOWN``."""
    parts = [_norm(block), _norm(street)]
    if town and _norm(town):
        parts.append(_norm(town))
    return "|".join(parts)


def _result_from_dict(data: dict) -> Optional[GeocodeResult]:
    try:
        return GeocodeResult(
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            postal=data.get("postal"),
            address=data.get("address"),
        )
    except (KeyError, TypeError, ValueError):
        return None


class JsonFileGeocodeStore:
    """Geocode results persisted to a single JSON file.

    The API process and the warm-up worker may share one file. Every write
    takes an exclusive lock on ``<name>.lock``, re-reads the file and
    applies its change on top of what is on disk, then swaps the file in
    atomically through a uniquely named temp file. A miss re-reads the file
    when it has been replaced since it was last loaded, so entries written
    by another process are picked up without a restart.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._entries: Optional[Dict[str, dict]] = None
        self._signature: Optional[Tuple[int, int, int]] = None

    def _file_signature(self) -> Optional[Tuple[int, int, int]]:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _read_disk(self) -> Dict[str, dict]:
        signature = self._file_signature()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            entries = raw if isinstance(raw, dict) else {}
        except FileNotFoundError:
            entries = {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable geocode cache {self.path}: {e}")
            entries = {}
        self._entries = entries
        self._signature = signature
        return entries

    def _load(self) -> Dict[str, dict]:
        if self._entries is None:
            return self._read_disk()
        return self._entries

    def _refresh_if_changed(self) -> Dict[str, dict]:
        if self._entries is None or self._file_signature() != self._signature:
            return self._read_disk()
        return self._entries

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a") as handle:
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)

    def _write(self, snapshot: Dict[str, dict]) -> None:
        tmp = tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.path.parent,
            prefix=self.path.name + ".", suffix=".tmp", delete=False,
        )
        try:
            with tmp:
                json.dump(snapshot, tmp, indent=2)
            os.replace(tmp.name, self.path)
        except Exception:
            with suppress(FileNotFoundError):
                os.unlink(tmp.name)
            raise
        self._entries = snapshot
        self._signature = self._file_signature()

    def _update(self, changes: Dict[str, Optional[dict]], clear: bool = False) -> None:
        """Apply ``changes`` (``None`` deletes a key) to the entries on disk."""
        with self._locked():
            entries = {} if clear else dict(self._read_disk())
            for key, value in changes.items():
                if value is None:
                    entries.pop(key, None)
                else:
                    entries[key] = value
            self._write(entries)

    async def get(self, key: str) -> Optional[GeocodeResult]:
        data = self._load().get(key)
        if data is None:
            entries = await asyncio.to_thread(self._refresh_if_changed)
            data = entries.get(key)
        return _result_from_dict(data) if data else None

    async def set(self, key: str, result: GeocodeResult) -> None:
        await asyncio.to_thread(self._update, {key: asdict(result)})

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._update, {key: None})

    async def clear(self) -> None:
        await asyncio.to_thread(self._update, {}, True)

    async def size(self) -> int:
        return len(await asyncio.to_thread(self._refresh_if_changed))


class SqlGeocodeStore:
    """Geocode results stored in the ``geocode_cache`` table."""

    async def get(self, key: str) -> Optional[GeocodeResult]:
        from app.database import get_session_context
        from app.models.geocode_cache import GeocodeCacheModel

        async with get_session_context() as session:
            row = await session.get(GeocodeCacheModel, key)
            return _result_from_dict(row.to_dict()) if row else None

    async def set(self, key: str, result: GeocodeResult) -> None:
        from app.database import get_session_context
        from app.models.geocode_cache import GeocodeCacheModel

        async with get_session_context() as session:
            await session.merge(GeocodeCacheModel(
                cache_key=key,
                latitude=result.lat,
                longitude=result.lng,
                postal=result.postal,
                address=result.address,
            ))

    async def delete(self, key: str) -> None:
        from sqlalchemy import delete
        from app.database import get_session_context
        from app.models.geocode_cache import GeocodeCacheModel

        async with get_session_context() as session:
            await session.execute(delete(GeocodeCacheModel).where(GeocodeCacheModel.cache_key == key))

    async def clear(self) -> None:
        from sqlalchemy import delete
        from app.database import get_session_context
        from app.models.geocode_cache import GeocodeCacheModel

        async with get_session_context() as session:
            await session.execute(delete(GeocodeCacheModel))

    async def size(self) -> int:
        from sqlalchemy import func, select
        from app.database import get_session_context
        from app.models.geocode_cache import GeocodeCacheModel

        async with get_session_context() as session:
            result = await session.execute(select(func.count(GeocodeCacheModel.cache_key)))
            return result.scalar() or 0


class GeocodeCache:
    """Shared cache state for the geocode resolver.

    Positive entries live in a durable store and are never re-queried once
    written. Failed lookups are remembered in memory for
    ``negative_ttl_seconds`` so the upstream geocoder is not hammered with
    addresses it just failed to resolve.
    """

    def __init__(
        self,
        store,
        negative_ttl_seconds: float = config.NEGATIVE_GEOCODE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.negative_ttl_seconds = negative_ttl_seconds
        self._clock = clock
        self._failures: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[GeocodeResult]:
        return await self.store.get(key)

    async def put(self, key: str, result: GeocodeResult) -> None:
        async with self._lock:
            await self.store.set(key, result)
            self._failures.pop(key, None)

    async def mark_failed(self, key: str) -> None:
        async with self._lock:
            self.purge_expired_failures()
            self._failures[key] = self._clock()

    def is_recently_failed(self, key: str) -> bool:
        failed_at = self._failures.get(key)
        if failed_at is None:
            return False
        if self._clock() - failed_at >= self.negative_ttl_seconds:
            self._failures.pop(key, None)
            return False
        return True

    def purge_expired_failures(self) -> int:
        now = self._clock()
        expired = [k for k, ts in self._failures.items() if now - ts >= self.negative_ttl_seconds]
        for key in expired:
            del self._failures[key]
        return len(expired)

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            await self.store.delete(key)
            self._failures.pop(key, None)

    async def size(self) -> int:
        return await self.store.size()


def create_geocode_store(use_database: bool, path: Path = config.GEOCODE_CACHE_PATH):
    """SQL store when the database is enabled, JSON file store otherwise."""
    if use_database:
        return SqlGeocodeStore()
    return JsonFileGeocodeStore(path)
