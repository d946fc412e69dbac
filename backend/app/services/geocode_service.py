"""
Address geocoding for HDB blocks.

OneMapGeocoder talks to the OneMap search API and owns nothing else;
GeocodeResolver layers the durable cache, the negative cache and the
town-centroid fallback on top of it.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import httpx

from app import config
from app.services.geo import GeoPoint, is_valid_sg_coordinate
from app.services.geocode_cache import GeocodeCache, GeocodeResult, build_cache_key
from app.services.town_centroids import get_town_centroid

logger = logging.getLogger(__name__)


class OneMapGeocoder:
    """Geocoding collaborator backed by the OneMap search endpoint.

    Stateless from the caller's point of view: no caching happens here.
    Rate limiting (429) and server errors get one retry after a short
    backoff; a second failure returns None. Transport errors are retried
    once and then raised.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = config.ONEMAP_SEARCH_URL,
        token: str = config.ONEMAP_TOKEN,
        timeout_seconds: float = config.GEOCODE_TIMEOUT_SECONDS,
        backoff_seconds: float = config.GEOCODE_RATE_LIMIT_BACKOFF_SECONDS,
    ):
        self.base_url = base_url
        self.token = token
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = backoff_seconds
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def build_query(block: str, street: str) -> str:
        b = " ".join(str(block or "").split())
        s = " ".join(str(street or "").split())
        return f"BLK {b} {s}, Singapore"

    @staticmethod
    def pick_result(results: Optional[List[dict]], town: Optional[str] = None) -> Optional[GeocodeResult]:
        """First result, preferring one whose address mentions the town."""
        if not results:
            return None
        best = results[0]
        if town:
            wanted = town.strip().upper()
            for candidate in results:
                if wanted in str(candidate.get("ADDRESS", "")).upper():
                    best = candidate
                    break
        try:
            return GeocodeResult(
                lat=float(best["LATITUDE"]),
                lng=float(best["LONGITUDE"]),
                postal=best.get("POSTAL"),
                address=best.get("ADDRESS"),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning(f"OneMap result without usable coordinates: {best!r}")
            return None

    async def geocode(self, block: str, street: str, town: Optional[str] = None) -> Optional[GeocodeResult]:
        params = {
            "searchVal": self.build_query(block, street),
            "returnGeom": "Y",
            "getAddrDetails": "Y",
            "pageNum": 1,
        }
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        for attempt in range(2):
            try:
                response = await self.client.get(self.base_url, params=params, headers=headers)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt == 0:
                    logger.warning(f"OneMap request failed ({type(e).__name__}), retrying: {params['searchVal']}")
                    continue
                raise

            if response.status_code == 429 or response.status_code >= 500:
                if attempt == 0:
                    await asyncio.sleep(self.backoff_seconds)
                    continue
                logger.warning(f"OneMap gave up after retry: status={response.status_code} query={params['searchVal']}")
                return None

            if response.status_code != 200:
                logger.warning(f"OneMap returned {response.status_code} for {params['searchVal']}")
                return None

            return self.pick_result(response.json().get("results"), town)
        return None


@dataclass(frozen=True)
class GeocodeResolution:
    """Coordinate for one address; ``approximate`` marks a town-centroid fallback."""
    point: GeoPoint
    postal: Optional[str] = None
    address: Optional[str] = None
    approximate: bool = False

    @property
    def lat(self) -> float:
        return self.point.lat

    @property
    def lng(self) -> float:
        return self.point.lng


class GeocodeResolver:
    """Resolve (block, street, town) to a coordinate with caching and fallbacks."""

    def __init__(
        self,
        geocoder,
        cache: GeocodeCache,
        centroid_lookup: Callable[[Optional[str]], Optional[GeoPoint]] = get_town_centroid,
    ):
        self.geocoder = geocoder
        self.cache = cache
        self.centroid_lookup = centroid_lookup
        self.upstream_calls = 0

    def _centroid_fallback(self, town: Optional[str]) -> Optional[GeocodeResolution]:
        centroid = self.centroid_lookup(town)
        if centroid is None or not is_valid_sg_coordinate(centroid.lat, centroid.lng):
            return None
        return GeocodeResolution(point=centroid, approximate=True)

    async def resolve(self, block: str, street: str, town: Optional[str] = None) -> Optional[GeocodeResolution]:
        key = build_cache_key(block, street, town)

        cached = await self.cache.get(key)
        if cached is not None:
            if is_valid_sg_coordinate(cached.lat, cached.lng):
                return GeocodeResolution(
                    point=GeoPoint(cached.lat, cached.lng),
                    postal=cached.postal,
                    address=cached.address,
                )
            logger.warning(f"Cached coordinate for {key} is outside Singapore; using fallback")
            return self._centroid_fallback(town)

        if self.cache.is_recently_failed(key):
            return self._centroid_fallback(town)

        self.upstream_calls += 1
        try:
            result = await self.geocoder.geocode(block, street, town)
        except Exception as e:
            logger.warning(f"Geocode error for {key}: {type(e).__name__}: {e}")
            result = None

        if result is not None and not is_valid_sg_coordinate(result.lat, result.lng):
            logger.warning(f"Discarding out-of-bounds geocode for {key}: {result.lat},{result.lng}")
            result = None

        if result is None:
            await self.cache.mark_failed(key)
            return self._centroid_fallback(town)

        await self.cache.put(key, result)
        return GeocodeResolution(
            point=GeoPoint(result.lat, result.lng),
            postal=result.postal,
            address=result.address,
        )
