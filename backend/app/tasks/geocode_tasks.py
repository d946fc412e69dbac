"""
Celery tasks that pre-populate the geocode cache.

A cold ranking request for a large town geocodes hundreds of blocks; warming
the cache overnight keeps interactive requests on cache hits.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app import config
from app.celery_app import celery_app
from app.database import close_db, is_database_enabled
from app.services.geocode_cache import GeocodeCache, create_geocode_store
from app.services.geocode_service import GeocodeResolver, OneMapGeocoder
from app.services.resale_service import FALLBACK_TOWNS, ResaleService

logger = logging.getLogger(__name__)

# Pause after each upstream lookup to stay well inside OneMap's rate limit
WARM_THROTTLE_SECONDS = 0.12


def run_async(coro):
    """Run an async coroutine in a sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def warm_towns(
    resale: ResaleService,
    resolver: GeocodeResolver,
    towns: List[str],
    flat_type: str,
    throttle_seconds: float = WARM_THROTTLE_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Dict[str, Any]:
    """Resolve every representative listing in ``towns`` one at a time.

    Cache hits cost nothing; only lookups that reached the upstream
    geocoder are followed by the throttle pause.
    """
    stats = {"towns": towns, "flat_type": flat_type, "listings": 0, "resolved": 0,
             "approximate": 0, "unresolved": 0, "upstream_calls": 0}
    for town in towns:
        listings = await resale.load_candidates([town], flat_type)
        logger.info(f"Warming geocode cache for {town}: {len(listings)} blocks")
        for listing in listings:
            calls_before = resolver.upstream_calls
            resolution = await resolver.resolve(listing.block, listing.street_name, listing.town)
            stats["listings"] += 1
            if resolution is None:
                stats["unresolved"] += 1
            elif resolution.approximate:
                stats["approximate"] += 1
            else:
                stats["resolved"] += 1
            if resolver.upstream_calls > calls_before:
                stats["upstream_calls"] += 1
                await sleep(throttle_seconds)
    return stats


@celery_app.task(bind=True, max_retries=2)
def warm_geocode_cache(
    self,
    towns: Optional[List[str]] = None,
    flat_type: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Geocode representative listings for the configured towns.

    Args:
        towns: Towns to warm; defaults to WARM_TOWNS, then a short fixed list
        flat_type: Flat type whose representatives are warmed

    Returns:
        Dict with warm-up counts
    """
    towns = [t.strip().upper() for t in (towns or config.WARM_TOWNS or FALLBACK_TOWNS)]
    flat_type = (flat_type or config.WARM_FLAT_TYPE).strip().upper()
    logger.info(f"Starting geocode warm-up for {towns} / {flat_type}")

    async def _warm():
        geocoder = OneMapGeocoder()
        resale = ResaleService()
        resolver = GeocodeResolver(
            geocoder, GeocodeCache(create_geocode_store(is_database_enabled()))
        )
        try:
            return await warm_towns(resale, resolver, towns, flat_type)
        finally:
            await geocoder.close()
            await resale.close()
            if is_database_enabled():
                await close_db()

    try:
        stats = run_async(_warm())
    except Exception as e:
        logger.exception(f"Geocode warm-up failed: {e}")
        raise self.retry(exc=e, countdown=300)

    logger.info(
        f"Geocode warm-up done: {stats['resolved']} resolved, {stats['approximate']} approximate, "
        f"{stats['unresolved']} unresolved, {stats['upstream_calls']} upstream calls"
    )
    return {"status": "completed", **stats}
