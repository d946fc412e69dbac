"""Flat finder endpoints: ranking, town listing and bookmark batch scoring."""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.auth import UserContext, get_optional_user
from app.dependencies import get_analytics_service, get_finder_service
from app.schemas import (
    RankingRequest,
    RankingResponse,
    ScoreBatchRequest,
    ScoreBatchResponse,
    TownsResponse,
)
from app.services.analytics_service import AnalyticsService
from app.services.finder_service import FinderService, RankingRequestError, validate_query
from app.services.ranking_service import RankingCancelled
from app.services.resale_service import FALLBACK_TOWNS, ListingCandidate

logger = logging.getLogger(__name__)

router = APIRouter()

CLIENT_CLOSED_REQUEST = 499
DISCONNECT_POLL_SECONDS = 0.5


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "results": [], "error": message},
    )


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/api/finder", response_model=RankingResponse)
async def rank_flats(
    body: RankingRequest,
    request: Request,
    finder: FinderService = Depends(get_finder_service),
    analytics: AnalyticsService = Depends(get_analytics_service),
    user: Optional[UserContext] = Depends(get_optional_user),
):
    """
    Rank representative resale flats in the selected towns.

    Listings are scored on MRT, school and clinic proximity plus
    affordability, weighted by the caller's preferences. Signed-in users
    with an age and income on their profile get a buyer-specific
    affordability score; everyone else gets the price position within
    the candidate set.
    """
    try:
        query = validate_query(body.towns, body.flat_type, body.weights, body.price_policy)
    except RankingRequestError as e:
        return _error(400, str(e))

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    user_id = user.user_id if user else None
    try:
        payload = await finder.find(query, user_id=user_id, cancel_event=cancel_event)
    except RankingRequestError as e:
        return _error(400, str(e))
    except RankingCancelled:
        logger.info(f"Client disconnected during ranking for {query.towns}")
        return _error(CLIENT_CLOSED_REQUEST, "Request cancelled.")
    except Exception as e:
        logger.exception(f"Ranking failed for {query.towns} / {query.flat_type}")
        return _error(500, str(e) or "Ranking failed.")
    finally:
        watcher.cancel()

    await analytics.log_ranking(
        user_id=user_id,
        towns=query.towns,
        flat_type=query.flat_type,
        result_count=len(payload["results"]),
        misses=payload["misses"],
    )
    return payload


@router.get("/api/finder/towns", response_model=TownsResponse)
async def list_towns(finder: FinderService = Depends(get_finder_service)):
    """Distinct towns in the resale dataset; a short fixed list if it is unreachable."""
    try:
        towns = await finder.get_towns()
    except Exception as e:
        logger.warning(f"Town listing failed, using fallback list: {e}")
        towns = []
    return {"ok": True, "towns": towns or list(FALLBACK_TOWNS)}


@router.post("/api/score-batch", response_model=ScoreBatchResponse)
async def score_batch(
    body: ScoreBatchRequest,
    finder: FinderService = Depends(get_finder_service),
):
    """Scores for bookmarked flats, keyed by composite key, in request order."""
    listings = [
        ListingCandidate(
            town=item.town.strip().upper(),
            block=item.block.strip().upper(),
            street_name=item.street_name.strip().upper(),
            flat_type=item.flat_type.strip().upper(),
            resale_price=item.resale_price,
            month=(item.month or "").strip(),
        )
        for item in body.items
    ]
    try:
        return await finder.score_batch(listings, body.weights)
    except RankingRequestError as e:
        return _error(400, str(e))
    except Exception as e:
        logger.exception(f"Batch scoring failed for {len(listings)} items")
        return _error(500, str(e) or "Scoring failed.")
