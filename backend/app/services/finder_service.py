"""
Request-level orchestration for the flat finder.

Validates ranking requests, loads representative listings, applies the
caller's affordability profile and memoizes finished payloads.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from app import config
from app.services.profile_service import AffordabilityProfile, ProfileService
from app.services.ranking_service import RankingService
from app.services.resale_service import FLAT_TYPES, ListingCandidate, ResaleService
from app.services.result_cache import ResultCache, build_batch_cache_key, build_finder_cache_key
from app.services.scoring_service import CRITERIA, ScoringService

logger = logging.getLogger(__name__)

# pricing policy -> recent-months window (None = cheapest ever)
PRICE_POLICIES: Dict[str, Optional[int]] = {
    "cheapest-recent-24m": config.RECENT_MONTHS,
    "cheapest-all-time": None,
}


class RankingRequestError(ValueError):
    """The request cannot be ranked as given (client error)."""


@dataclass(frozen=True)
class FinderQuery:
    towns: List[str]
    flat_type: str
    weights: Dict[str, float]
    price_policy: str


def validate_query(
    towns: Optional[List[str]],
    flat_type: Optional[str],
    weights: Optional[Dict[str, float]],
    price_policy: Optional[str],
) -> FinderQuery:
    """Normalize a ranking request or raise RankingRequestError."""
    normalized_towns: List[str] = []
    for town in towns or []:
        t = (town or "").strip().upper()
        if t and t not in normalized_towns:
            normalized_towns.append(t)
    if not normalized_towns:
        raise RankingRequestError("No towns selected.")
    if len(normalized_towns) > config.MAX_TOWNS_PER_REQUEST:
        raise RankingRequestError(f"Select at most {config.MAX_TOWNS_PER_REQUEST} towns.")

    ft = (flat_type or "").strip().upper()
    if not ft:
        raise RankingRequestError("No flat type selected.")
    if ft not in FLAT_TYPES:
        raise RankingRequestError(f"Unknown flat type: {ft}")

    policy = (price_policy or config.DEFAULT_PRICE_POLICY).strip().lower()
    if policy not in PRICE_POLICIES:
        raise RankingRequestError(f"Unknown price policy: {policy}")

    return FinderQuery(
        towns=normalized_towns,
        flat_type=ft,
        weights=validate_weights(weights),
        price_policy=policy,
    )


def validate_weights(weights: Optional[Dict[str, float]]) -> Dict[str, float]:
    """Default weights when omitted; reject a weights object with no known criterion."""
    if weights is None:
        return dict(config.DEFAULT_WEIGHTS)
    known = {k: float(v) for k, v in weights.items() if k in CRITERIA and v is not None}
    if not known:
        raise RankingRequestError(f"Weights must include at least one of: {', '.join(CRITERIA)}")
    return {criterion: known.get(criterion, 0.0) for criterion in CRITERIA}


def _profile_fingerprint(profile: Optional[AffordabilityProfile]) -> Optional[list]:
    if profile is None or not profile.is_complete:
        return None
    return [profile.age, profile.income_per_annum, profile.down_payment_budget]


class FinderService:

    def __init__(
        self,
        ranking: RankingService,
        resale: ResaleService,
        profiles: ProfileService,
        cache: ResultCache,
        cache_ttl_seconds: float = config.FINDER_CACHE_TTL_SECONDS,
    ):
        self.ranking = ranking
        self.resale = resale
        self.profiles = profiles
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    async def find(
        self,
        query: FinderQuery,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> dict:
        """Ranked payload ``{ok, results, candidates, misses}`` for a validated query."""
        profile = await self.profiles.get_user_profile(user_id)
        fingerprint = _profile_fingerprint(profile)
        weights_for_key = query.weights if fingerprint is None else {**query.weights, "_profile": fingerprint}
        key = build_finder_cache_key(query.towns, weights_for_key, query.flat_type, query.price_policy)

        async def compute() -> dict:
            listings = await self.resale.load_candidates(
                query.towns, query.flat_type, PRICE_POLICIES[query.price_policy]
            )
            logger.info(f"Ranking {len(listings)} candidates for {query.towns} / {query.flat_type}")
            outcome = await self.ranking.rank(listings, query.weights, profile, cancel_event)
            if outcome.results:
                top = [f"{r.composite_key} ${r.listing.resale_price:,.0f}" for r in outcome.results[:3]]
                logger.info(f"Top results: {top}")
            return {
                "ok": True,
                "results": [r.to_dict() for r in outcome.results],
                "candidates": outcome.candidates,
                "misses": outcome.misses,
            }

        return await self.cache.get_or_compute(key, self.cache_ttl_seconds, compute)

    async def score_batch(self, items: List[ListingCandidate], weights: Optional[Dict[str, float]]) -> dict:
        """Scores keyed by composite key for an explicit list of listings."""
        if not items:
            return {"ok": True, "results": []}
        weights = validate_weights(weights)
        keys = [
            ScoringService.build_composite_key(i.block, i.street_name, i.flat_type, i.month)
            for i in items
        ]

        async def compute() -> dict:
            results = await self.ranking.score_batch(items, weights)
            return {
                "ok": True,
                "results": [{"compositeKey": r.composite_key, "score": r.score} for r in results],
            }

        return await self.cache.get_or_compute(
            build_batch_cache_key(keys, weights), self.cache_ttl_seconds, compute
        )

    async def get_towns(self) -> List[str]:
        return await self.resale.get_all_towns()
