"""
Composite scoring and ranking of HDB resale listings.

For each candidate: resolve a coordinate, measure the distance to the
nearest MRT/LRT station, school and clinic, turn those into 0-100
sub-scores, add an affordability sub-score, and combine them with the
user's normalized weights. Listings without a coordinate are excluded,
not scored 0.
"""
import asyncio
import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from app import config
from app.services.affordability_service import (
    AffordabilityInputs,
    estimate_remaining_lease_years,
    evaluate_affordability,
)
from app.services.amenity_service import CLINIC, MRT, SCHOOL, AmenityRepository
from app.services.geo import AmenityPoint, GeoPoint, NearestAmenity, nearest_distance, nearest_with_name
from app.services.geocode_service import GeocodeResolution, GeocodeResolver
from app.services.profile_service import AffordabilityProfile
from app.services.resale_service import ListingCandidate
from app.services.scoring_service import DISTANCE_CAPS_M, ScoringService

logger = logging.getLogger(__name__)

MAX_DISTANCE_MEMO = 50_000

# Stand-in distances for town-centroid placements, mid-range within each cap
NEUTRAL_DISTANCES_M: Dict[str, float] = {"mrt": 750.0, "school": 750.0, "hospital": 1500.0}
MISS_SAMPLE_SIZE = 8


class RankingCancelled(Exception):
    """The caller went away; partial results are discarded."""


@dataclass(frozen=True)
class AmenityDistances:
    mrt_m: Optional[float]
    school: Optional[float]
    hospital: Optional[float]
    station: Optional[NearestAmenity] = None


@dataclass(frozen=True)
class ScoredResult:
    listing: ListingCandidate
    score: float
    affordability_score: float   # 0-10 display scale
    distances: AmenityDistances
    composite_key: str
    point: GeoPoint
    approx: bool = False

    def to_dict(self) -> dict:
        nearest = self.distances.station
        return {
            **asdict(self.listing),
            "score": self.score,
            "affordability_score": self.affordability_score,
            "distances": {
                "mrt": self.distances.mrt_m,
                "school": self.distances.school,
                "hospital": self.distances.hospital,
            },
            "nearest_station": (
                {"name": nearest.name, "distance_m": round(nearest.distance_m)} if nearest else None
            ),
            "composite_key": self.composite_key,
            "lat": self.point.lat,
            "lng": self.point.lng,
            "approx": self.approx,
        }


@dataclass
class RankingOutcome:
    results: List[ScoredResult] = field(default_factory=list)
    candidates: int = 0
    misses: int = 0


class RankingService:
    """Scores listings against amenity sets; shared across requests."""

    def __init__(
        self,
        resolver: GeocodeResolver,
        amenities: AmenityRepository,
        geocode_concurrency: int = config.GEOCODE_CONCURRENCY,
    ):
        self.resolver = resolver
        self.amenities = amenities
        self.geocode_concurrency = max(1, geocode_concurrency)
        self._distance_memo: Dict[Tuple[float, float], AmenityDistances] = {}
        self._memo_generation = amenities.generation

    async def _locate(
        self,
        listings: Sequence[ListingCandidate],
        cancel_event: Optional[asyncio.Event],
    ) -> List[Optional[GeocodeResolution]]:
        semaphore = asyncio.Semaphore(self.geocode_concurrency)

        async def locate_one(listing: ListingCandidate) -> Optional[GeocodeResolution]:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    raise RankingCancelled()
                return await self.resolver.resolve(listing.block, listing.street_name, listing.town)

        tasks = [asyncio.create_task(locate_one(listing)) for listing in listings]
        try:
            resolutions = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        if cancel_event is not None and cancel_event.is_set():
            raise RankingCancelled()
        return resolutions

    def _distances(self, point: GeoPoint, amenity_sets: Mapping[str, List[AmenityPoint]]) -> AmenityDistances:
        memo_key = (point.lat, point.lng)
        cached = self._distance_memo.get(memo_key)
        if cached is not None:
            return cached
        station = nearest_with_name(point, amenity_sets.get(MRT, []))
        distances = AmenityDistances(
            mrt_m=station.distance_m if station else None,
            school=nearest_distance(point, amenity_sets.get(SCHOOL, [])),
            hospital=nearest_distance(point, amenity_sets.get(CLINIC, [])),
            station=station,
        )
        if len(self._distance_memo) >= MAX_DISTANCE_MEMO:
            self._distance_memo.clear()
        self._distance_memo[memo_key] = distances
        return distances

    @staticmethod
    def _neutral_distances(amenity_sets: Mapping[str, List[AmenityPoint]]) -> AmenityDistances:
        """Distances for a town-centroid placement.

        The centroid says nothing about the block's real surroundings, so
        each category gets a mid-range stand-in instead of the centroid's
        own distances. A category with no amenity data stays unknown.
        """
        def neutral(category: str, criterion: str) -> Optional[float]:
            return NEUTRAL_DISTANCES_M[criterion] if amenity_sets.get(category) else None

        return AmenityDistances(
            mrt_m=neutral(MRT, "mrt"),
            school=neutral(SCHOOL, "school"),
            hospital=neutral(CLINIC, "hospital"),
        )

    @staticmethod
    def affordability_subscore(
        listing: ListingCandidate,
        profile: Optional[AffordabilityProfile],
        price_low: float,
        price_high: float,
    ) -> float:
        """0-100 affordability sub-score.

        Buyer-specific evaluation when the profile has age and income,
        otherwise the listing's price position within the candidate set.
        """
        if profile is not None and profile.is_complete:
            lease_years = estimate_remaining_lease_years(
                listing.remaining_lease_years, listing.lease_commence_date, listing.month
            )
            evaluation = evaluate_affordability(AffordabilityInputs(
                price=listing.resale_price,
                age=profile.age,
                remaining_lease_years=lease_years,
                income_per_annum=profile.income_per_annum,
                down_payment_budget=profile.down_payment_budget,
            ))
            return evaluation.score * 10
        return ScoringService.price_score(listing.resale_price, price_low, price_high)

    async def _score(
        self,
        listings: Sequence[ListingCandidate],
        weights: Optional[Mapping[str, float]],
        profile: Optional[AffordabilityProfile],
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[List[Tuple[int, ScoredResult]], int]:
        """Score listings in input order; returns (index, result) pairs and the miss count."""
        pct = ScoringService.normalize_weights(weights)
        resolutions = await self._locate(listings, cancel_event)

        located = [
            (index, listing, resolution)
            for index, (listing, resolution) in enumerate(zip(listings, resolutions))
            if resolution is not None
        ]
        misses = len(listings) - len(located)
        if misses:
            samples = [
                f"{l.block} | {l.street_name} | {l.town}"
                for l, r in zip(listings, resolutions) if r is None
            ][:MISS_SAMPLE_SIZE]
            logger.info(f"Excluded {misses} listings without coordinates, e.g. {samples}")
        if not located:
            return [], misses

        generation = self.amenities.generation
        amenity_sets = await asyncio.to_thread(self.amenities.load_all)
        if generation != self._memo_generation:
            self._distance_memo.clear()
            self._memo_generation = generation

        prices = [l.resale_price for _, l, _ in located if math.isfinite(l.resale_price)]
        price_low = min(prices) if prices else 0.0
        price_high = max(prices) if prices else 0.0

        scored = []
        for index, listing, resolution in located:
            if resolution.approximate:
                distances = self._neutral_distances(amenity_sets)
            else:
                distances = self._distances(resolution.point, amenity_sets)
            subscores = {
                "mrt": ScoringService.distance_to_score(distances.mrt_m, DISTANCE_CAPS_M["mrt"]),
                "school": ScoringService.distance_to_score(distances.school, DISTANCE_CAPS_M["school"]),
                "hospital": ScoringService.distance_to_score(distances.hospital, DISTANCE_CAPS_M["hospital"]),
                "affordability": self.affordability_subscore(listing, profile, price_low, price_high),
            }
            scored.append((index, ScoredResult(
                listing=listing,
                score=ScoringService.composite_score(pct, subscores),
                affordability_score=subscores["affordability"] / 10,
                distances=distances,
                composite_key=ScoringService.build_composite_key(
                    listing.block, listing.street_name, listing.flat_type, listing.month
                ),
                point=resolution.point,
                approx=resolution.approximate,
            )))
        return scored, misses

    async def rank(
        self,
        listings: Sequence[ListingCandidate],
        weights: Optional[Mapping[str, float]],
        profile: Optional[AffordabilityProfile] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RankingOutcome:
        """Score and sort listings, best first.

        Equal scores are ordered by composite key, then input position.
        Raises RankingCancelled when ``cancel_event`` is set mid-way.
        """
        listings = list(listings)
        scored, misses = await self._score(listings, weights, profile, cancel_event)
        scored.sort(key=lambda item: (-item[1].score, item[1].composite_key, item[0]))
        return RankingOutcome(
            results=[result for _, result in scored],
            candidates=len(listings),
            misses=misses,
        )

    async def score_batch(
        self,
        listings: Sequence[ListingCandidate],
        weights: Optional[Mapping[str, float]],
    ) -> List[ScoredResult]:
        """Score an explicit set of listings (e.g. bookmarks), keeping input order.

        Uses the price-window affordability only; unresolvable listings
        are left out.
        """
        scored, _ = await self._score(list(listings), weights, None, None)
        return [result for _, result in scored]
