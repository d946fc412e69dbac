"""Tests for request validation and cached orchestration in FinderService."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from app.services.finder_service import (
    FinderService,
    RankingRequestError,
    validate_query,
    validate_weights,
)
from app.services.geo import GeoPoint
from app.services.profile_service import AffordabilityProfile
from app.services.ranking_service import RankingService
from app.services.result_cache import ResultCache
from conftest import STATION, FakeAmenities, FakeResolver, make_listing


class TestValidateQuery:

    def test_normalizes_towns_and_flat_type(self):
        query = validate_query([" bishan", "BISHAN", "bedok "], "4 room", None, None)
        assert query.towns == ["BISHAN", "BEDOK"]
        assert query.flat_type == "4 ROOM"
        assert query.price_policy == "cheapest-recent-24m"
        assert query.weights == {"mrt": 7.0, "school": 6.0, "hospital": 3.0, "affordability": 8.0}

    @pytest.mark.parametrize("towns,flat_type,message", [
        ([], "4 ROOM", "No towns selected."),
        (["  "], "4 ROOM", "No towns selected."),
        (None, "4 ROOM", "No towns selected."),
        (["BISHAN"], "", "No flat type selected."),
        (["BISHAN"], None, "No flat type selected."),
    ])
    def test_missing_inputs(self, towns, flat_type, message):
        with pytest.raises(RankingRequestError, match=message):
            validate_query(towns, flat_type, None, None)

    def test_too_many_towns(self):
        with pytest.raises(RankingRequestError):
            validate_query(["A", "B", "C", "D"], "4 ROOM", None, None)

    def test_unknown_flat_type(self):
        with pytest.raises(RankingRequestError):
            validate_query(["BISHAN"], "PENTHOUSE", None, None)

    def test_unknown_price_policy(self):
        with pytest.raises(RankingRequestError):
            validate_query(["BISHAN"], "4 ROOM", None, "most-expensive")

    def test_request_error_is_value_error(self):
        assert issubclass(RankingRequestError, ValueError)


class TestValidateWeights:

    def test_partial_weights_fill_zero(self):
        assert validate_weights({"mrt": 5}) == {"mrt": 5.0, "school": 0.0, "hospital": 0.0, "affordability": 0.0}

    def test_all_zero_allowed(self):
        assert sum(validate_weights({"mrt": 0, "school": 0}).values()) == 0

    def test_no_known_criterion_rejected(self):
        with pytest.raises(RankingRequestError):
            validate_weights({"parks": 10})


def _finder(profile=None, listings=None):
    resale = MagicMock()
    resale.load_candidates = AsyncMock(return_value=listings if listings is not None else [
        make_listing(block="1", resale_price=400_000),
        make_listing(block="2", resale_price=600_000),
    ])
    resale.get_all_towns = AsyncMock(return_value=["BEDOK", "BISHAN"])
    profiles = MagicMock()
    profiles.get_user_profile = AsyncMock(return_value=profile)
    resolver = FakeResolver({"1": GeoPoint(1.35, 103.85), "2": GeoPoint(1.36, 103.85)})
    ranking = RankingService(resolver, FakeAmenities(mrt=[STATION]))
    finder = FinderService(ranking=ranking, resale=resale, profiles=profiles, cache=ResultCache())
    return finder, resale, resolver


class TestFinderService:

    @pytest.mark.asyncio
    async def test_find_payload(self):
        finder, resale, _ = _finder()
        payload = await finder.find(validate_query(["BISHAN"], "4 ROOM", None, None))

        assert payload["ok"] is True
        assert payload["candidates"] == 2
        assert payload["misses"] == 0
        assert [r["block"] for r in payload["results"]] == ["1", "2"]
        resale.load_candidates.assert_awaited_once_with(["BISHAN"], "4 ROOM", 24)

    @pytest.mark.asyncio
    async def test_repeat_request_served_from_cache(self):
        finder, resale, resolver = _finder()
        await finder.find(validate_query(["BISHAN", "BEDOK"], "4 ROOM", None, None))
        await finder.find(validate_query(["bedok", "bishan"], "4 room", None, None))

        assert resale.load_candidates.await_count == 1
        assert len(resolver.calls) == 2

    @pytest.mark.asyncio
    async def test_profile_changes_cache_entry(self):
        finder, resale, _ = _finder(profile=AffordabilityProfile(age=30, income_per_annum=90_000))
        query = validate_query(["BISHAN"], "4 ROOM", None, None)
        await finder.find(query, user_id="user-1")

        finder.profiles.get_user_profile = AsyncMock(return_value=None)
        await finder.find(query, user_id=None)

        assert resale.load_candidates.await_count == 2

    @pytest.mark.asyncio
    async def test_all_time_policy_passes_no_window(self):
        finder, resale, _ = _finder()
        await finder.find(validate_query(["BISHAN"], "4 ROOM", None, "cheapest-all-time"))
        resale.load_candidates.assert_awaited_once_with(["BISHAN"], "4 ROOM", None)

    @pytest.mark.asyncio
    async def test_score_batch(self):
        finder, _, _ = _finder()
        payload = await finder.score_batch(
            [make_listing(block="2"), make_listing(block="1")], {"mrt": 1}
        )
        keys = [r["compositeKey"] for r in payload["results"]]
        assert keys == [
            "2__BISHAN%20ST%2012__4%20ROOM__2024-05__0",
            "1__BISHAN%20ST%2012__4%20ROOM__2024-05__0",
        ]

    @pytest.mark.asyncio
    async def test_score_batch_empty(self):
        finder, _, resolver = _finder()
        assert await finder.score_batch([], None) == {"ok": True, "results": []}
        assert resolver.calls == []

    @pytest.mark.asyncio
    async def test_get_towns(self):
        finder, _, _ = _finder()
        assert await finder.get_towns() == ["BEDOK", "BISHAN"]
