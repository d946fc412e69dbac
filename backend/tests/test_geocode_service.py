"""Tests for the OneMap geocoder and the caching resolver."""
import httpx
import pytest
from unittest.mock import AsyncMock

from app.services.geo import GeoPoint
from app.services.geocode_cache import GeocodeCache, GeocodeResult, JsonFileGeocodeStore
from app.services.geocode_service import GeocodeResolver, OneMapGeocoder

ONEMAP_HIT = {
    "found": 1,
    "results": [{
        "ADDRESS": "123 BISHAN STREET 12 SINGAPORE 570123",
        "POSTAL": "570123",
        "LATITUDE": "1.3508",
        "LONGITUDE": "103.8487",
    }],
}


def _geocoder(handler) -> OneMapGeocoder:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OneMapGeocoder(client=client, base_url="https://onemap.test/search", backoff_seconds=0)


class TestOneMapGeocoder:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=ONEMAP_HIT)

        result = await _geocoder(handler).geocode("123", "BISHAN ST 12", "BISHAN")
        assert result == GeocodeResult(1.3508, 103.8487, "570123", "123 BISHAN STREET 12 SINGAPORE 570123")
        params = seen[0].url.params
        assert params["searchVal"] == "BLK 123 BISHAN ST 12, Singapore"
        assert params["returnGeom"] == "Y"
        assert params["getAddrDetails"] == "Y"

    @pytest.mark.asyncio
    async def test_rate_limited_once_then_success(self):
        responses = [httpx.Response(429), httpx.Response(200, json=ONEMAP_HIT)]

        def handler(request):
            return responses.pop(0)

        result = await _geocoder(handler).geocode("123", "BISHAN ST 12")
        assert result is not None
        assert responses == []

    @pytest.mark.asyncio
    async def test_server_error_twice_gives_none(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        assert await _geocoder(handler).geocode("123", "BISHAN ST 12") is None
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        assert await _geocoder(handler).geocode("123", "BISHAN ST 12") is None
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_retried_then_raised(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(httpx.ConnectError):
            await _geocoder(handler).geocode("123", "BISHAN ST 12")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_token_sent_as_bearer(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"results": []})

        geocoder = _geocoder(handler)
        geocoder.token = "abc"
        assert await geocoder.geocode("1", "X ST") is None
        assert seen[0].headers["Authorization"] == "Bearer abc"

    def test_pick_result_prefers_town_match(self):
        results = [
            {"ADDRESS": "10 JURONG WEST ST 1", "LATITUDE": "1.34", "LONGITUDE": "103.70"},
            {"ADDRESS": "10 BEDOK NORTH AVE 1", "LATITUDE": "1.33", "LONGITUDE": "103.93"},
        ]
        assert OneMapGeocoder.pick_result(results, "BEDOK").lng == 103.93
        assert OneMapGeocoder.pick_result(results).lng == 103.70

    def test_pick_result_without_coordinates(self):
        assert OneMapGeocoder.pick_result([{"ADDRESS": "X"}]) is None
        assert OneMapGeocoder.pick_result([]) is None


def _resolver(tmp_path, clock, geocode_result=None, side_effect=None):
    geocoder = AsyncMock()
    geocoder.geocode = AsyncMock(return_value=geocode_result, side_effect=side_effect)
    cache = GeocodeCache(JsonFileGeocodeStore(tmp_path / "cache.json"), clock=clock)
    return GeocodeResolver(geocoder, cache), geocoder


class TestGeocodeResolver:

    @pytest.mark.asyncio
    async def test_success_is_cached(self, tmp_path, clock):
        resolver, geocoder = _resolver(tmp_path, clock, GeocodeResult(1.3508, 103.8487))

        first = await resolver.resolve("123", "BISHAN ST 12", "BISHAN")
        second = await resolver.resolve("123", "bishan st 12", "bishan")

        assert first.point == GeoPoint(1.3508, 103.8487)
        assert first.approximate is False
        assert second.point == first.point
        assert geocoder.geocode.await_count == 1
        assert resolver.upstream_calls == 1

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_town_centroid(self, tmp_path, clock):
        resolver, _ = _resolver(tmp_path, clock, None)
        resolution = await resolver.resolve("999", "NOWHERE RD", "BISHAN")
        assert resolution.approximate is True
        assert resolution.point == GeoPoint(1.3508, 103.8487)

    @pytest.mark.asyncio
    async def test_failure_with_unknown_town_is_unresolved(self, tmp_path, clock):
        resolver, _ = _resolver(tmp_path, clock, None)
        assert await resolver.resolve("999", "NOWHERE RD", "ATLANTIS") is None

    @pytest.mark.asyncio
    async def test_negative_cache_blocks_retry_for_15_minutes(self, tmp_path, clock):
        resolver, geocoder = _resolver(tmp_path, clock, None)

        await resolver.resolve("999", "NOWHERE RD", "ATLANTIS")
        clock.advance(14 * 60)
        await resolver.resolve("999", "NOWHERE RD", "ATLANTIS")
        assert geocoder.geocode.await_count == 1

        clock.advance(60)
        await resolver.resolve("999", "NOWHERE RD", "ATLANTIS")
        assert geocoder.geocode.await_count == 2

    @pytest.mark.asyncio
    async def test_out_of_bounds_result_rejected(self, tmp_path, clock):
        resolver, _ = _resolver(tmp_path, clock, GeocodeResult(40.71, -74.0))
        resolution = await resolver.resolve("1", "BROADWAY", "ATLANTIS")
        assert resolution is None
        assert await resolver.cache.size() == 0

    @pytest.mark.asyncio
    async def test_geocoder_exception_treated_as_miss(self, tmp_path, clock):
        resolver, _ = _resolver(tmp_path, clock, side_effect=httpx.ConnectError("down"))
        resolution = await resolver.resolve("1", "BEDOK NTH AVE 1", "BEDOK")
        assert resolution.approximate is True
        assert resolver.cache.is_recently_failed("1|BEDOK NTH AVE 1|BEDOK")

    @pytest.mark.asyncio
    async def test_bad_cached_coordinate_uses_fallback(self, tmp_path, clock):
        resolver, geocoder = _resolver(tmp_path, clock, None)
        await resolver.cache.store.set("1|X ST|BEDOK", GeocodeResult(0.0, 0.0))
        resolution = await resolver.resolve("1", "X ST", "BEDOK")
        assert resolution.approximate is True
        geocoder.geocode.assert_not_awaited()
