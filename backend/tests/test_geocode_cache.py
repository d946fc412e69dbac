"""Tests for the positive (file) and negative (TTL) geocode caches."""
import asyncio
import json
import pytest

from app.services.geocode_cache import (
    GeocodeCache,
    GeocodeResult,
    JsonFileGeocodeStore,
    SqlGeocodeStore,
    build_cache_key,
    create_geocode_store,
)

RESULT = GeocodeResult(lat=1.3508, lng=103.8487, postal="570123", address="123 BISHAN ST 12")


class TestCacheKey:

    def test_normalized(self):
        assert build_cache_key(" 123a ", "bishan   st 12") == "123A|BISHAN ST 12"

    def test_with_town(self):
        assert build_cache_key("123A", "BISHAN ST 12", "bishan") == "123A|BISHAN ST 12|BISHAN"

    def test_blank_town_ignored(self):
        assert build_cache_key("1", "X ST", "  ") == "1|X ST"


class TestJsonFileGeocodeStore:

    @pytest.mark.asyncio
    async def test_set_then_get(self, tmp_path):
        store = JsonFileGeocodeStore(tmp_path / "cache.json")
        await store.set("K", RESULT)
        assert await store.get("K") == RESULT
        assert await store.get("MISSING") is None

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "cache.json"
        await JsonFileGeocodeStore(path).set("K", RESULT)

        reopened = JsonFileGeocodeStore(path)
        assert await reopened.get("K") == RESULT
        assert await reopened.size() == 1
        assert list((tmp_path / "nested").glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_corrupt_file_treated_as_empty(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        store = JsonFileGeocodeStore(path)
        assert await store.get("K") is None
        await store.set("K", RESULT)
        assert json.loads(path.read_text())["K"]["lat"] == RESULT.lat

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, tmp_path):
        store = JsonFileGeocodeStore(tmp_path / "cache.json")
        await store.set("A", RESULT)
        await store.set("B", RESULT)
        await store.delete("A")
        assert await store.get("A") is None
        await store.clear()
        assert await store.size() == 0


class TestSharedGeocodeFile:
    """The API process and the warm-up worker write the same file."""

    @pytest.mark.asyncio
    async def test_writers_merge_instead_of_overwriting(self, tmp_path):
        path = tmp_path / "cache.json"
        web = JsonFileGeocodeStore(path)
        assert await web.size() == 0
        worker = JsonFileGeocodeStore(path)

        await worker.set("1|BISHAN ST 12|BISHAN", RESULT)
        await web.set("2|BEDOK NTH RD|BEDOK", RESULT)

        reopened = JsonFileGeocodeStore(path)
        assert await reopened.get("1|BISHAN ST 12|BISHAN") == RESULT
        assert await reopened.get("2|BEDOK NTH RD|BEDOK") == RESULT
        assert await reopened.size() == 2

    @pytest.mark.asyncio
    async def test_miss_picks_up_entries_written_elsewhere(self, tmp_path):
        path = tmp_path / "cache.json"
        web = JsonFileGeocodeStore(path)
        assert await web.get("K") is None

        await JsonFileGeocodeStore(path).set("K", RESULT)

        assert await web.get("K") == RESULT

    @pytest.mark.asyncio
    async def test_concurrent_writes_all_land(self, tmp_path):
        path = tmp_path / "cache.json"
        web, worker = JsonFileGeocodeStore(path), JsonFileGeocodeStore(path)

        await asyncio.gather(*(
            store.set(f"{store_id}-{i}|STREET", RESULT)
            for i in range(10)
            for store_id, store in (("web", web), ("worker", worker))
        ))

        assert await JsonFileGeocodeStore(path).size() == 20
        assert list(tmp_path.glob("*.tmp")) == []


class TestNegativeCache:
    """Failed lookups are not retried for 15 minutes."""

    @pytest.mark.asyncio
    async def test_failure_remembered_until_ttl(self, tmp_path, clock):
        cache = GeocodeCache(JsonFileGeocodeStore(tmp_path / "c.json"), clock=clock)
        await cache.mark_failed("K")

        clock.advance(15 * 60 - 1)
        assert cache.is_recently_failed("K")

        clock.advance(2)
        assert not cache.is_recently_failed("K")

    @pytest.mark.asyncio
    async def test_success_clears_failure(self, tmp_path, clock):
        cache = GeocodeCache(JsonFileGeocodeStore(tmp_path / "c.json"), clock=clock)
        await cache.mark_failed("K")
        await cache.put("K", RESULT)
        assert not cache.is_recently_failed("K")
        assert await cache.get("K") == RESULT

    @pytest.mark.asyncio
    async def test_purge_expired(self, tmp_path, clock):
        cache = GeocodeCache(JsonFileGeocodeStore(tmp_path / "c.json"), negative_ttl_seconds=60, clock=clock)
        await cache.mark_failed("OLD")
        clock.advance(61)
        assert cache.purge_expired_failures() == 1
        assert not cache.is_recently_failed("OLD")

    @pytest.mark.asyncio
    async def test_new_failure_sweeps_expired_ones(self, tmp_path, clock):
        cache = GeocodeCache(JsonFileGeocodeStore(tmp_path / "c.json"), negative_ttl_seconds=60, clock=clock)
        await cache.mark_failed("NEVER-RETRIED")
        clock.advance(61)

        await cache.mark_failed("NEW")

        # The expired key was already dropped, never looked up again
        assert cache.purge_expired_failures() == 0
        assert cache.is_recently_failed("NEW")

    @pytest.mark.asyncio
    async def test_invalidate(self, tmp_path, clock):
        cache = GeocodeCache(JsonFileGeocodeStore(tmp_path / "c.json"), clock=clock)
        await cache.put("K", RESULT)
        await cache.invalidate("K")
        assert await cache.get("K") is None
        assert await cache.size() == 0


class TestStoreFactory:

    def test_file_store_by_default(self, tmp_path):
        store = create_geocode_store(False, tmp_path / "c.json")
        assert isinstance(store, JsonFileGeocodeStore)

    def test_sql_store_when_database_enabled(self, tmp_path):
        assert isinstance(create_geocode_store(True, tmp_path / "c.json"), SqlGeocodeStore)


class TestGeocodeCacheModel:

    def test_declares_same_index_as_migration(self):
        from app.models.geocode_cache import GeocodeCacheModel

        indexes = {
            index.name: [column.name for column in index.columns]
            for index in GeocodeCacheModel.__table__.indexes
        }
        assert indexes == {"idx_geocode_cache_updated": ["updated_at"]}
