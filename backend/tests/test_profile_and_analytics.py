"""Tests for Supabase-backed profile lookup and analytics logging."""
import pytest
from unittest.mock import MagicMock

from app.services.analytics_service import AnalyticsService
from app.services.profile_service import AffordabilityProfile, ProfileService


def _supabase_returning(data):
    supabase = MagicMock()
    (supabase.table.return_value.select.return_value.eq.return_value
     .single.return_value.execute.return_value.data) = data
    return supabase


class TestProfileService:

    @pytest.mark.asyncio
    async def test_reads_profile(self):
        supabase = _supabase_returning({"age": 32, "income": "96000", "down_payment_budget": None})
        profile = await ProfileService(supabase).get_user_profile("user-1")

        assert profile == AffordabilityProfile(age=32, income_per_annum=96_000, down_payment_budget=None)
        assert profile.is_complete
        supabase.table.assert_called_with("profiles")

    @pytest.mark.asyncio
    async def test_unparsable_fields_become_none(self):
        supabase = _supabase_returning({"age": "thirty", "income": 80000})
        profile = await ProfileService(supabase).get_user_profile("user-1")
        assert profile.age is None
        assert not profile.is_complete

    @pytest.mark.asyncio
    async def test_anonymous_or_unconfigured(self):
        assert await ProfileService(MagicMock()).get_user_profile(None) is None
        assert await ProfileService(None).get_user_profile("user-1") is None

    @pytest.mark.asyncio
    async def test_errors_never_raise(self):
        supabase = MagicMock()
        supabase.table.side_effect = Exception("network")
        assert await ProfileService(supabase).get_user_profile("user-1") is None


class TestAnalyticsService:

    @pytest.mark.asyncio
    async def test_log_ranking(self):
        supabase = MagicMock()
        await AnalyticsService(supabase).log_ranking(
            user_id="user-1", towns=["BISHAN"], flat_type="4 ROOM", result_count=12, misses=2,
        )
        row = supabase.table.return_value.insert.call_args[0][0]
        assert row["event_type"] == "finder_ranking"
        assert row["metadata"] == {"towns": ["BISHAN"], "flat_type": "4 ROOM", "results": 12, "geocode_misses": 2}

    @pytest.mark.asyncio
    async def test_failures_swallowed(self):
        supabase = MagicMock()
        supabase.table.side_effect = Exception("insert failed")
        await AnalyticsService(supabase).log_event("finder_ranking")

    @pytest.mark.asyncio
    async def test_no_client_is_noop(self):
        await AnalyticsService(None).log_event("finder_ranking")
