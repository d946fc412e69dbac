"""Lightweight event logging to Supabase."""
import logging

logger = logging.getLogger(__name__)


class AnalyticsService:

    def __init__(self, supabase=None):
        self.supabase = supabase

    async def log_event(
        self,
        event_type: str,
        user_id: str | None = None,
        metadata: dict | None = None,
    ) -> None:
        """Fire-and-forget event logging. Never raises."""
        try:
            if not self.supabase:
                return
            self.supabase.table("analytics_events").insert({
                "event_type": event_type,
                "user_id": user_id,
                "metadata": metadata or {},
            }).execute()
        except Exception as e:
            logger.warning(f"Failed to log analytics event: {e}")

    async def log_ranking(
        self,
        user_id: str | None,
        towns: list[str],
        flat_type: str,
        result_count: int,
        misses: int,
    ) -> None:
        await self.log_event(
            "finder_ranking",
            user_id=user_id,
            metadata={
                "towns": towns,
                "flat_type": flat_type,
                "results": result_count,
                "geocode_misses": misses,
            },
        )
