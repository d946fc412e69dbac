"""Buyer affordability profiles stored in Supabase."""
import asyncio
import logging
import math
import os
from dataclasses import dataclass
from typing import Optional

from supabase import create_client

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")


def create_supabase_admin():
    """Service-role client (bypasses RLS), or None when not configured."""
    if SUPABASE_URL and SUPABASE_SERVICE_KEY:
        return create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return None


def _finite(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class AffordabilityProfile:
    age: Optional[float] = None
    income_per_annum: Optional[float] = None
    down_payment_budget: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        """Age and income are both needed for a buyer-specific evaluation."""
        return self.age is not None and self.income_per_annum is not None


class ProfileService:

    def __init__(self, supabase=None):
        self.supabase = supabase

    def _fetch_row(self, user_id: str) -> Optional[dict]:
        result = (
            self.supabase.table("profiles")
            .select("age, income, down_payment_budget")
            .eq("id", user_id)
            .single()
            .execute()
        )
        return result.data if result else None

    async def get_user_profile(self, user_id: Optional[str]) -> Optional[AffordabilityProfile]:
        """Profile for ``user_id``; None when unknown. Never raises."""
        if not user_id or not self.supabase:
            return None
        try:
            row = await asyncio.to_thread(self._fetch_row, user_id)
        except Exception as e:
            logger.warning(f"Failed to load affordability profile for {user_id}: {e}")
            return None
        if not row:
            return None
        return AffordabilityProfile(
            age=_finite(row.get("age")),
            income_per_annum=_finite(row.get("income")),
            down_payment_budget=_finite(row.get("down_payment_budget")),
        )
