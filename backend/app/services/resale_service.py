"""
HDB resale transaction loader (data.gov.sg datastore API).

Produces ListingCandidates: one representative transaction per
(block, street, town) for the requested flat type, chosen by the
"cheapest-recent-24m" pricing policy.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from app import config

logger = logging.getLogger(__name__)

FLAT_TYPES = (
    "1 ROOM", "2 ROOM", "3 ROOM", "4 ROOM", "5 ROOM", "EXECUTIVE", "MULTI-GENERATION",
)

FALLBACK_TOWNS = ["ANG MO KIO", "BEDOK", "BISHAN", "BUKIT BATOK", "QUEENSTOWN", "TOA PAYOH"]

_LEASE_PATTERN = re.compile(r"(\d+)\s*years?(?:\s*(\d+)\s*months?)?", re.IGNORECASE)
_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})")


@dataclass(frozen=True)
class ListingCandidate:
    """One representative resale transaction for a block and flat type."""
    town: str
    block: str
    street_name: str
    flat_type: str
    resale_price: float
    month: str
    floor_area_sqm: Optional[float] = None
    storey_range: str = ""
    remaining_lease: str = ""
    remaining_lease_years: Optional[float] = None
    lease_commence_date: Optional[int] = None


def parse_remaining_lease(raw) -> Optional[float]:
    """'61 years 04 months' -> 61.33; bare numbers are taken as years."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        pass
    m = _LEASE_PATTERN.search(text)
    if not m:
        return None
    years = int(m.group(1))
    months = int(m.group(2)) if m.group(2) else 0
    return years + months / 12


def month_index(month: Optional[str]) -> Optional[int]:
    """'2024-05' -> 2024 * 12 + 4, for month arithmetic."""
    m = _MONTH_PATTERN.match(month or "")
    if not m:
        return None
    return int(m.group(1)) * 12 + int(m.group(2)) - 1


def _field(record: dict, name: str):
    value = record.get(name)
    if value is None:
        value = record.get(name.upper())
    return value


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def listing_from_record(record: dict) -> Optional[ListingCandidate]:
    """Parse a raw datastore record; rows without a usable address or price are skipped."""
    town = str(_field(record, "town") or "").strip().upper()
    block = str(_field(record, "block") or "").strip().upper()
    street = str(_field(record, "street_name") or "").strip().upper()
    price = _to_float(_field(record, "resale_price"))
    if not (town and block and street) or price is None or price <= 0:
        return None

    lease_start = _to_float(_field(record, "lease_commence_date"))
    raw_lease = _field(record, "remaining_lease")
    return ListingCandidate(
        town=town,
        block=block,
        street_name=street,
        flat_type=str(_field(record, "flat_type") or "").strip().upper(),
        resale_price=price,
        month=str(_field(record, "month") or "").strip(),
        floor_area_sqm=_to_float(_field(record, "floor_area_sqm")),
        storey_range=str(_field(record, "storey_range") or "").strip().upper(),
        remaining_lease=str(raw_lease or ""),
        remaining_lease_years=parse_remaining_lease(raw_lease),
        lease_commence_date=int(lease_start) if lease_start is not None else None,
    )


def select_representatives(
    listings: Iterable[ListingCandidate],
    recent_months: Optional[int] = config.RECENT_MONTHS,
) -> List[ListingCandidate]:
    """Cheapest recent transaction per (block, street, town).

    "Recent" means within ``recent_months`` of the newest month in the
    data; blocks with no recent sale fall back to their cheapest sale ever.
    ``recent_months=None`` picks the cheapest sale ever for every block.
    Groups keep the order in which they were first seen.
    """
    listings = list(listings)
    indices = [i for i in (month_index(l.month) for l in listings) if i is not None]
    cutoff = None
    if indices and recent_months is not None:
        cutoff = max(indices) - (max(recent_months, 1) - 1)

    groups: Dict[Tuple[str, str, str], List[ListingCandidate]] = {}
    for listing in listings:
        groups.setdefault((listing.block, listing.street_name, listing.town), []).append(listing)

    def cheapest(rows: List[ListingCandidate]) -> ListingCandidate:
        return min(rows, key=lambda r: (r.resale_price, -(month_index(r.month) or 0)))

    selected = []
    for rows in groups.values():
        recent = [
            r for r in rows
            if cutoff is not None and (month_index(r.month) or -1) >= cutoff
        ]
        selected.append(cheapest(recent or rows))
    return selected


class ResaleService:
    """Reads resale transactions from the data.gov.sg datastore API."""

    PAGE_SIZE = 1000
    MAX_PAGES = 20

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = config.RESALE_API_URL,
        resource_id: str = config.RESALE_RESOURCE_ID,
        timeout_seconds: float = config.RESALE_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url
        self.resource_id = resource_id
        self.timeout_seconds = timeout_seconds
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _search(self, **params) -> dict:
        response = await self.client.get(
            self.base_url, params={"resource_id": self.resource_id, **params}
        )
        response.raise_for_status()
        data = response.json()
        if not data.get("success", True):
            raise ValueError(f"Resale datastore error: {data.get('error')}")
        return data.get("result") or {}

    async def fetch_records(self, town: str, flat_type: str) -> List[dict]:
        """All records for one town and flat type, paged."""
        filters = json.dumps({"town": town.strip().upper(), "flat_type": flat_type.strip().upper()})
        records: List[dict] = []
        for page in range(self.MAX_PAGES):
            result = await self._search(
                filters=filters, limit=self.PAGE_SIZE, offset=page * self.PAGE_SIZE
            )
            batch = result.get("records") or []
            records.extend(batch)
            total = result.get("total")
            if len(batch) < self.PAGE_SIZE or (total is not None and len(records) >= int(total)):
                break
        else:
            logger.warning(f"Stopped paging {town}/{flat_type} after {self.MAX_PAGES} pages")
        return records

    async def load_candidates(
        self,
        towns: Iterable[str],
        flat_type: str,
        recent_months: Optional[int] = config.RECENT_MONTHS,
    ) -> List[ListingCandidate]:
        """Representative listings for each town, towns in request order."""
        candidates: List[ListingCandidate] = []
        for town in towns:
            records = await self.fetch_records(town, flat_type)
            listings = [l for l in (listing_from_record(r) for r in records) if l is not None]
            skipped = len(records) - len(listings)
            if skipped:
                logger.info(f"Skipped {skipped} unusable resale records for {town}")
            candidates.extend(select_representatives(listings, recent_months))
        return candidates

    async def get_all_towns(self) -> List[str]:
        result = await self._search(fields="town", distinct="true", limit=100)
        towns = {
            str(r.get("town") or "").strip().upper()
            for r in result.get("records") or []
        }
        return sorted(t for t in towns if t)
