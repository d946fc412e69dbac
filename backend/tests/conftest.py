"""Pytest configuration for backend tests."""
import os
import pytest

# Disable rate limiting middleware during tests
os.environ["TESTING"] = "1"

from app.services.geo import AmenityPoint, GeoPoint
from app.services.geocode_service import GeocodeResolution
from app.services.resale_service import ListingCandidate

# Bishan MRT, roughly
STATION = AmenityPoint(lat=1.3510, lng=103.8485, category="mrt", name="BISHAN MRT STATION")

# One degree of latitude on the haversine sphere
METRES_PER_DEGREE_LAT = 6_371_000 * 3.141592653589793 / 180


def point_north_of(origin: GeoPoint, metres: float) -> GeoPoint:
    return GeoPoint(lat=origin.lat + metres / METRES_PER_DEGREE_LAT, lng=origin.lng)


def make_listing(block="123", street_name="BISHAN ST 12", town="BISHAN",
                 flat_type="4 ROOM", resale_price=500_000.0, month="2024-05", **extra):
    return ListingCandidate(
        town=town,
        block=block,
        street_name=street_name,
        flat_type=flat_type,
        resale_price=resale_price,
        month=month,
        **extra,
    )


class FakeResolver:
    """Resolver stand-in: fixed points per block, None for unknown blocks."""

    def __init__(self, points_by_block=None, approximate_blocks=()):
        self.points_by_block = points_by_block or {}
        self.approximate_blocks = set(approximate_blocks)
        self.calls = []
        self.upstream_calls = 0

    async def resolve(self, block, street, town=None):
        self.calls.append((block, street, town))
        point = self.points_by_block.get(block)
        if point is None:
            return None
        return GeocodeResolution(point=point, approximate=block in self.approximate_blocks)


class FakeAmenities:
    def __init__(self, mrt=None, school=None, clinic=None):
        self.sets = {"mrt": mrt or [], "school": school or [], "clinic": clinic or []}
        self.generation = 0

    def load_all(self):
        return self.sets


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def anyio_backend():
    """Specify the async backend for pytest-asyncio."""
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()
