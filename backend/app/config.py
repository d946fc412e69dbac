"""
Runtime configuration and scoring policy constants for the flat finder.

Deployment settings come from environment variables (a local .env file is
loaded by app.main / app.celery_app). Policy constants are fixed for the
Singapore deployment.
"""
import os
from pathlib import Path


# Data files
DATA_DIR = Path(os.getenv("DATA_DIR", str(Path(__file__).parent / "data")))
GEOCODE_CACHE_PATH = Path(
    os.getenv("GEOCODE_CACHE_PATH", str(DATA_DIR / "geocode-cache.json"))
)

# Upstream services
ONEMAP_SEARCH_URL = os.getenv(
    "ONEMAP_SEARCH_URL", "https://www.onemap.gov.sg/api/common/elastic/search"
)
ONEMAP_TOKEN = os.getenv("ONEMAP_TOKEN", "")
GEOCODE_TIMEOUT_SECONDS = float(os.getenv("GEOCODE_TIMEOUT_SECONDS", "10"))
GEOCODE_CONCURRENCY = int(os.getenv("GEOCODE_CONCURRENCY", "5"))
GEOCODE_RATE_LIMIT_BACKOFF_SECONDS = 0.3

RESALE_API_URL = os.getenv(
    "RESALE_API_URL", "https://data.gov.sg/api/action/datastore_search"
)
RESALE_RESOURCE_ID = os.getenv(
    "RESALE_RESOURCE_ID", "d_8b84c4ee58e3cfc0ece0d773c8ca6abc"
)
RESALE_TIMEOUT_SECONDS = float(os.getenv("RESALE_TIMEOUT_SECONDS", "15"))

# Caching
FINDER_CACHE_TTL_SECONDS = int(os.getenv("FINDER_CACHE_TTL_SECONDS", "600"))
RESULT_CACHE_MAX_ENTRIES = int(os.getenv("RESULT_CACHE_MAX_ENTRIES", "500"))
NEGATIVE_GEOCODE_TTL_SECONDS = 15 * 60

# Warm-up job
WARM_TOWNS = [
    t.strip().upper()
    for t in os.getenv("WARM_TOWNS", "").split(",")
    if t.strip()
]
WARM_FLAT_TYPE = os.getenv("WARM_FLAT_TYPE", "4 ROOM")

# Singapore bounding box (exclusive)
SG_LAT_MIN, SG_LAT_MAX = 1.15, 1.55
SG_LNG_MIN, SG_LNG_MAX = 103.5, 104.15

# Distance caps in metres, one per criterion
MRT_CAP_M = 3000
SCHOOL_CAP_M = 2000
HOSPITAL_CAP_M = 3000

DEFAULT_WEIGHTS = {"mrt": 7.0, "school": 6.0, "hospital": 3.0, "affordability": 8.0}
DEFAULT_PRICE_POLICY = "cheapest-recent-24m"
RECENT_MONTHS = 24
MAX_TOWNS_PER_REQUEST = 3

# Affordability policy (HDB loan)
MSR_CAP = 0.30
HDB_INTEREST_PA = 2.6
HDB_LTV = 0.80
MAX_LOAN_TENURE_YEARS = 25
LOAN_END_AGE = 65
CPF_COVER_AGE = 95
MIN_LEASE_AFTER_LOAN_YEARS = 20
