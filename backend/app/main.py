import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables before app modules read them
load_dotenv()

from app import config
from app.database import close_db, init_db, is_database_enabled
from app.middleware.rate_limit import RateLimitMiddleware
from app.routers import finder
from app.schemas import HealthResponse
from app.services.amenity_service import AmenityRepository
from app.services.analytics_service import AnalyticsService
from app.services.finder_service import FinderService
from app.services.geocode_cache import GeocodeCache, create_geocode_store
from app.services.geocode_service import GeocodeResolver, OneMapGeocoder
from app.services.profile_service import ProfileService, create_supabase_admin
from app.services.ranking_service import RankingService
from app.services.resale_service import ResaleService
from app.services.result_cache import ResultCache

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared clients, caches and services once per process."""
    if is_database_enabled():
        await init_db()

    supabase = None
    try:
        supabase = create_supabase_admin()
    except Exception as e:
        logger.warning(f"Supabase client unavailable, profiles and analytics disabled: {e}")

    geocoder = OneMapGeocoder()
    resale = ResaleService()
    amenities = AmenityRepository(config.DATA_DIR)
    resolver = GeocodeResolver(
        geocoder, GeocodeCache(create_geocode_store(is_database_enabled()))
    )

    app.state.amenities = amenities
    app.state.analytics_service = AnalyticsService(supabase)
    app.state.finder_service = FinderService(
        ranking=RankingService(resolver, amenities),
        resale=resale,
        profiles=ProfileService(supabase),
        cache=ResultCache(),
    )
    logger.info(f"Flat finder ready (data dir {config.DATA_DIR})")
    try:
        yield
    finally:
        await geocoder.close()
        await resale.close()
        if is_database_enabled():
            await close_db()


# Initialize FastAPI app
app = FastAPI(
    title="Flat Finder API",
    description="Ranks Singapore HDB resale flats by amenities and affordability",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_url, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware)

app.include_router(finder.router)


@app.get("/", response_model=HealthResponse)
async def root():
    """Root endpoint - basic health check"""
    return HealthResponse(
        status="healthy",
        message="Flat Finder API is running. Visit /docs for API documentation."
    )


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        message="Flat Finder API is healthy and ready to serve requests"
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
