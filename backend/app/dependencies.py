"""FastAPI dependencies for the long-lived services built in the app lifespan."""
from fastapi import HTTPException, Request

from app.services.analytics_service import AnalyticsService
from app.services.finder_service import FinderService


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} is not initialised")
    return service


def get_finder_service(request: Request) -> FinderService:
    return _state(request, "finder_service")


def get_analytics_service(request: Request) -> AnalyticsService:
    return _state(request, "analytics_service")
