"""Redis-based rate limiting middleware."""
import hashlib
import os
import time
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
import redis

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
GLOBAL_LIMIT = 60       # requests per minute per signed-in user
RANKING_LIMIT = 12      # requests per minute for ranking/batch scoring
ANON_LIMIT = 20         # requests per minute per anonymous IP
WINDOW_SECONDS = 60

# Each of these fans out into upstream geocoding calls
EXPENSIVE_PATHS = {"/api/finder", "/api/score-batch"}


def _identity(request: Request) -> tuple[str, int]:
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        digest = hashlib.sha256(auth.encode()).hexdigest()[:16]
        return f"user:{digest}", GLOBAL_LIMIT
    host = request.client.host if request.client else "unknown"
    return f"anon:{host}", ANON_LIMIT


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app):
        super().__init__(app)
        try:
            self.redis = redis.from_url(REDIS_URL)
        except Exception as e:
            logger.warning(f"Rate limiting disabled, Redis unavailable: {e}")
            self.redis = None

    async def dispatch(self, request: Request, call_next):
        if not self.redis or os.getenv("TESTING"):
            return await call_next(request)

        identity, limit = _identity(request)
        if request.url.path in EXPENSIVE_PATHS:
            limit = min(limit, RANKING_LIMIT)
            identity += ":ranking"

        # Fixed one-minute window
        key = f"ratelimit:{identity}:{int(time.time()) // WINDOW_SECONDS}"
        try:
            current = self.redis.incr(key)
            if current == 1:
                self.redis.expire(key, WINDOW_SECONDS * 2)
            if current > limit:
                return JSONResponse(
                    status_code=429,
                    content={"ok": False, "results": [], "error": "Rate limit exceeded. Please slow down."},
                )
        except Exception as e:
            # Fail open
            logger.warning(f"Rate limit check failed: {e}")

        return await call_next(request)
