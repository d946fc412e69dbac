"""Optional Supabase JWT identification for personalised affordability."""
import os
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from jwt import PyJWKClient
from fastapi import Header

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "")
JWT_AUDIENCE = "authenticated"

# Lazily built; PyJWKClient caches signing keys itself
_jwks_client: Optional[PyJWKClient] = None


def _get_jwks_client() -> Optional[PyJWKClient]:
    global _jwks_client
    if _jwks_client is None and SUPABASE_URL:
        _jwks_client = PyJWKClient(f"{SUPABASE_URL}/auth/v1/.well-known/jwks.json")
    return _jwks_client


@dataclass(frozen=True)
class UserContext:
    """Caller identity taken from a verified access token."""
    user_id: str
    email: Optional[str] = None


def decode_access_token(token: str) -> dict:
    """Verify a Supabase access token.

    ES256 tokens are checked against the project's JWKS; anything else is
    treated as a legacy HS256 token signed with the JWT secret.
    """
    alg = jwt.get_unverified_header(token).get("alg", "")
    if alg == "ES256":
        client = _get_jwks_client()
        if client is None:
            raise jwt.InvalidTokenError("SUPABASE_URL is not configured")
        key = client.get_signing_key_from_jwt(token).key
        return jwt.decode(token, key, algorithms=["ES256"], audience=JWT_AUDIENCE)
    if not SUPABASE_JWT_SECRET:
        raise jwt.InvalidTokenError("SUPABASE_JWT_SECRET is not configured")
    return jwt.decode(token, SUPABASE_JWT_SECRET, algorithms=["HS256"], audience=JWT_AUDIENCE)


async def get_optional_user(
    authorization: Optional[str] = Header(None),
) -> Optional[UserContext]:
    """FastAPI dependency: the signed-in user, or None for anonymous callers.

    Ranking works without an account, so bad or expired tokens degrade to
    anonymous instead of failing the request.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization.removeprefix("Bearer ")
    try:
        payload = decode_access_token(token)
        return UserContext(user_id=payload["sub"], email=payload.get("email"))
    except (jwt.PyJWTError, KeyError) as e:
        logger.info(f"Ignoring unusable access token: {type(e).__name__}")
        return None
