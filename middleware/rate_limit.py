# middleware/rate_limit.py
"""
Rate limiting with slowapi.

Usage in route files:
    from middleware.rate_limit import limiter, AI_ADVISOR_RATE_LIMIT

    @router.post("")
    @limiter.limit(AI_ADVISOR_RATE_LIMIT)
    async def run(request: Request, ...):
        ...
"""
import logging
import os

from fastapi import Request
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    """
    Bucket by the token's subject when a bearer token is present, so the
    limit is per user regardless of IP; otherwise by client IP. The token is
    not verified here, auth is enforced by get_current_db_user.
    """
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        try:
            sub = jwt.get_unverified_claims(token).get("sub")
        except JWTError:
            sub = None
        if sub:
            return f"user:{sub}"

    return get_remote_address(request)


DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
AI_ADVISOR_RATE_LIMIT = os.getenv("RATE_LIMIT_AI_ADVISOR", "5/minute")

limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
)
