"""
Rate limiting for the login endpoint and for the endpoints that reach
managed databases on demand (connection tests and SQL execution).
"""

import json
import logging
import os
from fastapi import Request, Response
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

LOGIN_LIMIT = os.getenv("RATE_LIMIT_LOGIN", "30/minute")
CONNECTION_TEST_LIMIT = os.getenv("RATE_LIMIT_CONNECTION_TEST", "60/minute")
QUERY_LIMIT = os.getenv("RATE_LIMIT_QUERY", "120/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"


def get_rate_limit_key(request: Request) -> str:
    """
    Get the rate limiting bucket for the request.
    Authenticated users are limited per username, everyone else per IP.
    """
    username = getattr(request.state, "username", None)
    if username:
        return f"user:{username}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_rate_limit_key, enabled=RATE_LIMIT_ENABLED)


async def custom_rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """
    Custom handler for rate limit exceeded errors.
    """
    logging.warning(
        f"Rate limit exceeded for {get_rate_limit_key(request)} on {request.url.path}: {exc.detail}"
    )
    response = Response(
        content=json.dumps({"error": "Rate limit exceeded. Please try again later."}),
        status_code=429,
        media_type="application/json",
    )
    response.headers["Retry-After"] = "60"
    return response
