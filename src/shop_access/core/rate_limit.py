"""Rate limiting for the public data endpoints using throttled-py."""

import logging
from datetime import timedelta

from fastapi import Request
from throttled import RateLimiterType, Throttled, rate_limiter, store

from shop_access.core.errors import RateLimited
from shop_access.core.settings import AppSettings

logger = logging.getLogger("rate_limit")


def create_data_throttle(settings: AppSettings) -> Throttled:
    """
    Fixed window limiter keyed by client IP.

    Counters live in process memory and expire with their window, so nothing
    has to sweep them.
    """
    window = timedelta(milliseconds=settings.api_rate_window_ms)
    logger.info("Data API rate limit: %s requests per %s", settings.api_rate_limit, window)
    return Throttled(
        using=RateLimiterType.FIXED_WINDOW.value,
        quota=rate_limiter.per_duration(window, limit=settings.api_rate_limit),
        store=store.MemoryStore(),
    )


def client_identity(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency: reject the request once the client's quota is spent."""
    throttle: Throttled = request.app.state.data_throttle
    key = f"data_api:{client_identity(request)}"
    try:
        result = throttle.limit(key, cost=1)
    except Exception as ex:
        # Fail open - a broken limiter must not take the data API down
        logger.warning("Rate limit check failed for %s: %s", key, ex)
        return

    if result.limited:
        logger.info("Rate limit exceeded for %s", key)
        raise RateLimited()
