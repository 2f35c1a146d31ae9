"""Rate limiting using slowapi for routes and limits for per-action windows."""

import math

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from starlette.requests import Request

from commerce_assistant.schemas.actions import RateLimit


def _get_real_client_ip(request: Request) -> str:
    """Extract the real client IP behind a reverse proxy."""
    return (
        request.headers.get("CF-Connecting-IP")
        or request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        or (request.client.host if request.client else "127.0.0.1")
    )


limiter = Limiter(key_func=_get_real_client_ip)


def to_rate_limit_item(rate_limit: RateLimit) -> RateLimitItem:
    """Convert a configured ``{requests, windowMs}`` pair to a limits item.

    Windows are rounded up to whole seconds.
    """
    seconds = max(1, math.ceil(rate_limit.window_ms / 1000))
    return RateLimitItemPerSecond(rate_limit.requests, seconds)


class ActionRateLimiter:
    """Moving-window limiter keyed by action id and caller.

    One instance is shared by every registry a manager builds so that a
    configuration reload does not reset the windows.
    """

    def __init__(self) -> None:
        self._strategy = MovingWindowRateLimiter(MemoryStorage())

    def hit(self, item: RateLimitItem, action_id: str, caller: str) -> bool:
        """Record one call. Returns False when the window is already full."""
        return self._strategy.hit(item, action_id, caller)

    def reset(self) -> None:
        self._strategy.storage.reset()
