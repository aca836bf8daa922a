"""Per-shop rate limiting for storefront endpoints.

Fixed window counter held in process memory. Each application instance
owns its own limiter, so budgets are per instance, not global.
"""
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from starlette.responses import JSONResponse

from discounts_display.metrics import rate_limit_rejections_total

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int
    retry_after: Optional[int]
    limit: int


@dataclass
class _Window:
    count: int
    window_start: float


class RateLimiter:
    """
    Fixed window rate limiter keyed by shop domain.

    Every check counts against the window, including rejected ones.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60,
        max_tracked_shops: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed per window
            window_seconds: Window size in seconds
            max_tracked_shops: Tracked windows before cleanup runs
            clock: Monotonic time source in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_tracked_shops = max_tracked_shops
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, shop: Optional[str]) -> RateLimitResult:
        """
        Count a request for a shop and decide whether it may proceed.

        Args:
            shop: Shop domain; requests without one are not limited

        Returns:
            RateLimitResult
        """
        if not shop:
            return RateLimitResult(allowed=True, remaining=self.max_requests, retry_after=None, limit=self.max_requests)

        now = self._clock()
        window = self._windows.get(shop)
        if window is None or now - window.window_start >= self.window_seconds:
            window = _Window(count=0, window_start=now)
            self._windows[shop] = window

        window.count += 1
        remaining = max(0, self.max_requests - window.count)

        if len(self._windows) > self.max_tracked_shops:
            self._cleanup(now)

        if window.count > self.max_requests:
            retry_after = max(1, math.ceil(window.window_start + self.window_seconds - now))
            rate_limit_rejections_total.inc()
            logger.warning(
                "rate_limit_exceeded",
                shop=shop,
                count=window.count,
                limit=self.max_requests,
                retry_after=retry_after,
            )
            return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after, limit=self.max_requests)

        return RateLimitResult(allowed=True, remaining=remaining, retry_after=None, limit=self.max_requests)

    def reset(self, shop: str) -> None:
        """Forget the window for one shop."""
        if self._windows.pop(shop, None) is not None:
            logger.debug("rate_limit_reset", shop=shop)

    def reset_all(self) -> None:
        """Forget every tracked window."""
        self._windows.clear()
        logger.debug("rate_limit_reset_all")

    def _cleanup(self, now: float) -> None:
        """Drop expired windows, then the oldest one if still over capacity."""
        expired = [
            shop for shop, window in self._windows.items()
            if now - window.window_start >= self.window_seconds
        ]
        for shop in expired:
            del self._windows[shop]

        if len(self._windows) > self.max_tracked_shops:
            oldest_shop = min(self._windows, key=lambda shop: self._windows[shop].window_start)
            del self._windows[oldest_shop]
            logger.debug("rate_limit_window_evicted", shop=oldest_shop, tracked=len(self._windows))


def get_rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """
    Build rate limit response headers.

    Retry-After is only present when the request was throttled.
    """
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
    }
    if result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers


def create_rate_limit_response(result: RateLimitResult, headers: Optional[dict[str, str]] = None) -> JSONResponse:
    """Build the 429 response for a throttled request."""
    return JSONResponse(
        status_code=429,
        content={"error": "Too Many Requests", "retryAfter": result.retry_after},
        headers={**(headers or {}), **get_rate_limit_headers(result)},
    )
