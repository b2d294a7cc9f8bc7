"""
Fixed-window rate limiting
One limiter serves every route; each route declares its own limit, window
and keying strategy in a table
"""
import dataclasses
import logging
import time
from typing import Callable, Dict, Optional

from .errors import RateLimitError

logger = logging.getLogger("companion_server")

# Authenticated identity when present, otherwise network address
KEY_IDENTITY = "identity"
# Always the network address
KEY_ADDRESS = "address"
# One bucket shared by every caller
KEY_GLOBAL = "global"

GLOBAL_ROUTE = "*"


@dataclasses.dataclass(frozen=True)
class RouteLimit:
    limit: int
    window: float
    keying: str = KEY_IDENTITY


@dataclasses.dataclass
class RateLimitBucket:
    key: str
    window_start: float
    count: int
    limit: int
    window: float


@dataclasses.dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: float  # seconds until the window resets, 0 when allowed


class RateLimiter:
    """
    Per-route, per-key request counter.

    Buckets are kept per route; a bucket's count resets once its window
    has elapsed and never exceeds the route limit.
    """

    def __init__(
        self,
        routes: Dict[str, RouteLimit],
        clock: Callable[[], float] = time.monotonic,
        max_buckets: int = 10000,
    ):
        self.routes = dict(routes)
        self._clock = clock
        self._max_buckets = max_buckets
        self._buckets: Dict[str, Dict[str, RateLimitBucket]] = {route: {} for route in self.routes}

    def key_for(self, route: str, identity: Optional[str], address: str) -> str:
        keying = self.routes[route].keying
        if keying == KEY_GLOBAL:
            return "global"
        if keying == KEY_IDENTITY and identity:
            return f"id:{identity}"
        return f"ip:{address}"

    def check(self, route: str, identity: Optional[str] = None, address: str = "unknown") -> RateLimitResult:
        """Count one request against the route; routes without a limit always pass"""
        config = self.routes.get(route)
        if config is None:
            return RateLimitResult(allowed=True, limit=0, remaining=0, retry_after=0)

        now = self._clock()
        buckets = self._buckets[route]
        key = self.key_for(route, identity, address)
        bucket = buckets.get(key)

        if bucket is None or now - bucket.window_start >= bucket.window:
            if bucket is None and len(buckets) >= self._max_buckets:
                self._prune(buckets, now)
            bucket = RateLimitBucket(
                key=key, window_start=now, count=0,
                limit=config.limit, window=config.window,
            )
            buckets[key] = bucket

        if bucket.count >= bucket.limit:
            return RateLimitResult(
                allowed=False,
                limit=bucket.limit,
                remaining=0,
                retry_after=bucket.window_start + bucket.window - now,
            )

        bucket.count += 1
        return RateLimitResult(
            allowed=True,
            limit=bucket.limit,
            remaining=bucket.limit - bucket.count,
            retry_after=0,
        )

    def enforce(self, route: str, identity: Optional[str] = None, address: str = "unknown") -> RateLimitResult:
        """Like check() but raises RateLimitError on rejection"""
        result = self.check(route, identity, address)
        if not result.allowed:
            logger.warning("Rate limit exceeded on %s for %s", route, self.key_for(route, identity, address))
            raise RateLimitError(result.retry_after)
        return result

    def reset(self) -> None:
        for buckets in self._buckets.values():
            buckets.clear()

    @staticmethod
    def _prune(buckets: Dict[str, RateLimitBucket], now: float) -> None:
        stale = [key for key, bucket in buckets.items() if now - bucket.window_start >= bucket.window]
        for key in stale:
            del buckets[key]
