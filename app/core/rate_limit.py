"""
Fixed-window request rate limiting.

Counters live in a `limits` storage backend chosen by URI, so a single
process can use memory:// while a multi-instance deployment points every
instance at the same redis:// store. The memory backend expires stale
windows on its own background timer.
"""

import math
import time
from dataclasses import dataclass
from typing import Dict, Optional

from limits import RateLimitItem, parse
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from app.config import Settings
from app.core.logging import get_logger

logger = get_logger(__name__)

STANDARD = "standard"
STRICT = "strict"
UPLOAD = "upload"


@dataclass(frozen=True)
class RateLimitPolicy:
    """A named request budget, e.g. 20 requests per 15 minutes."""
    name: str
    limit: RateLimitItem

    @classmethod
    def parse(cls, name: str, expression: str) -> "RateLimitPolicy":
        return cls(name=name, limit=parse(expression))

    @property
    def max_requests(self) -> int:
        return self.limit.amount

    @property
    def window_seconds(self) -> int:
        return self.limit.get_expiry()


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check. retry_after_seconds is set only when denied."""
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: Optional[int] = None
    reset_at: Optional[float] = None


class RateLimiter:
    """
    Applies named fixed-window policies against a shared counter store.

    The first request for a key opens a window with count 1; requests past
    the policy's max within that window are denied until it expires.
    Store failures are logged and the request is allowed.
    """

    def __init__(self, storage: Storage, policies: Dict[str, RateLimitPolicy], enabled: bool = True):
        self.storage = storage
        self.policies = policies
        self.enabled = enabled
        self._strategy = FixedWindowRateLimiter(storage)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        policies = {
            STANDARD: RateLimitPolicy.parse(STANDARD, settings.RATE_LIMIT_STANDARD),
            STRICT: RateLimitPolicy.parse(STRICT, settings.RATE_LIMIT_STRICT),
            UPLOAD: RateLimitPolicy.parse(UPLOAD, settings.RATE_LIMIT_UPLOAD),
        }
        return cls(
            storage=storage_from_string(settings.RATE_LIMIT_STORAGE_URI),
            policies=policies,
            enabled=settings.RATE_LIMIT_ENABLED,
        )

    def check(self, key: str, policy: str = STANDARD) -> RateLimitDecision:
        """Count one request for `key` under `policy` and decide whether to admit it."""
        rule = self.policies[policy]
        if not self.enabled:
            return RateLimitDecision(allowed=True, limit=rule.max_requests, remaining=rule.max_requests)

        try:
            allowed = self._strategy.hit(rule.limit, policy, key)
            reset_at, remaining = self._strategy.get_window_stats(rule.limit, policy, key)
        except Exception as e:
            logger.warning(
                "Rate limit store unavailable, allowing request: %s",
                e,
                extra={"policy": policy},
            )
            return RateLimitDecision(allowed=True, limit=rule.max_requests, remaining=rule.max_requests)

        if allowed:
            return RateLimitDecision(
                allowed=True,
                limit=rule.max_requests,
                remaining=remaining,
                reset_at=reset_at,
            )

        retry_after = max(1, math.ceil(reset_at - time.time()))
        return RateLimitDecision(
            allowed=False,
            limit=rule.max_requests,
            remaining=0,
            retry_after_seconds=retry_after,
            reset_at=reset_at,
        )

    def reset(self) -> None:
        """Drop all counters (used on shutdown and between tests)."""
        try:
            self.storage.reset()
        except Exception as e:
            logger.warning("Failed to reset rate limit store: %s", e)


def client_key(client_ip: Optional[str], path: str) -> str:
    """Rate limit key: client network identity plus route path."""
    return f"{client_ip or 'unknown'}:{path}"
