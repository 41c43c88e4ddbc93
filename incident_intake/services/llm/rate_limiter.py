"""
Per-provider rate limiter and cost guard.

Six fixed windows, each a dict keyed by integer epoch bucket:
requests/minute, requests/hour, tokens/minute, tokens/day, cost/hour,
cost/day. Buckets older than current-1 are pruned on every access.

Admission is check-and-reserve in one locked step (try_acquire) so two
concurrent calls cannot both pass a limit that only one fits under; the
estimate is corrected with real usage afterwards (settle).
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

MINUTE = 60
HOUR = 3600
DAY = 86400


@dataclass(frozen=True)
class RateLimits:
    """Limits applied to one provider."""

    requests_per_minute: int = 60
    requests_per_hour: int = 3600
    tokens_per_minute: int = 200_000
    tokens_per_day: int = 10_000_000
    max_cost_per_hour: float = 10.0
    max_cost_per_day: float = 100.0

    @classmethod
    def from_settings(cls, settings) -> "RateLimits":
        return cls(
            requests_per_minute=settings.AI_REQUESTS_PER_MINUTE,
            requests_per_hour=settings.AI_REQUESTS_PER_HOUR,
            tokens_per_minute=settings.AI_TOKENS_PER_MINUTE,
            tokens_per_day=settings.AI_TOKENS_PER_DAY,
            max_cost_per_hour=settings.AI_MAX_COST_PER_HOUR,
            max_cost_per_day=settings.AI_MAX_COST_PER_DAY,
        )


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None


@dataclass(frozen=True)
class Reservation:
    """Capacity taken by try_acquire; the bucket keys it was charged to."""

    tokens: int
    cost: float
    buckets: dict = field(default_factory=dict)


class _Window:
    """One fixed window (e.g. tokens per minute)."""

    def __init__(self, name: str, seconds: int, limit: float, counts_requests: bool = False):
        self.name = name
        self.seconds = seconds
        self.limit = limit
        self.counts_requests = counts_requests
        self.buckets: dict[int, float] = {}

    def bucket(self, now: float) -> int:
        return int(now // self.seconds)

    def prune(self, now: float) -> None:
        current = self.bucket(now)
        for key in [k for k in self.buckets if k < current - 1]:
            del self.buckets[key]

    def current(self, now: float) -> float:
        return self.buckets.get(self.bucket(now), 0)

    def retry_after(self, now: float) -> int:
        return self.seconds - (int(now) % self.seconds)

    def rejects(self, now: float, amount: float) -> bool:
        if self.counts_requests:
            return self.current(now) >= self.limit
        return amount > 0 and self.current(now) + amount > self.limit

    def add(self, now: float, amount: float) -> int:
        key = self.bucket(now)
        self.buckets[key] = self.buckets.get(key, 0) + amount
        return key


class RateLimiter:
    """
    Rate limiter for a single provider.

    Args:
        limits: window limits
        clock: returns epoch seconds; injectable for tests
    """

    def __init__(self, limits: Optional[RateLimits] = None, clock: Callable[[], float] = time.time):
        self.limits = limits or RateLimits()
        self._clock = clock
        self._lock = threading.Lock()
        self._requests = [
            _Window("requests_per_minute", MINUTE, self.limits.requests_per_minute, counts_requests=True),
            _Window("requests_per_hour", HOUR, self.limits.requests_per_hour, counts_requests=True),
        ]
        self._tokens = [
            _Window("tokens_per_minute", MINUTE, self.limits.tokens_per_minute),
            _Window("tokens_per_day", DAY, self.limits.tokens_per_day),
        ]
        self._cost = [
            _Window("cost_per_hour", HOUR, self.limits.max_cost_per_hour),
            _Window("cost_per_day", DAY, self.limits.max_cost_per_day),
        ]

    def _windows(self):
        return self._requests + self._tokens + self._cost

    def _check(self, now: float, estimated_tokens: int, estimated_cost: float) -> RateLimitDecision:
        for window in self._windows():
            window.prune(now)

        checks = [(w, 1) for w in self._requests]
        checks += [(w, estimated_tokens) for w in self._tokens]
        checks += [(w, estimated_cost) for w in self._cost]

        for window, amount in checks:
            if window.rejects(now, amount):
                return RateLimitDecision(
                    allowed=False,
                    reason=f"{window.name} limit exceeded ({window.current(now)}/{window.limit})",
                    retry_after_seconds=window.retry_after(now),
                )
        return RateLimitDecision(allowed=True)

    def _charge(self, now: float, tokens: int, cost: float) -> dict:
        keys = {}
        for window in self._requests:
            keys[window.name] = window.add(now, 1)
        for window in self._tokens:
            keys[window.name] = window.add(now, tokens)
        for window in self._cost:
            keys[window.name] = window.add(now, cost)
        return keys

    def can_proceed(self, estimated_tokens: int = 0, estimated_cost: float = 0.0) -> RateLimitDecision:
        """Check without reserving anything."""
        with self._lock:
            return self._check(self._clock(), estimated_tokens, estimated_cost)

    def record(self, tokens: int, cost: float) -> None:
        """Charge one request with its usage to the current buckets."""
        with self._lock:
            now = self._clock()
            for window in self._windows():
                window.prune(now)
            self._charge(now, tokens, cost)

    def try_acquire(
        self,
        estimated_tokens: int = 0,
        estimated_cost: float = 0.0,
    ) -> tuple[RateLimitDecision, Optional[Reservation]]:
        """
        Check and reserve in one step.

        Returns:
            (decision, reservation); reservation is None when refused
        """
        with self._lock:
            now = self._clock()
            decision = self._check(now, estimated_tokens, estimated_cost)
            if not decision.allowed:
                return decision, None
            keys = self._charge(now, estimated_tokens, estimated_cost)
            return decision, Reservation(tokens=estimated_tokens, cost=estimated_cost, buckets=keys)

    def settle(self, reservation: Reservation, actual_tokens: int, actual_cost: float) -> None:
        """
        Replace a reservation's estimate with the real usage.

        Buckets that were pruned in the meantime are left alone.
        """
        token_delta = actual_tokens - reservation.tokens
        cost_delta = actual_cost - reservation.cost
        with self._lock:
            for window, delta in (
                [(w, token_delta) for w in self._tokens] + [(w, cost_delta) for w in self._cost]
            ):
                key = reservation.buckets.get(window.name)
                if key in window.buckets:
                    window.buckets[key] = max(0, window.buckets[key] + delta)

    def usage(self) -> dict:
        """Current bucket values per window."""
        with self._lock:
            now = self._clock()
            result = {}
            for window in self._windows():
                window.prune(now)
                result[window.name] = {"used": window.current(now), "limit": window.limit}
            return result
