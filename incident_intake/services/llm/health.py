"""
Per-provider health counters.

Status rules:
- unhealthy: more than 5 consecutive errors
- degraded: more than 2 consecutive errors, or rolling success rate < 80%
- healthy: otherwise
"""
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

UNHEALTHY_CONSECUTIVE_ERRORS = 5
DEGRADED_CONSECUTIVE_ERRORS = 2
DEGRADED_SUCCESS_RATE = 0.8
ROLLING_WINDOW = 100


@dataclass(frozen=True)
class HealthSnapshot:
    provider: str
    status: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    consecutive_errors: int
    success_rate: float
    average_latency_ms: float
    total_tokens: int
    total_cost: float
    errors_by_type: dict
    last_error: Optional[str]
    last_error_at: Optional[datetime]

    def to_dict(self) -> dict:
        data = dict(self.__dict__)
        if self.last_error_at:
            data["last_error_at"] = self.last_error_at.isoformat()
        return data


class ProviderHealth:
    """Thread-safe success/failure tracker for one provider."""

    def __init__(self, provider: str):
        self.provider = provider
        self._lock = threading.Lock()
        self._recent: deque = deque(maxlen=ROLLING_WINDOW)
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.consecutive_errors = 0
        self.total_latency_ms = 0.0
        self.total_tokens = 0
        self.total_cost = 0.0
        self.errors_by_type: dict[str, int] = {}
        self.last_error: Optional[str] = None
        self.last_error_at: Optional[datetime] = None

    def record_success(self, latency_ms: float, tokens: int = 0, cost: float = 0.0) -> None:
        with self._lock:
            self.total_requests += 1
            self.successful_requests += 1
            self.consecutive_errors = 0
            self.total_latency_ms += latency_ms
            self.total_tokens += tokens
            self.total_cost += cost
            self._recent.append(True)

    def record_failure(self, error: Exception, latency_ms: float = 0.0) -> None:
        error_type = type(error).__name__
        with self._lock:
            self.total_requests += 1
            self.failed_requests += 1
            self.consecutive_errors += 1
            self.total_latency_ms += latency_ms
            self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1
            self.last_error = str(error)
            self.last_error_at = datetime.now(timezone.utc)
            self._recent.append(False)

    def _success_rate(self) -> float:
        if not self._recent:
            return 1.0
        return sum(1 for ok in self._recent if ok) / len(self._recent)

    def _status(self) -> str:
        if self.consecutive_errors > UNHEALTHY_CONSECUTIVE_ERRORS:
            return "unhealthy"
        if (
            self.consecutive_errors > DEGRADED_CONSECUTIVE_ERRORS
            or self._success_rate() < DEGRADED_SUCCESS_RATE
        ):
            return "degraded"
        return "healthy"

    def status(self) -> str:
        with self._lock:
            return self._status()

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            average = self.total_latency_ms / self.total_requests if self.total_requests else 0.0
            return HealthSnapshot(
                provider=self.provider,
                status=self._status(),
                total_requests=self.total_requests,
                successful_requests=self.successful_requests,
                failed_requests=self.failed_requests,
                consecutive_errors=self.consecutive_errors,
                success_rate=round(self._success_rate(), 4),
                average_latency_ms=round(average, 2),
                total_tokens=self.total_tokens,
                total_cost=round(self.total_cost, 6),
                errors_by_type=dict(self.errors_by_type),
                last_error=self.last_error,
                last_error_at=self.last_error_at,
            )
