"""Rate-limit policy: enforce request quotas per endpoint with a sliding window."""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class RateLimitQuota:
    """Per-endpoint rate-limit quota."""
    requests_per_window: int
    window_seconds: float


@dataclass
class RateLimitState:
    """Request history for a single endpoint."""
    quota: RateLimitQuota
    request_times: List[float] = field(default_factory=list)

    def _prune(self, now: float) -> None:
        cutoff = now - self.quota.window_seconds
        self.request_times = [t for t in self.request_times if t > cutoff]

    def is_allowed(self) -> bool:
        self._prune(time.monotonic())
        return len(self.request_times) < self.quota.requests_per_window

    def record_request(self) -> None:
        self.request_times.append(time.monotonic())

    def time_until_allowed(self) -> float:
        """Seconds until the next request fits in the window. 0 if allowed now."""
        if self.is_allowed():
            return 0.0
        oldest = min(self.request_times)
        return max(0.0, oldest + self.quota.window_seconds - time.monotonic())


class RateLimitManager:
    """Enforce rate-limit quotas per endpoint path."""

    # Bitget v2 mix limits are per UID, per second
    DEFAULT_QUOTAS = {
        "/api/v2/mix/order/place-order": RateLimitQuota(requests_per_window=10, window_seconds=1),
        "/api/v2/mix/order/place-pos-tpsl": RateLimitQuota(requests_per_window=10, window_seconds=1),
        "/api/v2/mix/account/set-leverage": RateLimitQuota(requests_per_window=5, window_seconds=1),
        "default": RateLimitQuota(requests_per_window=20, window_seconds=1),
    }

    def __init__(self, quotas: Optional[Dict[str, RateLimitQuota]] = None):
        self.quotas = quotas or self.DEFAULT_QUOTAS.copy()
        self.states: Dict[str, RateLimitState] = {}

    @classmethod
    def from_config(cls, orders_per_second: int, default_per_second: int) -> "RateLimitManager":
        quotas = cls.DEFAULT_QUOTAS.copy()
        for path in ("/api/v2/mix/order/place-order", "/api/v2/mix/order/place-pos-tpsl"):
            quotas[path] = RateLimitQuota(requests_per_window=orders_per_second, window_seconds=1)
        quotas["default"] = RateLimitQuota(requests_per_window=default_per_second, window_seconds=1)
        return cls(quotas=quotas)

    def _get_state(self, endpoint: str) -> RateLimitState:
        if endpoint not in self.states:
            quota = self.quotas.get(endpoint, self.quotas.get("default"))
            self.states[endpoint] = RateLimitState(quota=quota)
        return self.states[endpoint]

    def is_allowed(self, endpoint: str) -> bool:
        return self._get_state(endpoint).is_allowed()

    def record_request(self, endpoint: str) -> None:
        self._get_state(endpoint).record_request()

    def time_until_allowed(self, endpoint: str) -> float:
        return self._get_state(endpoint).time_until_allowed()

    async def acquire(self, endpoint: str, max_wait: float = 10.0) -> bool:
        """Wait without blocking the loop until a request is allowed, then record it.

        Returns:
            True if the request was recorded, False if max_wait would be exceeded
        """
        start = time.monotonic()
        while not self.is_allowed(endpoint):
            wait_time = self.time_until_allowed(endpoint)
            elapsed = time.monotonic() - start
            if elapsed + wait_time > max_wait:
                return False
            await asyncio.sleep(wait_time)
        self.record_request(endpoint)
        return True
