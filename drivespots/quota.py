"""Fixed-window request quotas per client identity."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from . import config

logger = logging.getLogger(__name__)

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS

PLACES = "places"
ISOLINE = "isoline"


class RateLimitedError(RuntimeError):
    def __init__(self, quota_class: str, reset_at: Optional[float] = None) -> None:
        super().__init__(f"Quota exhausted for {quota_class}")
        self.quota_class = quota_class
        self.reset_at = reset_at


@dataclass
class QuotaCounter:
    count: int
    window_reset_at: float


@dataclass(frozen=True)
class QuotaDecision:
    ok: bool
    remaining: int
    reset_at: float


class CounterWindow:
    def __init__(
        self,
        window_seconds: float,
        limit: int,
        stripes: int = 16,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_seconds = float(window_seconds)
        self.limit = int(limit)
        self._clock = clock
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(max(1, stripes))]
        self._counters: List[Dict[str, QuotaCounter]] = [{} for _ in range(max(1, stripes))]

    def try_consume(self, identity: str) -> QuotaDecision:
        idx = hash(identity) % len(self._locks)
        counters = self._counters[idx]
        with self._locks[idx]:
            now = self._clock()
            counter = counters.get(identity)
            if counter is None or now >= counter.window_reset_at:
                reset_at = now + self.window_seconds
                counters[identity] = QuotaCounter(count=1, window_reset_at=reset_at)
                return QuotaDecision(ok=True, remaining=self.limit - 1, reset_at=reset_at)
            if counter.count >= self.limit:
                return QuotaDecision(ok=False, remaining=0, reset_at=counter.window_reset_at)
            counter.count += 1
            return QuotaDecision(
                ok=True,
                remaining=self.limit - counter.count,
                reset_at=counter.window_reset_at,
            )


@dataclass(frozen=True)
class ClassDecision:
    ok: bool
    hourly: QuotaDecision
    daily: QuotaDecision


class QuotaLimiter:
    """Hourly and daily windows per quota class.

    Both windows are consumed on every call, so an identity that exhausted its
    daily window still advances its hourly counter.
    """

    def __init__(self, limits: Dict[str, Dict[str, int]], clock: Callable[[], float] = time.time) -> None:
        self._windows: Dict[str, Dict[str, CounterWindow]] = {}
        for quota_class, class_limits in limits.items():
            self._windows[quota_class] = {
                "hourly": CounterWindow(HOUR_SECONDS, class_limits["hourly"], clock=clock),
                "daily": CounterWindow(DAY_SECONDS, class_limits["daily"], clock=clock),
            }

    def consume(self, quota_class: str, identity: str) -> ClassDecision:
        windows = self._windows.get(quota_class)
        if windows is None:
            raise ValueError(f"Unknown quota class: {quota_class}")
        hourly = windows["hourly"].try_consume(identity)
        daily = windows["daily"].try_consume(identity)
        return ClassDecision(ok=hourly.ok and daily.ok, hourly=hourly, daily=daily)

    def require(self, quota_class: str, identity: str) -> ClassDecision:
        decision = self.consume(quota_class, identity)
        if not decision.ok:
            reset_at = decision.hourly.reset_at if not decision.hourly.ok else decision.daily.reset_at
            logger.warning("Rate limited: class=%s identity=%s", quota_class, identity)
            raise RateLimitedError(quota_class, reset_at=reset_at)
        return decision


def default_limits() -> Dict[str, Dict[str, int]]:
    return {
        PLACES: {"hourly": config.PLACES_HOURLY_LIMIT, "daily": config.PLACES_DAILY_LIMIT},
        ISOLINE: {"hourly": config.HERE_HOURLY_LIMIT, "daily": config.HERE_DAILY_LIMIT},
    }
