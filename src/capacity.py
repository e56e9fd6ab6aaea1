"""
Date Consensus - Capacity Monitoring and Graceful Degradation

Counts requests per UTC day against a daily budget and maps the share
used to a degradation level:

    normal    < 80%   everything enabled
    elevated  >= 80%  warning logged once per day, no visible change
    high      >= 90%  stats cache TTL extended, distribution chart disabled
    critical  >= 95%  as high, with a high-traffic notice
    exceeded  >= 100% read-only: submissions and revisions are refused

The counter lives in the shared cache (local or Redis) under a key dated
with the UTC day and expires at the next UTC midnight. Any cache failure
fails open to the normal level.

Environment Variables:
    CAPACITY_ENABLED=true
    CAPACITY_DAILY_LIMIT=100000
    CAPACITY_EXTENDED_TTL=900
"""

import logging
import math
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from errors import CapacityExceededError
from monitoring import metrics
from scaling.cache import Cache, CacheError

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 100_000
DEFAULT_EXTENDED_TTL_SECONDS = 15 * 60

REQUEST_COUNT_KEY_PREFIX = "capacity:requests:"
ALERT_SENT_KEY_PREFIX = "capacity:alert:"


class CapacityLevel(Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


# Share of the daily limit at which each level starts, highest first
CAPACITY_THRESHOLDS = (
    (CapacityLevel.EXCEEDED, 1.0),
    (CapacityLevel.CRITICAL, 0.95),
    (CapacityLevel.HIGH, 0.9),
    (CapacityLevel.ELEVATED, 0.8),
)

EXTENDED_CACHE_LEVELS = frozenset({CapacityLevel.HIGH, CapacityLevel.CRITICAL, CapacityLevel.EXCEEDED})

DEGRADATION_MESSAGES = {
    CapacityLevel.HIGH: "High traffic! Some features temporarily limited.",
    CapacityLevel.CRITICAL: "We're experiencing very high traffic. Some features are temporarily limited.",
    CapacityLevel.EXCEEDED: "We've reached capacity for today. Try again in {hours} hours.",
}


def level_for(requests_today: int, daily_limit: int) -> CapacityLevel:
    """Degradation level for a request count."""
    share = requests_today / daily_limit
    for level, threshold in CAPACITY_THRESHOLDS:
        if share >= threshold:
            return level
    return CapacityLevel.NORMAL


def next_midnight_utc(now: float) -> datetime:
    today = datetime.fromtimestamp(now, UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return today + timedelta(days=1)


@dataclass
class CapacityConfig:
    """Configuration for capacity tracking."""

    enabled: bool = True
    daily_limit: int = DEFAULT_DAILY_LIMIT
    extended_ttl_seconds: float = DEFAULT_EXTENDED_TTL_SECONDS

    def __post_init__(self):
        if self.daily_limit <= 0:
            raise ValueError("daily_limit must be positive")
        if self.extended_ttl_seconds < 0:
            raise ValueError("extended_ttl_seconds must be non-negative")

    @classmethod
    def from_env(cls) -> "CapacityConfig":
        """Create configuration from environment variables."""
        return cls(
            enabled=os.getenv("CAPACITY_ENABLED", "true").lower() == "true",
            daily_limit=int(os.getenv("CAPACITY_DAILY_LIMIT", str(DEFAULT_DAILY_LIMIT))),
            extended_ttl_seconds=float(
                os.getenv("CAPACITY_EXTENDED_TTL", str(DEFAULT_EXTENDED_TTL_SECONDS))
            ),
        )


@dataclass(frozen=True)
class CapacityState:
    """Snapshot of today's usage and the features it leaves enabled."""

    level: CapacityLevel
    requests_today: int
    daily_limit: int
    reset_at: datetime
    hours_until_reset: int

    @property
    def submissions_enabled(self) -> bool:
        return self.level is not CapacityLevel.EXCEEDED

    @property
    def cache_extended(self) -> bool:
        return self.level in EXTENDED_CACHE_LEVELS

    @property
    def chart_enabled(self) -> bool:
        return not self.cache_extended

    @property
    def message(self) -> str | None:
        template = DEGRADATION_MESSAGES.get(self.level)
        if template is None:
            return None
        return template.replace("{hours}", str(self.hours_until_reset))

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "requests_today": self.requests_today,
            "limit_today": self.daily_limit,
            "reset_at": self.reset_at.isoformat(),
            "features": {
                "stats_enabled": True,
                "submissions_enabled": self.submissions_enabled,
                "chart_enabled": self.chart_enabled,
                "cache_extended": self.cache_extended,
            },
            "message": self.message,
        }


class CapacityMonitor:
    """
    Daily request budget tracked in a shared cache.

    Increments are read-then-write. Within one process they are
    serialized; across instances sharing Redis a concurrent increment
    can be lost, which only undercounts.
    """

    def __init__(
        self,
        cache: Cache,
        config: CapacityConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.config = config or CapacityConfig()
        self._clock = clock
        self._lock = threading.Lock()

    def _day_key(self, prefix: str, now: float) -> str:
        return prefix + datetime.fromtimestamp(now, UTC).date().isoformat()

    def _seconds_until_reset(self, now: float) -> int:
        return max(1, math.ceil(next_midnight_utc(now).timestamp() - now))

    def _requests_today(self, now: float) -> int:
        try:
            value = self.cache.get(self._day_key(REQUEST_COUNT_KEY_PREFIX, now))
        except CacheError as e:
            logger.warning("Capacity counter unavailable, assuming normal", extra={"error": str(e)})
            return 0
        try:
            return int(value) if value is not None else 0
        except (TypeError, ValueError):
            logger.warning("Discarding malformed capacity counter")
            return 0

    def record_request(self) -> int:
        """
        Count one request against today's budget.

        Returns:
            The new count, or 0 when tracking is disabled or the cache fails
        """
        if not self.config.enabled:
            return 0

        now = self._clock()
        with self._lock:
            count = self._requests_today(now) + 1
            try:
                self.cache.set(
                    self._day_key(REQUEST_COUNT_KEY_PREFIX, now),
                    count,
                    ttl=self._seconds_until_reset(now),
                )
            except CacheError as e:
                logger.warning("Capacity counter update failed", extra={"error": str(e)})
                return 0

        metrics.set_gauge("capacity_requests_today", count)
        if level_for(count, self.config.daily_limit) is not CapacityLevel.NORMAL:
            self._alert_once(now, count)
        return count

    def _alert_once(self, now: float, count: int) -> None:
        key = self._day_key(ALERT_SENT_KEY_PREFIX, now)
        try:
            if self.cache.get(key):
                return
            self.cache.set(key, True, ttl=self._seconds_until_reset(now))
        except CacheError as e:
            logger.warning("Capacity alert flag unavailable", extra={"error": str(e)})
            return
        logger.warning(
            "Daily request capacity elevated",
            extra={"requests_today": count, "daily_limit": self.config.daily_limit},
        )

    def get_state(self) -> CapacityState:
        now = self._clock()
        requests_today = self._requests_today(now) if self.config.enabled else 0
        return CapacityState(
            level=level_for(requests_today, self.config.daily_limit),
            requests_today=requests_today,
            daily_limit=self.config.daily_limit,
            reset_at=next_midnight_utc(now),
            hours_until_reset=math.ceil(self._seconds_until_reset(now) / 3600),
        )

    def current_level(self) -> CapacityLevel:
        return self.get_state().level

    def stats_ttl(self, base_ttl: float) -> float:
        """Cache TTL for derived stats, extended from high capacity upwards."""
        if base_ttl > 0 and self.current_level() in EXTENDED_CACHE_LEVELS:
            return max(base_ttl, self.config.extended_ttl_seconds)
        return base_ttl

    def ensure_writable(self) -> None:
        """
        Raises:
            CapacityExceededError: The daily budget is spent
        """
        state = self.get_state()
        if not state.submissions_enabled:
            metrics.increment("capacity_rejections_total")
            raise CapacityExceededError(
                state.message,
                details={"retry_after_hours": state.hours_until_reset},
            )
