"""
Aggregate cache for Date Consensus.

The community aggregate (weighted median, min, max, count) is derived
from a full scan of the ledger and memoized in a shared cache slot with
a TTL. Every accepted write invalidates the slot, so a writer that reads
back right after its write always sees its own observation.

Sentiment (optimism score) and the per-date distribution are derived
from the same snapshot and share the same invalidation.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from date_validation import parse_date
from errors import ValidationError
from monitoring import metrics
from scaling.cache import Cache, CacheError
from status_classifier import DEFAULT_MINIMUM_SAMPLE_SIZE
from storage.base import LedgerBackend, Observation
from weighted_median import DEFAULT_MEDIAN_DATE, median_of

if TYPE_CHECKING:
    from capacity import CapacityMonitor

logger = logging.getLogger(__name__)

AGGREGATE_CACHE_KEY = "stats:latest"
SENTIMENT_CACHE_KEY = "sentiment:latest"
DISTRIBUTION_CACHE_KEY = "predictions:latest"
DERIVED_CACHE_KEYS = [AGGREGATE_CACHE_KEY, SENTIMENT_CACHE_KEY, DISTRIBUTION_CACHE_KEY]

DEFAULT_TTL_SECONDS = 300
SLOW_RECOMPUTE_MS = 100


def _optional_date(value) -> date | None:
    return parse_date(value, field="date") if value is not None else None


@dataclass(frozen=True)
class Aggregate:
    """Derived summary of the current ledger."""

    median_date: date
    min_date: date | None
    max_date: date | None
    total_count: int
    computed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "median_date": self.median_date.isoformat(),
            "min_date": self.min_date.isoformat() if self.min_date else None,
            "max_date": self.max_date.isoformat() if self.max_date else None,
            "total_count": self.total_count,
            "computed_at": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Aggregate":
        return cls(
            median_date=parse_date(data["median_date"], field="median_date"),
            min_date=_optional_date(data.get("min_date")),
            max_date=_optional_date(data.get("max_date")),
            total_count=int(data["total_count"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
        )


@dataclass(frozen=True)
class Sentiment:
    """
    Community optimism relative to the reference date.

    optimistic_count counts observations strictly before the reference
    date, pessimistic_count those on or after it.
    """

    reference_date: date
    optimism_score: float
    optimistic_count: int
    pessimistic_count: int
    total_count: int
    computed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference_date": self.reference_date.isoformat(),
            "optimism_score": self.optimism_score,
            "optimistic_count": self.optimistic_count,
            "pessimistic_count": self.pessimistic_count,
            "total_count": self.total_count,
            "computed_at": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Sentiment":
        return cls(
            reference_date=parse_date(data["reference_date"], field="reference_date"),
            optimism_score=float(data["optimism_score"]),
            optimistic_count=int(data["optimistic_count"]),
            pessimistic_count=int(data["pessimistic_count"]),
            total_count=int(data["total_count"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
        )


@dataclass(frozen=True)
class Distribution:
    """Observation counts grouped by date, withheld below the sample floor."""

    buckets: list[tuple[date, int]]
    total_count: int
    minimum_sample_size: int
    computed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def withheld(self) -> bool:
        return self.total_count < self.minimum_sample_size

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [
                {"predicted_date": d.isoformat(), "count": count} for d, count in self.buckets
            ],
            "total_predictions": self.total_count,
            "minimum_sample_size": self.minimum_sample_size,
            "computed_at": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Distribution":
        return cls(
            buckets=[
                (parse_date(item["predicted_date"]), int(item["count"]))
                for item in data.get("data", [])
            ],
            total_count=int(data["total_predictions"]),
            minimum_sample_size=int(data["minimum_sample_size"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
        )


def compute_aggregate(
    observations: list[Observation],
    default_date: date = DEFAULT_MEDIAN_DATE,
) -> Aggregate:
    """Full-scan aggregate over a ledger snapshot."""
    if not observations:
        return Aggregate(median_date=default_date, min_date=None, max_date=None, total_count=0)

    dates = [o.observed_date for o in observations]
    return Aggregate(
        median_date=median_of(observations, default=default_date),
        min_date=min(dates),
        max_date=max(dates),
        total_count=len(observations),
    )


def compute_sentiment(observations: list[Observation], reference_date: date) -> Sentiment:
    total = len(observations)
    optimistic = sum(1 for o in observations if o.observed_date < reference_date)
    score = round(optimistic / total * 100, 1) if total else 0.0
    return Sentiment(
        reference_date=reference_date,
        optimism_score=score,
        optimistic_count=optimistic,
        pessimistic_count=total - optimistic,
        total_count=total,
    )


def compute_distribution(
    observations: list[Observation],
    minimum_sample_size: int = DEFAULT_MINIMUM_SAMPLE_SIZE,
) -> Distribution:
    total = len(observations)
    buckets: list[tuple[date, int]] = []
    if total >= minimum_sample_size:
        buckets = sorted(Counter(o.observed_date for o in observations).items())
    return Distribution(buckets=buckets, total_count=total, minimum_sample_size=minimum_sample_size)


class AggregateCache:
    """
    Memoizes derived views of the ledger in a shared cache.

    Concurrent recomputes race on the slot; the last writer wins, and any
    winner reflects a committed ledger state. Cache backend failures are
    logged and the value is computed directly from the ledger. With a
    capacity monitor attached, the TTL is extended under high load.
    """

    def __init__(
        self,
        ledger: LedgerBackend,
        cache: Cache,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        default_date: date = DEFAULT_MEDIAN_DATE,
        capacity: "CapacityMonitor | None" = None,
    ):
        self.ledger = ledger
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.default_date = default_date
        self.capacity = capacity

    def effective_ttl(self) -> float:
        """TTL for the next cached value."""
        if self.capacity is None:
            return self.ttl_seconds
        return self.capacity.stats_ttl(self.ttl_seconds)

    def _cache_get(self, key: str) -> dict[str, Any] | None:
        try:
            return self.cache.get(key)
        except CacheError as e:
            logger.warning("Cache read failed, computing directly", extra={"key": key, "error": str(e)})
            return None

    def _cache_set(self, key: str, value: dict[str, Any]) -> None:
        ttl = self.effective_ttl()
        if ttl <= 0:
            return
        try:
            self.cache.set(key, value, ttl=ttl)
        except CacheError as e:
            logger.warning("Cache write failed", extra={"key": key, "error": str(e)})

    def _snapshot(self) -> list[Observation]:
        return self.ledger.snapshot_all()

    def _recompute(self) -> Aggregate:
        start = time.perf_counter()
        aggregate = compute_aggregate(self._snapshot(), self.default_date)
        elapsed_ms = (time.perf_counter() - start) * 1000
        metrics.timing("aggregate_recompute_ms", elapsed_ms)
        if elapsed_ms > SLOW_RECOMPUTE_MS:
            logger.warning(
                "Slow aggregate recompute",
                extra={"duration_ms": round(elapsed_ms, 2), "total_count": aggregate.total_count},
            )

        self._cache_set(AGGREGATE_CACHE_KEY, aggregate.to_dict())
        return aggregate

    def get_aggregate_with_status(self) -> tuple[Aggregate, bool]:
        """Return (aggregate, cache_hit)."""
        cached = self._cache_get(AGGREGATE_CACHE_KEY)
        if cached is not None:
            try:
                aggregate = Aggregate.from_dict(cached)
            except (KeyError, TypeError, ValueError, ValidationError):
                logger.warning("Discarding malformed cached aggregate")
            else:
                metrics.increment("aggregate_cache_hits_total")
                logger.debug("Aggregate cache hit")
                return aggregate, True

        metrics.increment("aggregate_cache_misses_total")
        logger.debug("Aggregate cache miss")
        return self._recompute(), False

    def refresh(self) -> Aggregate:
        """
        Invalidate, then recompute without consulting the cache.

        Used after a write: the result always includes the write, even if a
        concurrent reader repopulated the slot from an older snapshot.
        """
        self.invalidate()
        return self._recompute()

    def get_aggregate(self) -> Aggregate:
        """Cached aggregate, recomputed from a full ledger scan on a miss."""
        return self.get_aggregate_with_status()[0]

    def get_sentiment(self, reference_date: date) -> Sentiment:
        cached = self._cache_get(SENTIMENT_CACHE_KEY)
        if cached is not None and cached.get("reference_date") == reference_date.isoformat():
            try:
                return Sentiment.from_dict(cached)
            except (KeyError, TypeError, ValueError, ValidationError):
                logger.warning("Discarding malformed cached sentiment")

        sentiment = compute_sentiment(self._snapshot(), reference_date)
        self._cache_set(SENTIMENT_CACHE_KEY, sentiment.to_dict())
        return sentiment

    def get_distribution(self, minimum_sample_size: int = DEFAULT_MINIMUM_SAMPLE_SIZE) -> Distribution:
        cached = self._cache_get(DISTRIBUTION_CACHE_KEY)
        if cached is not None and cached.get("minimum_sample_size") == minimum_sample_size:
            try:
                return Distribution.from_dict(cached)
            except (KeyError, TypeError, ValueError, ValidationError):
                logger.warning("Discarding malformed cached distribution")

        distribution = compute_distribution(self._snapshot(), minimum_sample_size)
        self._cache_set(DISTRIBUTION_CACHE_KEY, distribution.to_dict())
        return distribution

    def invalidate(self) -> None:
        """Drop every derived slot so the next read recomputes."""
        try:
            self.cache.delete_many(DERIVED_CACHE_KEYS)
        except CacheError as e:
            # Stale values then live at most one TTL
            logger.error("Cache invalidation failed", extra={"error": str(e)})
