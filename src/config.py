"""
Date Consensus - Engine Configuration

All policy constants (weight tiers, status bands, sample-size floor,
cache TTL, accepted date window) are named configuration so they can be
tuned without touching the algorithms.

Usage:
    from config import EngineConfig

    config = EngineConfig.from_env()

Environment Variables:
    REFERENCE_DATE=2026-11-19
    IDENTITY_SALT=<secret>
    STATS_CACHE_TTL=300
    MIN_SAMPLE_SIZE=50
    DATE_MIN=2000-01-01
    DATE_MAX=2125-12-31
    WEIGHT_FULL_YEARS=5
    WEIGHT_REDUCED_YEARS=50
    WEIGHT_FULL=1.0
    WEIGHT_REDUCED=0.3
    WEIGHT_MINIMAL=0.1
    STATUS_EARLY_DAYS=-60
    STATUS_ON_TRACK_DAYS=60
    STATUS_DELAY_LIKELY_DAYS=180
    TURNSTILE_SECRET_KEY=
    TURNSTILE_TIMEOUT=3.0
"""

import os
from dataclasses import dataclass, field
from datetime import date

from date_validation import DEFAULT_MAX_DATE, DEFAULT_MIN_DATE, parse_date
from status_classifier import DEFAULT_MINIMUM_SAMPLE_SIZE, StatusBands
from weighted_median import DEFAULT_MEDIAN_DATE, WeightPolicy

DEFAULT_CACHE_TTL_SECONDS = 300
DEFAULT_TURNSTILE_TIMEOUT = 3.0


@dataclass
class EngineConfig:
    """Configuration for the prediction aggregation engine."""

    reference_date: date = DEFAULT_MEDIAN_DATE
    identity_salt: str = ""

    # Aggregate cache
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS

    # Classification
    minimum_sample_size: int = DEFAULT_MINIMUM_SAMPLE_SIZE
    status_bands: StatusBands = field(default_factory=StatusBands)

    # Weighting
    weight_policy: WeightPolicy = field(default_factory=WeightPolicy)

    # Accepted submission window
    min_date: date = DEFAULT_MIN_DATE
    max_date: date = DEFAULT_MAX_DATE

    # Bot verification (empty secret disables the check)
    turnstile_secret_key: str = ""
    turnstile_timeout: float = DEFAULT_TURNSTILE_TIMEOUT

    def __post_init__(self):
        if self.min_date > self.max_date:
            raise ValueError("min_date must not be after max_date")
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be non-negative")
        if self.minimum_sample_size < 0:
            raise ValueError("minimum_sample_size must be non-negative")
        if self.turnstile_timeout <= 0:
            raise ValueError("turnstile_timeout must be positive")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create configuration from environment variables."""
        return cls(
            reference_date=parse_date(
                os.getenv("REFERENCE_DATE", DEFAULT_MEDIAN_DATE.isoformat()),
                field="REFERENCE_DATE",
            ),
            identity_salt=os.getenv("IDENTITY_SALT", ""),
            cache_ttl_seconds=float(os.getenv("STATS_CACHE_TTL", str(DEFAULT_CACHE_TTL_SECONDS))),
            minimum_sample_size=int(os.getenv("MIN_SAMPLE_SIZE", str(DEFAULT_MINIMUM_SAMPLE_SIZE))),
            status_bands=StatusBands(
                early_below=int(os.getenv("STATUS_EARLY_DAYS", "-60")),
                on_track_max=int(os.getenv("STATUS_ON_TRACK_DAYS", "60")),
                delay_likely_max=int(os.getenv("STATUS_DELAY_LIKELY_DAYS", "180")),
            ),
            weight_policy=WeightPolicy(
                full_weight_years=float(os.getenv("WEIGHT_FULL_YEARS", "5")),
                reduced_weight_years=float(os.getenv("WEIGHT_REDUCED_YEARS", "50")),
                full_weight=float(os.getenv("WEIGHT_FULL", "1.0")),
                reduced_weight=float(os.getenv("WEIGHT_REDUCED", "0.3")),
                minimal_weight=float(os.getenv("WEIGHT_MINIMAL", "0.1")),
            ),
            min_date=parse_date(os.getenv("DATE_MIN", DEFAULT_MIN_DATE.isoformat()), field="DATE_MIN"),
            max_date=parse_date(os.getenv("DATE_MAX", DEFAULT_MAX_DATE.isoformat()), field="DATE_MAX"),
            turnstile_secret_key=os.getenv("TURNSTILE_SECRET_KEY", ""),
            turnstile_timeout=float(
                os.getenv("TURNSTILE_TIMEOUT", str(DEFAULT_TURNSTILE_TIMEOUT))
            ),
        )
