"""
Weighted median engine.

Turns a multiset of dated opinions into a single representative date
that extreme outliers cannot drag around. Each observation carries a
weight derived from how far it sits from the reference date:

- Within 5 years: 1.0 (full weight) - plausible near-term predictions
- 5 to 50 years: 0.3 (reduced weight) - speculative
- Beyond 50 years: 0.1 (minimal weight) - counted, never discarded

The median is the first date, in ascending order, at which the
cumulative weight reaches half of the total weight. The result is
always a date that appears in the input.

Usage:
    from weighted_median import weight_of, median_of

    weight = weight_of(date(2099, 1, 1), date(2026, 11, 19))  # 0.1
    median = median_of([(date(2027, 1, 1), 1.0), (date(2099, 1, 1), 0.1)])
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from date_validation import parse_date
from errors import ValidationError

# Returned for an empty observation set; call sites always need a concrete date.
DEFAULT_MEDIAN_DATE = date(2026, 11, 19)

WEIGHT_TIER_FULL_YEARS = 5
WEIGHT_TIER_REDUCED_YEARS = 50

WEIGHT_FULL = 1.0
WEIGHT_REDUCED = 0.3
WEIGHT_MINIMAL = 0.1


@dataclass(frozen=True)
class WeightPolicy:
    """Three-tier weight decay by distance from the reference date."""

    full_weight_years: float = WEIGHT_TIER_FULL_YEARS
    reduced_weight_years: float = WEIGHT_TIER_REDUCED_YEARS
    full_weight: float = WEIGHT_FULL
    reduced_weight: float = WEIGHT_REDUCED
    minimal_weight: float = WEIGHT_MINIMAL

    def __post_init__(self):
        if not 0 < self.minimal_weight <= self.reduced_weight <= self.full_weight <= 1.0:
            raise ValueError(
                "Weights must satisfy 0 < minimal <= reduced <= full <= 1, got "
                f"{self.minimal_weight}, {self.reduced_weight}, {self.full_weight}"
            )
        if not 0 <= self.full_weight_years < self.reduced_weight_years:
            raise ValueError(
                "Tier thresholds must satisfy 0 <= full_weight_years < reduced_weight_years"
            )

    def weight_for_distance(self, years: float) -> float:
        """Map an absolute distance in years onto a weight plateau."""
        if years <= self.full_weight_years:
            return self.full_weight
        if years <= self.reduced_weight_years:
            return self.reduced_weight
        return self.minimal_weight


DEFAULT_WEIGHT_POLICY = WeightPolicy()


def _add_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return value.replace(year=value.year + years, day=28)


def years_between(start: date, end: date) -> float:
    """
    Signed, calendar-aware fractional years from start to end.

    Whole anniversaries count as exact years, so 2026-11-19 to 2031-11-19
    is exactly 5.0 regardless of leap days in between. The remainder is
    the fraction of the following anniversary year that has elapsed.
    """
    if end < start:
        return -years_between(end, start)

    years = end.year - start.year
    anniversary = _add_years(start, years)
    if anniversary > end:
        years -= 1
        anniversary = _add_years(start, years)

    try:
        span = (_add_years(start, years + 1) - anniversary).days
    except (ValueError, OverflowError):
        span = 365

    return years + (end - anniversary).days / span


def weight_of(
    observed_date,
    reference_date,
    policy: WeightPolicy = DEFAULT_WEIGHT_POLICY,
) -> float:
    """
    Derive the weight of an observation relative to the reference date.

    Args:
        observed_date: The submitted date (date or YYYY-MM-DD string)
        reference_date: The fixed reference date
        policy: Tier thresholds and weights

    Returns:
        A weight in (0, 1]

    Raises:
        ValidationError: If either date is malformed
    """
    observed = parse_date(observed_date, field="observed_date")
    reference = parse_date(reference_date, field="reference_date")
    return policy.weight_for_distance(abs(years_between(reference, observed)))


def _coerce_weight(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Weight must be a number, got {value!r}", field="weight")
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValidationError(f"Weight must be a finite non-negative number, got {value}", field="weight")
    return float(value)


def _coerce_pair(item) -> tuple[date, float]:
    """Accept (date, weight) pairs or objects exposing observed_date/weight."""
    if hasattr(item, "observed_date") and hasattr(item, "weight"):
        raw_date, raw_weight = item.observed_date, item.weight
    else:
        try:
            raw_date, raw_weight = item
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Observation must be a (date, weight) pair, got {item!r}"
            ) from e
    return parse_date(raw_date, field="observed_date"), _coerce_weight(raw_weight)


def simple_median(dates: Iterable) -> date | None:
    """
    Unweighted median; for an even count returns the lower middle value.

    Returns:
        The median date, or None for an empty input
    """
    ordered = sorted(parse_date(d, field="observed_date") for d in dates)
    if not ordered:
        return None
    return ordered[(len(ordered) - 1) // 2]


def median_of(observations: Iterable, default: date = DEFAULT_MEDIAN_DATE) -> date:
    """
    Weighted median of (date, weight) observations.

    Algorithm:
    1. Sort observations ascending by date
    2. total_weight = sum of weights
    3. Walk the sorted sequence accumulating weight
    4. Return the first date whose cumulative weight >= total_weight / 2

    O(n log n) from the sort; pure, no side effects.

    Args:
        observations: Iterable of (date, weight) pairs or Observation-like objects
        default: Returned when there are no observations

    Returns:
        The weighted median date (always one of the input dates when non-empty)

    Raises:
        ValidationError: On malformed dates or weights
    """
    pairs = [_coerce_pair(item) for item in observations]

    if not pairs:
        return default
    if len(pairs) == 1:
        return pairs[0][0]

    pairs.sort(key=lambda pair: pair[0])
    total_weight = sum(weight for _, weight in pairs)

    if total_weight == 0:
        return simple_median(d for d, _ in pairs)

    target = total_weight / 2
    cumulative = 0.0
    for observed, weight in pairs:
        cumulative += weight
        if cumulative >= target:
            return observed

    # Only reachable through float rounding on the final addition
    return pairs[-1][0]
