"""
Status classifier.

Derives a coarse community sentiment label from the weighted median
and the reference date:

- Early Release Possible (green): median more than 60 days before reference
- On Track (blue): within +/-60 days, both ends inclusive
- Delay Likely (amber): 61 to 180 days after, 180 inclusive
- Major Delay Expected (red): more than 180 days after

Below the minimum sample size the label is always "Gathering Data",
whatever the dates say.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

from date_validation import parse_date

DEFAULT_MINIMUM_SAMPLE_SIZE = 50


class StatusLabel(Enum):
    """Community sentiment labels."""

    INSUFFICIENT_DATA = "Gathering Data"
    EARLY = "Early Release Possible"
    ON_TRACK = "On Track"
    DELAY_LIKELY = "Delay Likely"
    MAJOR_DELAY = "Major Delay Expected"


class StatusColor(Enum):
    """Display color tags, ordered from earliest to latest band."""

    GREEN = "green"
    BLUE = "blue"
    AMBER = "amber"
    RED = "red"


@dataclass(frozen=True)
class StatusBands:
    """Band edges in days relative to the reference date."""

    early_below: int = -60
    on_track_max: int = 60
    delay_likely_max: int = 180

    def __post_init__(self):
        if not self.early_below <= self.on_track_max <= self.delay_likely_max:
            raise ValueError(
                "Status bands must satisfy early_below <= on_track_max <= delay_likely_max"
            )


DEFAULT_STATUS_BANDS = StatusBands()


@dataclass(frozen=True)
class StatusResult:
    """Classification outcome."""

    label: StatusLabel
    color_tag: StatusColor
    days_difference: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.label.value,
            "status_color": self.color_tag.value,
            "days_difference": self.days_difference,
        }


def days_between(median_date, reference_date) -> int:
    """Days from reference to median; negative when the median is earlier."""
    return (parse_date(median_date, field="median_date") -
            parse_date(reference_date, field="reference_date")).days


def classify(
    median_date: date,
    reference_date: date,
    total_count: int,
    minimum_sample_size: int = DEFAULT_MINIMUM_SAMPLE_SIZE,
    bands: StatusBands = DEFAULT_STATUS_BANDS,
) -> StatusResult:
    """
    Classify the current median against the reference date.

    Args:
        median_date: Current weighted median
        reference_date: Fixed reference date
        total_count: Number of live observations behind the median
        minimum_sample_size: Counts below this yield INSUFFICIENT_DATA
        bands: Band edges in days

    Returns:
        StatusResult with label, color tag and signed day difference
    """
    days_diff = days_between(median_date, reference_date)

    if total_count < minimum_sample_size:
        return StatusResult(StatusLabel.INSUFFICIENT_DATA, StatusColor.BLUE, days_diff)

    if days_diff < bands.early_below:
        return StatusResult(StatusLabel.EARLY, StatusColor.GREEN, days_diff)
    if days_diff <= bands.on_track_max:
        return StatusResult(StatusLabel.ON_TRACK, StatusColor.BLUE, days_diff)
    if days_diff <= bands.delay_likely_max:
        return StatusResult(StatusLabel.DELAY_LIKELY, StatusColor.AMBER, days_diff)
    return StatusResult(StatusLabel.MAJOR_DELAY, StatusColor.RED, days_diff)
