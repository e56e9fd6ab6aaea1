"""
Prediction engine: the single entry point for submissions and reads.

The ledger, aggregate cache, configuration and bot verifier are all
injected, so the engine runs against in-memory fakes in tests and
against PostgreSQL and Redis in production without code changes.

Write path:
    capacity gate -> validate -> hash identity -> bot check (create only,
    fail-open) -> weight -> ledger write -> invalidate + recompute aggregate

A ledger write is committed before the aggregate is recomputed. If the
recompute fails, the write still succeeds and the result carries no
stats, so the caller always receives its update token.
"""

import html
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

from aggregation import Aggregate, AggregateCache, Distribution, Sentiment
from bot_verification import AllowAllVerifier, BotVerifier
from capacity import CapacityMonitor
from config import EngineConfig
from date_validation import parse_prediction_date
from errors import (
    BotDetectedError,
    DuplicateIdentityError,
    TokenNotFoundError,
    ValidationError,
)
from identity import hash_identity, token_prefix
from monitoring import metrics
from status_classifier import StatusResult, classify
from storage.base import LedgerBackend, Observation, StorageError
from weighted_median import weight_of

logger = logging.getLogger(__name__)

MAX_USER_AGENT_LENGTH = 512


class ComparisonLabel(Enum):
    """How a submitted date compares to the community median."""

    OPTIMISTIC = "optimistic"
    PESSIMISTIC = "pessimistic"
    ALIGNED = "aligned"

    @classmethod
    def from_days(cls, days_difference: int) -> "ComparisonLabel":
        if days_difference > 0:
            return cls.PESSIMISTIC
        if days_difference < 0:
            return cls.OPTIMISTIC
        return cls.ALIGNED


def _compare(observation: Observation, aggregate: Aggregate | None):
    """(days_difference, label) against the median, or (None, None) without stats."""
    if aggregate is None:
        return None, None
    days_difference = (observation.observed_date - aggregate.median_date).days
    return days_difference, ComparisonLabel.from_days(days_difference)


@dataclass(frozen=True)
class SubmissionResult:
    observation: Observation
    update_token: str
    aggregate: Aggregate | None
    days_difference: int | None
    comparison_label: ComparisonLabel | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "prediction": self.observation.to_public_dict(),
            "update_token": self.update_token,
            "stats": self.aggregate.to_dict() if self.aggregate else None,
            "delta_days": self.days_difference,
            "comparison": self.comparison_label.value if self.comparison_label else None,
        }


@dataclass(frozen=True)
class RevisionResult:
    observation: Observation
    previous_date: date
    aggregate: Aggregate | None
    days_difference: int | None
    comparison_label: ComparisonLabel | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "prediction": self.observation.to_public_dict(),
            "previous_date": self.previous_date.isoformat(),
            "stats": self.aggregate.to_dict() if self.aggregate else None,
            "delta_days": self.days_difference,
            "comparison": self.comparison_label.value if self.comparison_label else None,
        }


def sanitize_user_agent(user_agent: str | None) -> str | None:
    """HTML-escape and truncate a client user agent before storing it."""
    if not user_agent or not isinstance(user_agent, str):
        return None
    return html.escape(user_agent[:MAX_USER_AGENT_LENGTH], quote=True)


class PredictionEngine:
    """
    Facade over the ledger, aggregate cache and classifier.

    Args:
        ledger: Submission ledger backend
        aggregate_cache: Cache of derived views over the same ledger
        config: Policy constants and secrets
        verifier: Bot-challenge verifier consulted before admission
        capacity: Daily request budget; writes are refused once it is spent
    """

    def __init__(
        self,
        ledger: LedgerBackend,
        aggregate_cache: AggregateCache,
        config: EngineConfig,
        verifier: BotVerifier | None = None,
        capacity: CapacityMonitor | None = None,
    ):
        if not config.identity_salt or not config.identity_salt.strip():
            raise ValueError("IDENTITY_SALT must be configured")
        self.ledger = ledger
        self.aggregate_cache = aggregate_cache
        self.config = config
        self.verifier = verifier or AllowAllVerifier()
        self.capacity = capacity

    def _parse_date(self, observed_date) -> date:
        return parse_prediction_date(
            observed_date, self.config.min_date, self.config.max_date, field="predicted_date"
        )

    def _weight(self, observed_date: date) -> float:
        return weight_of(observed_date, self.config.reference_date, self.config.weight_policy)

    def _ensure_writable(self) -> None:
        if self.capacity is not None:
            self.capacity.ensure_writable()

    def _refresh_after_write(self) -> Aggregate | None:
        """Recompute the aggregate after a committed write; None if the ledger can't be read."""
        try:
            return self.aggregate_cache.refresh()
        except StorageError as e:
            metrics.increment("aggregate_refresh_failures_total")
            logger.error("Aggregate refresh after write failed", extra={"error": str(e)})
            return None

    def submit(
        self,
        raw_identity: str,
        observed_date,
        challenge_token: str | None = None,
        user_agent: str | None = None,
    ) -> SubmissionResult:
        """
        Admit a first observation for an identity.

        Raises:
            CapacityExceededError: The service is read-only for the rest of the day
            ValidationError: Missing identity or malformed/out-of-range date
            BotDetectedError: Definitive bot-check failure
            DuplicateIdentityError: The identity already has a live observation
        """
        self._ensure_writable()

        if not raw_identity or not isinstance(raw_identity, str) or not raw_identity.strip():
            raise ValidationError("Unable to determine client identity.", field="identity")

        parsed_date = self._parse_date(observed_date)
        identity_token = hash_identity(raw_identity.strip(), self.config.identity_salt)

        if not self.verifier.verify(challenge_token, raw_identity.strip()):
            logger.warning(
                "Submission rejected by bot check",
                extra={"identity_prefix": token_prefix(identity_token)},
            )
            raise BotDetectedError()

        try:
            observation, update_token = self.ledger.create(
                identity_token,
                parsed_date,
                self._weight(parsed_date),
                user_agent=sanitize_user_agent(user_agent),
            )
        except DuplicateIdentityError:
            metrics.increment("duplicate_identity_total")
            logger.warning(
                "Duplicate submission attempt",
                extra={"identity_prefix": token_prefix(identity_token)},
            )
            raise

        aggregate = self._refresh_after_write()
        days_difference, comparison_label = _compare(observation, aggregate)

        metrics.increment("submissions_total")
        logger.info(
            "Prediction submitted",
            extra={
                "identity_prefix": token_prefix(identity_token),
                "predicted_date": observation.observed_date.isoformat(),
                "weight": observation.weight,
                "total_count": aggregate.total_count if aggregate else None,
            },
        )

        return SubmissionResult(
            observation=observation,
            update_token=update_token,
            aggregate=aggregate,
            days_difference=days_difference,
            comparison_label=comparison_label,
        )

    def revise(self, update_token: str, observed_date) -> RevisionResult:
        """
        Replace the date of the observation owning update_token.

        The weight is recomputed from the new date; identity and
        first_submitted_at are preserved.

        Raises:
            CapacityExceededError: The service is read-only for the rest of the day
            ValidationError: Missing token or malformed/out-of-range date
            TokenNotFoundError: No live observation for the token
        """
        self._ensure_writable()

        if not update_token or not isinstance(update_token, str):
            raise ValidationError("Update token is required.", field="update_token")

        parsed_date = self._parse_date(observed_date)

        previous = self.ledger.get_by_update_token(update_token)
        if previous is None:
            self._token_not_found()

        try:
            observation = self.ledger.update(update_token, parsed_date, self._weight(parsed_date))
        except TokenNotFoundError:
            self._token_not_found()

        aggregate = self._refresh_after_write()
        days_difference, comparison_label = _compare(observation, aggregate)

        metrics.increment("revisions_total")
        logger.info(
            "Prediction revised",
            extra={
                "identity_prefix": token_prefix(observation.identity_token),
                "previous_date": previous.observed_date.isoformat(),
                "predicted_date": observation.observed_date.isoformat(),
                "weight": observation.weight,
            },
        )

        return RevisionResult(
            observation=observation,
            previous_date=previous.observed_date,
            aggregate=aggregate,
            days_difference=days_difference,
            comparison_label=comparison_label,
        )

    def _token_not_found(self):
        metrics.increment("token_not_found_total")
        logger.warning("Unknown update token")
        raise TokenNotFoundError()

    def lookup(self, update_token: str) -> Observation:
        """The caller's own observation, found by update token."""
        if not update_token:
            raise ValidationError("Update token is required.", field="update_token")
        observation = self.ledger.get_by_update_token(update_token)
        if observation is None:
            self._token_not_found()
        return observation

    def read_aggregate(self) -> Aggregate:
        return self.aggregate_cache.get_aggregate()

    def classify_aggregate(
        self,
        aggregate: Aggregate,
        reference_date: date | None = None,
        minimum_sample_size: int | None = None,
    ) -> StatusResult:
        """Classify an aggregate the caller already holds against the reference date."""
        return classify(
            aggregate.median_date,
            reference_date or self.config.reference_date,
            aggregate.total_count,
            minimum_sample_size=(
                self.config.minimum_sample_size if minimum_sample_size is None else minimum_sample_size
            ),
            bands=self.config.status_bands,
        )

    def read_status(
        self,
        reference_date: date | None = None,
        minimum_sample_size: int | None = None,
    ) -> StatusResult:
        """Classify the cached median against the reference date."""
        return self.classify_aggregate(self.read_aggregate(), reference_date, minimum_sample_size)

    def read_sentiment(self, reference_date: date | None = None) -> Sentiment:
        return self.aggregate_cache.get_sentiment(reference_date or self.config.reference_date)

    def read_distribution(self, minimum_sample_size: int | None = None) -> Distribution:
        if minimum_sample_size is None:
            minimum_sample_size = self.config.minimum_sample_size
        return self.aggregate_cache.get_distribution(minimum_sample_size)
