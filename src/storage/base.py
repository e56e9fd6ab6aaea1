"""
Abstract base class for submission ledger backends.

This module defines the Observation record and the interface that all
ledger backends must implement. Backends enforce, at the storage layer,
that each identity owns at most one live observation and that each
update token maps to exactly one observation.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from date_validation import parse_date
from errors import ValidationError


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageConnectionError(StorageError):
    """Raised when connection to storage backend fails."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


def utc_now() -> datetime:
    """Current UTC time; patched in tests that need a fixed clock."""
    return datetime.now(UTC)


def generate_update_token() -> str:
    """Opaque capability token handed to the submitter at creation."""
    return str(uuid.uuid4())


def check_weight(weight: float) -> float:
    """Enforce the weight invariant 0 < weight <= 1."""
    if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not 0 < weight <= 1:
        raise ValidationError(f"Weight must be in (0, 1], got {weight!r}", field="weight")
    return float(weight)


@dataclass
class Observation:
    """One identity's current date opinion plus its derived weight."""

    identity_token: str
    observed_date: date
    weight: float
    first_submitted_at: datetime
    last_updated_at: datetime
    update_token: str
    user_agent: str | None = None

    def __post_init__(self):
        self.weight = check_weight(self.weight)

    def to_dict(self) -> dict[str, Any]:
        """Full record, for persistence."""
        return {
            "identity_token": self.identity_token,
            "observed_date": self.observed_date.isoformat(),
            "weight": self.weight,
            "first_submitted_at": self.first_submitted_at.isoformat(),
            "last_updated_at": self.last_updated_at.isoformat(),
            "update_token": self.update_token,
            "user_agent": self.user_agent,
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Record without identity or credential, safe to return to clients."""
        return {
            "predicted_date": self.observed_date.isoformat(),
            "weight": self.weight,
            "submitted_at": self.first_submitted_at.isoformat(),
            "updated_at": self.last_updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Observation":
        return cls(
            identity_token=data["identity_token"],
            observed_date=parse_date(data["observed_date"], field="observed_date"),
            weight=data["weight"],
            first_submitted_at=datetime.fromisoformat(data["first_submitted_at"]),
            last_updated_at=datetime.fromisoformat(data["last_updated_at"]),
            update_token=data["update_token"],
            user_agent=data.get("user_agent"),
        )


class LedgerBackend(ABC):
    """
    Abstract base class for submission ledger backends.

    Per identity the only transitions are ABSENT -> LIVE (create) and
    LIVE -> LIVE (update). There is no delete.
    """

    @abstractmethod
    def create(
        self,
        identity_token: str,
        observed_date: date,
        weight: float,
        user_agent: str | None = None,
    ) -> tuple[Observation, str]:
        """
        Admit the first observation for an identity.

        Args:
            identity_token: Hashed identity
            observed_date: Submitted date
            weight: Weight derived from observed_date
            user_agent: Optional client user agent

        Returns:
            Tuple of (observation, update_token)

        Raises:
            DuplicateIdentityError: If the identity already has a live observation
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def update(self, update_token: str, observed_date: date, weight: float) -> Observation:
        """
        Replace the date and weight of the observation owning update_token.

        identity_token and first_submitted_at are preserved.

        Raises:
            TokenNotFoundError: If no live observation matches
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def snapshot_all(self) -> list[Observation]:
        """
        Return every live observation, ordered by observed_date.

        Raises:
            StorageReadError: If reading fails
        """
        pass

    @abstractmethod
    def get_by_update_token(self, update_token: str) -> Observation | None:
        """Look up the observation owning update_token."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the storage backend is available and ready.

        Returns:
            True if storage is accessible, False otherwise
        """
        pass

    def count(self) -> int:
        """
        Number of live observations.

        Default implementation scans - backends should override for efficiency.
        """
        return len(self.snapshot_all())

    def get_info(self) -> dict[str, Any]:
        """
        Get information about the storage backend.

        Returns:
            Dictionary with backend type, status, and configuration
        """
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }

    def close(self) -> None:
        """
        Close the storage connection and release resources.

        Default implementation does nothing - backends with connections
        should override this.
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes connection."""
        self.close()
        return False
