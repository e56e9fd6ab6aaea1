"""
In-memory ledger backend.

This backend keeps observations in memory only, useful for:
- Unit testing
- Development
- Ephemeral single-process deployments
"""

import dataclasses
import threading
from datetime import date
from typing import Any

from errors import DuplicateIdentityError, TokenNotFoundError
from storage.base import (
    LedgerBackend,
    Observation,
    StorageWriteError,
    check_weight,
    generate_update_token,
    utc_now,
)


class MemoryLedger(LedgerBackend):
    """
    In-memory ledger backend.

    All data is lost when the process exits. A single lock serializes
    writes, which gives the same effect as a unique constraint: two
    concurrent creates for one identity cannot both succeed.
    """

    def __init__(self):
        """Initialize an empty ledger."""
        self._by_identity: dict[str, Observation] = {}
        self._token_index: dict[str, str] = {}  # update_token -> identity_token
        self._lock = threading.RLock()

    def create(
        self,
        identity_token: str,
        observed_date: date,
        weight: float,
        user_agent: str | None = None,
    ) -> tuple[Observation, str]:
        weight = check_weight(weight)

        with self._lock:
            if identity_token in self._by_identity:
                raise DuplicateIdentityError()

            update_token = generate_update_token()
            if update_token in self._token_index:
                # Collision: regenerate once
                update_token = generate_update_token()
                if update_token in self._token_index:
                    raise StorageWriteError("Could not allocate a unique update token")

            now = utc_now()
            observation = Observation(
                identity_token=identity_token,
                observed_date=observed_date,
                weight=weight,
                first_submitted_at=now,
                last_updated_at=now,
                update_token=update_token,
                user_agent=user_agent,
            )
            self._by_identity[identity_token] = observation
            self._token_index[update_token] = identity_token
            return dataclasses.replace(observation), update_token

    def update(self, update_token: str, observed_date: date, weight: float) -> Observation:
        weight = check_weight(weight)

        with self._lock:
            identity_token = self._token_index.get(update_token)
            if identity_token is None:
                raise TokenNotFoundError()

            current = self._by_identity[identity_token]
            updated = dataclasses.replace(
                current,
                observed_date=observed_date,
                weight=weight,
                last_updated_at=utc_now(),
            )
            self._by_identity[identity_token] = updated
            return dataclasses.replace(updated)

    def snapshot_all(self) -> list[Observation]:
        with self._lock:
            observations = [dataclasses.replace(o) for o in self._by_identity.values()]
        observations.sort(key=lambda o: o.observed_date)
        return observations

    def get_by_update_token(self, update_token: str) -> Observation | None:
        with self._lock:
            identity_token = self._token_index.get(update_token)
            if identity_token is None:
                return None
            return dataclasses.replace(self._by_identity[identity_token])

    def count(self) -> int:
        with self._lock:
            return len(self._by_identity)

    def is_available(self) -> bool:
        """Memory storage is always available."""
        return True

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        info["observation_count"] = self.count()
        return info
