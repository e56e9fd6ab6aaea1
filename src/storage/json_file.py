"""
JSON file ledger backend.

Persists observations to a local JSON file. Suitable for single-process
deployments: uniqueness is enforced by an in-process lock, so several
processes must not share one file (use PostgreSQL for that).
"""

import json
import os
import threading
from datetime import date
from typing import Any

from errors import ValidationError
from storage.base import (
    Observation,
    StorageReadError,
    StorageWriteError,
)
from storage.memory import MemoryLedger

FILE_FORMAT_VERSION = 1


class JSONFileLedger(MemoryLedger):
    """
    JSON file ledger backend.

    Keeps the working set in memory and rewrites the file atomically
    (write to temp, then rename) after every accepted write. A write that
    cannot be persisted is rolled back in memory before the error is raised.
    """

    def __init__(self, file_path: str = "ledger_data.json"):
        """
        Initialize JSON file storage.

        Args:
            file_path: Path to the JSON file

        Raises:
            StorageReadError: If an existing file cannot be parsed
        """
        super().__init__()
        self.file_path = file_path
        self._file_lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        try:
            if not os.path.exists(self.file_path):
                return
            with open(self.file_path, "r", encoding="utf-8") as f:
                raw_data = f.read()
            if not raw_data.strip():
                return
            data = json.loads(raw_data)
            observations = [Observation.from_dict(item) for item in data.get("observations", [])]
        except PermissionError as e:
            raise StorageReadError(f"Permission denied: {self.file_path}") from e
        except json.JSONDecodeError as e:
            raise StorageReadError(f"Invalid JSON format: {e}") from e
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise StorageReadError(f"Malformed ledger record: {e}") from e

        with self._lock:
            for observation in observations:
                self._by_identity[observation.identity_token] = observation
                self._token_index[observation.update_token] = observation.identity_token

    def _persist(self) -> None:
        """Write the whole ledger to disk. Caller holds self._lock."""
        payload = {
            "version": FILE_FORMAT_VERSION,
            "observations": [o.to_dict() for o in self._by_identity.values()],
        }
        with self._file_lock:
            try:
                data = json.dumps(payload, indent=2, ensure_ascii=False)
                temp_path = f"{self.file_path}.tmp"
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(temp_path, self.file_path)
            except PermissionError as e:
                raise StorageWriteError(f"Permission denied: {self.file_path}") from e
            except OSError as e:
                raise StorageWriteError(f"OS error: {e}") from e

    def create(
        self,
        identity_token: str,
        observed_date: date,
        weight: float,
        user_agent: str | None = None,
    ) -> tuple[Observation, str]:
        with self._lock:
            observation, update_token = super().create(
                identity_token, observed_date, weight, user_agent
            )
            try:
                self._persist()
            except StorageWriteError:
                del self._by_identity[identity_token]
                del self._token_index[update_token]
                raise
            return observation, update_token

    def update(self, update_token: str, observed_date: date, weight: float) -> Observation:
        with self._lock:
            identity_token = self._token_index.get(update_token)
            previous = self._by_identity.get(identity_token) if identity_token else None
            updated = super().update(update_token, observed_date, weight)
            try:
                self._persist()
            except StorageWriteError:
                self._by_identity[identity_token] = previous
                raise
            return updated

    def is_available(self) -> bool:
        """
        Check if file storage is available.

        Returns:
            True if the file's directory is writable
        """
        directory = os.path.dirname(self.file_path) or "."
        return os.path.isdir(directory) and os.access(directory, os.W_OK)

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        info.update({
            "file_path": self.file_path,
            "file_exists": os.path.exists(self.file_path),
        })

        if os.path.exists(self.file_path):
            try:
                stat = os.stat(self.file_path)
                info["file_size_bytes"] = stat.st_size
                info["last_modified"] = stat.st_mtime
            except OSError:
                pass

        return info
