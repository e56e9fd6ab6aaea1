"""
Submission ledger storage for Date Consensus.

This package provides pluggable ledger backends that all enforce the
same admission rules (one live observation per identity, one
observation per update token):

- Memory (default, for tests and development)
- JSON file (single-process persistence)
- PostgreSQL (production; uniqueness enforced by the database)

Usage:
    from storage import get_ledger_backend

    ledger = get_ledger_backend()
    observation, update_token = ledger.create(identity_token, observed_date, weight)
"""

import os
from typing import TYPE_CHECKING

from storage.base import LedgerBackend, Observation, StorageError
from storage.json_file import JSONFileLedger
from storage.memory import MemoryLedger

# Lazy import for PostgreSQL to avoid requiring psycopg2
if TYPE_CHECKING:
    from storage.postgresql import PostgreSQLLedger

__all__ = [
    "JSONFileLedger",
    "LedgerBackend",
    "MemoryLedger",
    "Observation",
    "StorageError",
    "get_ledger_backend",
]


def get_ledger_backend() -> LedgerBackend:
    """
    Get the configured ledger backend based on environment variables.

    Environment variables:
        STORAGE_BACKEND: Backend type ("memory", "json", "postgresql")
        LEDGER_DATA_FILE: Path for JSON file storage (default: ledger_data.json)
        DATABASE_URL: PostgreSQL connection URL

    Returns:
        Configured LedgerBackend instance
    """
    backend_type = os.getenv("STORAGE_BACKEND", "memory").lower()

    if backend_type == "memory":
        return MemoryLedger()

    elif backend_type == "json":
        return JSONFileLedger(os.getenv("LEDGER_DATA_FILE", "ledger_data.json"))

    elif backend_type in ("postgresql", "postgres"):
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise StorageError("DATABASE_URL environment variable required for PostgreSQL backend")
        from storage.postgresql import PostgreSQLLedger

        return PostgreSQLLedger(database_url)

    else:
        raise StorageError(f"Unknown storage backend: {backend_type}")
