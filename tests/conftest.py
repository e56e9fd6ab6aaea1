"""
Pytest configuration and shared fixtures for Date Consensus tests.

This module provides shared fixtures including:
- In-memory ledger and local cache
- Engine configuration with a fixed salt and reference date
- A PredictionEngine wired over in-memory fakes
- Flask app and test client over the same engine
"""

import os
import sys
from datetime import date

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

# Set up test environment before any imports
os.environ.setdefault("IDENTITY_SALT", "test-salt")
os.environ.setdefault("COOKIE_SECURE", "false")
# The Flask test client connects from 127.0.0.1; tests vary identities with X-Forwarded-For
os.environ.setdefault("TRUSTED_PROXIES", "127.0.0.1")

from aggregation import AggregateCache  # noqa: E402
from bot_verification import AllowAllVerifier  # noqa: E402
from config import EngineConfig  # noqa: E402
from monitoring import metrics  # noqa: E402
from prediction_engine import PredictionEngine  # noqa: E402
from rate_limiter import RateLimitConfig, RateLimiter  # noqa: E402
from scaling.cache import LocalCache  # noqa: E402
from storage.memory import MemoryLedger  # noqa: E402

REFERENCE_DATE = date(2026, 11, 19)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-global; start each test from zero."""
    metrics.reset()
    yield


@pytest.fixture
def engine_config():
    return EngineConfig(reference_date=REFERENCE_DATE, identity_salt="test-salt")


@pytest.fixture
def ledger():
    return MemoryLedger()


@pytest.fixture
def local_cache():
    return LocalCache()


@pytest.fixture
def aggregate_cache(ledger, local_cache, engine_config):
    return AggregateCache(
        ledger,
        local_cache,
        ttl_seconds=engine_config.cache_ttl_seconds,
        default_date=engine_config.reference_date,
    )


@pytest.fixture
def engine(ledger, aggregate_cache, engine_config):
    return PredictionEngine(ledger, aggregate_cache, engine_config, verifier=AllowAllVerifier())


@pytest.fixture
def rate_limiter():
    """Generous limits so endpoint tests never trip them."""
    config = RateLimitConfig(scope_limits={"submit": 1000, "update": 1000, "read": 1000})
    return RateLimiter(config)


@pytest.fixture
def flask_app(engine, rate_limiter):
    from api import create_app

    app = create_app(engine=engine, rate_limiter=rate_limiter)
    app.config["TESTING"] = True
    app.config["COOKIE_SECURE"] = False
    return app


@pytest.fixture
def flask_client(flask_app):
    return flask_app.test_client()
