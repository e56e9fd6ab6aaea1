"""
Engine wiring for the Date Consensus API.

Builds the PredictionEngine from environment configuration: the ledger
backend (STORAGE_BACKEND), the shared cache (REDIS_URL), the daily
capacity budget (CAPACITY_*) and the bot verifier (TURNSTILE_SECRET_KEY).
Blueprints never touch these globals; they reach the engine through
current_app.extensions.
"""

import logging

from flask import current_app

from aggregation import AggregateCache
from bot_verification import BotVerifier, build_verifier
from capacity import CapacityConfig, CapacityMonitor
from config import EngineConfig
from prediction_engine import PredictionEngine
from scaling import Cache, get_cache
from storage import LedgerBackend, get_ledger_backend

logger = logging.getLogger(__name__)

ENGINE_EXTENSION = "prediction_engine"
RATE_LIMITER_EXTENSION = "rate_limiter"


def build_engine(
    config: EngineConfig | None = None,
    ledger: LedgerBackend | None = None,
    cache: Cache | None = None,
    verifier: BotVerifier | None = None,
    capacity: CapacityMonitor | None = None,
) -> PredictionEngine:
    """
    Assemble a PredictionEngine, filling unspecified collaborators from env.

    Capacity tracking shares the cache with the aggregate and is skipped
    when CAPACITY_ENABLED=false.

    Raises:
        ValueError: If configuration is invalid (e.g. IDENTITY_SALT missing)
        StorageError: If the ledger backend cannot be initialized
    """
    config = config or EngineConfig.from_env()
    ledger = ledger or get_ledger_backend()
    cache = cache or get_cache()
    verifier = verifier or build_verifier(config.turnstile_secret_key, config.turnstile_timeout)
    if capacity is None:
        capacity_config = CapacityConfig.from_env()
        if capacity_config.enabled:
            capacity = CapacityMonitor(cache, capacity_config)

    aggregate_cache = AggregateCache(
        ledger,
        cache,
        ttl_seconds=config.cache_ttl_seconds,
        default_date=config.reference_date,
        capacity=capacity,
    )
    engine = PredictionEngine(ledger, aggregate_cache, config, verifier=verifier, capacity=capacity)

    logger.info(
        "Prediction engine ready",
        extra={
            "ledger": ledger.__class__.__name__,
            "cache": cache.__class__.__name__,
            "verifier": verifier.__class__.__name__,
            "capacity_limit": capacity.config.daily_limit if capacity else None,
        },
    )
    return engine


def get_engine() -> PredictionEngine:
    """The engine bound to the current Flask app."""
    return current_app.extensions[ENGINE_EXTENSION]
