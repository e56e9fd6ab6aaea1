"""
Date Consensus API Package.

This package contains the Flask app factory and blueprints.

Blueprints:
- predictions: submit, revise and read back a prediction
- stats: aggregate, status, sentiment and distribution reads
- monitoring: health checks and metrics
"""

import logging
import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from config import EngineConfig
from errors import ErrorCode, PredictionError
from identity import load_trusted_proxies
from monitoring import setup_request_logging
from prediction_engine import PredictionEngine
from rate_limiter import RateLimitConfig, RateLimiter
from storage.base import StorageError

from api.monitoring import monitoring_bp
from api.predictions import predictions_bp
from api.state import ENGINE_EXTENSION, RATE_LIMITER_EXTENSION, build_engine
from api.stats import stats_bp

logger = logging.getLogger(__name__)

# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (predictions_bp, ""),
    (stats_bp, ""),
    (monitoring_bp, ""),
]


def register_blueprints(app: Flask) -> None:
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


# Health checks and metric scrapes don't count against the daily budget
UNCOUNTED_PATH_PREFIXES = ("/health", "/metrics")


def register_capacity_tracking(app: Flask) -> None:
    """Count each API request against the engine's daily capacity budget."""

    @app.before_request
    def count_request():
        capacity = app.extensions[ENGINE_EXTENSION].capacity
        if capacity is None or request.path.startswith(UNCOUNTED_PATH_PREFIXES):
            return None
        capacity.record_request()
        return None


def register_error_handlers(app: Flask) -> None:
    """Render every failure in the {"success": false, "error": {...}} envelope."""

    @app.errorhandler(PredictionError)
    def handle_prediction_error(error: PredictionError):
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(StorageError)
    def handle_storage_error(error: StorageError):
        logger.error("Storage failure", exc_info=error)
        body = PredictionError("Unable to process your request. Please try again.").to_dict()
        return jsonify(body), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        code = ErrorCode.SERVER_ERROR if error.code >= 500 else ErrorCode.VALIDATION_ERROR
        body = {"success": False, "error": {"code": code.value, "message": error.description}}
        return jsonify(body), error.code


def create_app(
    engine: PredictionEngine | None = None,
    config: EngineConfig | None = None,
    rate_limiter: RateLimiter | None = None,
) -> Flask:
    """
    Flask app factory.

    Args:
        engine: Prebuilt engine (tests inject one over in-memory fakes)
        config: Engine configuration, used only when engine is None
        rate_limiter: Limiter override; built from RATE_LIMIT_* env when None

    Returns:
        Configured Flask app with the engine in app.extensions["prediction_engine"]
    """
    app = Flask(__name__)
    app.json.sort_keys = False
    app.config["COOKIE_SECURE"] = os.getenv("COOKIE_SECURE", "true").lower() == "true"
    app.config["TRUSTED_PROXIES"] = load_trusted_proxies()

    app.extensions[ENGINE_EXTENSION] = engine or build_engine(config)
    app.extensions[RATE_LIMITER_EXTENSION] = rate_limiter or RateLimiter(RateLimitConfig.from_env())

    setup_request_logging(app)
    register_capacity_tracking(app)
    register_error_handlers(app)
    register_blueprints(app)

    return app
