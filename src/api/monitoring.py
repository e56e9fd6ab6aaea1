"""
Monitoring and metrics API endpoints.

This blueprint provides:
- /metrics: Prometheus-compatible metrics endpoint
- /metrics/json: JSON format metrics
- /health: Basic health check
- /health/live: Liveness check
- /health/ready: Readiness check (ledger reachable)
"""

import time

from flask import Blueprint, Response, current_app, jsonify

from monitoring import metrics
from storage.base import StorageError

from .state import RATE_LIMITER_EXTENSION, get_engine

monitoring_bp = Blueprint("monitoring", __name__)

_startup_time = time.time()


def _update_dynamic_metrics() -> None:
    """Refresh gauges that are sampled rather than counted."""
    try:
        metrics.set_gauge("observations_current", get_engine().ledger.count())
    except StorageError:
        metrics.set_gauge("observations_current", -1)


def _get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("date-consensus")
    except PackageNotFoundError:
        return "0.1.0"


@monitoring_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """Metrics in Prometheus text exposition format."""
    _update_dynamic_metrics()
    return Response(metrics.to_prometheus(), mimetype="text/plain; charset=utf-8")


@monitoring_bp.route("/metrics/json", methods=["GET"])
def json_metrics():
    _update_dynamic_metrics()
    return jsonify(metrics.get_all())


@monitoring_bp.route("/health", methods=["GET"])
def health():
    """Service status plus ledger, cache and rate limiter checks."""
    engine = get_engine()
    limiter = current_app.extensions.get(RATE_LIMITER_EXTENSION)

    try:
        ledger_info = engine.ledger.get_info()
    except StorageError as e:
        ledger_info = {"backend_type": engine.ledger.__class__.__name__, "available": False,
                       "error": str(e)}

    return jsonify({
        "status": "healthy" if ledger_info.get("available") else "degraded",
        "service": "Date Consensus API",
        "version": _get_version(),
        "uptime_seconds": time.time() - _startup_time,
        "checks": {
            "ledger": ledger_info,
            "cache": engine.aggregate_cache.cache.get_stats(),
            "bot_verification": engine.verifier.__class__.__name__,
            "rate_limiter": limiter.is_healthy() if limiter else {"enabled": False},
        },
    })


@monitoring_bp.route("/health/live", methods=["GET"])
def liveness():
    """Returns 200 while the process is running."""
    return jsonify({"status": "alive"})


@monitoring_bp.route("/health/ready", methods=["GET"])
def readiness():
    """Returns 503 until the ledger backend is reachable."""
    if not get_engine().ledger.is_available():
        return jsonify({"status": "not_ready", "issues": ["ledger: not available"]}), 503
    return jsonify({"status": "ready"})
