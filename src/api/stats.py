"""
Community statistics blueprint.

Routes:
- GET /api/stats: weighted median, min, max and count
- GET /api/status: median classified against the reference date
- GET /api/sentiment: optimism score
- GET /api/predictions: per-date distribution (empty below the sample floor)
- GET /api/degradation: daily capacity level and enabled features

All reads are served from the aggregate cache.
"""

from flask import Blueprint, jsonify, request

from capacity import CapacityConfig, CapacityMonitor
from date_validation import parse_date
from errors import ValidationError
from rate_limiter import SCOPE_READ, rate_limited
from scaling.cache import LocalCache

from .state import get_engine

stats_bp = Blueprint("stats", __name__)


def _cache_control(response, cache_hit: bool | None = None):
    ttl = int(get_engine().aggregate_cache.effective_ttl())
    response.headers["Cache-Control"] = f"public, max-age={ttl}"
    if cache_hit is not None:
        response.headers["X-Cache"] = "HIT" if cache_hit else "MISS"
    return response


def _int_arg(name: str) -> int | None:
    value = request.args.get(name)
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        raise ValidationError(f"Query parameter '{name}' must be an integer", field=name) from None
    if parsed < 0:
        raise ValidationError(f"Query parameter '{name}' must be non-negative", field=name)
    return parsed


@stats_bp.route("/api/stats", methods=["GET"])
@rate_limited(SCOPE_READ)
def get_stats():
    """Current community aggregate."""
    aggregate, cache_hit = get_engine().aggregate_cache.get_aggregate_with_status()
    response = jsonify({"success": True, "data": aggregate.to_dict()})
    return _cache_control(response, cache_hit)


@stats_bp.route("/api/status", methods=["GET"])
@rate_limited(SCOPE_READ)
def get_status():
    """
    Release-status label for the current median.

    Query params:
        reference_date: override the configured reference date (YYYY-MM-DD)
        minimum_sample_size: override the configured sample floor
    """
    engine = get_engine()
    reference_arg = request.args.get("reference_date")
    reference_date = (
        parse_date(reference_arg, field="reference_date") if reference_arg
        else engine.config.reference_date
    )

    minimum_sample_size = _int_arg("minimum_sample_size")
    aggregate = engine.read_aggregate()
    status = engine.classify_aggregate(aggregate, reference_date, minimum_sample_size)

    data = status.to_dict()
    data.update({
        "median_date": aggregate.median_date.isoformat(),
        "reference_date": reference_date.isoformat(),
        "total_count": aggregate.total_count,
    })
    return _cache_control(jsonify({"success": True, "data": data}))


@stats_bp.route("/api/sentiment", methods=["GET"])
@rate_limited(SCOPE_READ)
def get_sentiment():
    """Share of predictions earlier than the reference date."""
    sentiment = get_engine().read_sentiment()
    return _cache_control(jsonify({"success": True, "data": sentiment.to_dict()}))


@stats_bp.route("/api/predictions", methods=["GET"])
@rate_limited(SCOPE_READ)
def get_distribution():
    """Predictions grouped by date with counts. Only aggregated data is returned."""
    distribution = get_engine().read_distribution()
    return _cache_control(jsonify({"success": True, "data": distribution.to_dict()}))


@stats_bp.route("/api/degradation", methods=["GET"])
def get_degradation():
    """
    Today's capacity level and the features it leaves enabled.

    Reports the normal level when capacity tracking is not configured.
    """
    capacity = get_engine().capacity
    if capacity is None:
        capacity = CapacityMonitor(LocalCache(), CapacityConfig(enabled=False))
    return jsonify({"success": True, "data": capacity.get_state().to_dict()})
