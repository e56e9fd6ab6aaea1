"""
Prediction submission blueprint.

Routes:
- POST /api/predict: submit a first prediction (one per identity)
- PUT /api/predict: revise a prediction with its update token
- GET /api/predict: read back your own prediction by update token
"""

from flask import Blueprint, jsonify, request

from prediction_engine import ComparisonLabel
from rate_limiter import SCOPE_READ, SCOPE_SUBMIT, SCOPE_UPDATE, rate_limited

from .state import get_engine
from .utils import (
    MAX_DATE_LENGTH,
    MAX_TOKEN_LENGTH,
    client_identity,
    require_json_body,
    set_token_cookie,
    update_token_from_request,
)

predictions_bp = Blueprint("predictions", __name__)


@predictions_bp.route("/api/predict", methods=["POST"])
@rate_limited(SCOPE_SUBMIT)
def submit_prediction():
    """
    Submit a prediction.

    Request body:
    {
        "predicted_date": "2027-03-15",
        "turnstile_token": "..." (required when bot verification is enabled)
    }

    Returns:
        201 with the prediction, update token, fresh stats and comparison.
        The update token is also set as an HttpOnly cookie.
    """
    data = require_json_body(
        required_fields={"predicted_date": str},
        optional_fields={"turnstile_token": str},
        max_lengths={"predicted_date": MAX_DATE_LENGTH, "turnstile_token": MAX_TOKEN_LENGTH},
    )

    result = get_engine().submit(
        client_identity(),
        data["predicted_date"],
        challenge_token=data.get("turnstile_token"),
        user_agent=request.headers.get("User-Agent"),
    )

    response = jsonify({"success": True, "data": result.to_dict()})
    response.status_code = 201
    return set_token_cookie(response, result.update_token)


@predictions_bp.route("/api/predict", methods=["PUT"])
@rate_limited(SCOPE_UPDATE)
def revise_prediction():
    """
    Revise a prediction.

    Request body:
    {
        "predicted_date": "2027-06-01",
        "update_token": "..." (optional if sent as X-Update-Token or cookie)
    }
    """
    data = require_json_body(
        required_fields={"predicted_date": str},
        optional_fields={"update_token": str},
        max_lengths={"predicted_date": MAX_DATE_LENGTH, "update_token": MAX_TOKEN_LENGTH},
    )

    result = get_engine().revise(update_token_from_request(data), data["predicted_date"])
    return jsonify({"success": True, "data": result.to_dict()})


@predictions_bp.route("/api/predict", methods=["GET"])
@rate_limited(SCOPE_READ)
def my_prediction():
    """The caller's own prediction, compared with the current median."""
    engine = get_engine()
    observation = engine.lookup(update_token_from_request())
    aggregate = engine.read_aggregate()
    days_difference = (observation.observed_date - aggregate.median_date).days

    return jsonify({
        "success": True,
        "data": {
            "prediction": observation.to_public_dict(),
            "median_date": aggregate.median_date.isoformat(),
            "delta_days": days_difference,
            "comparison": ComparisonLabel.from_days(days_difference).value,
        },
    })
