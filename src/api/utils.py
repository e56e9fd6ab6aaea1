"""
Shared utilities for the Date Consensus API.

This module contains request parsing helpers, the update-token cookie
and the error envelope used across all API blueprints.
"""

from typing import Any

from flask import current_app, request

from errors import ValidationError
from identity import extract_client_ip

# Update token cookie (the capability credential, never a session)
TOKEN_COOKIE_NAME = "prediction_token"
TOKEN_COOKIE_MAX_AGE = 63072000  # 2 years
UPDATE_TOKEN_HEADER = "X-Update-Token"

# Bounded string fields
MAX_DATE_LENGTH = 32
MAX_TOKEN_LENGTH = 2048


def validate_json_schema(
    data: dict[str, Any],
    required_fields: dict[str, type],
    optional_fields: dict[str, type] | None = None,
    max_lengths: dict[str, int] | None = None
) -> tuple:
    """
    Validate JSON payload against a simple schema.

    Args:
        data: The JSON data to validate
        required_fields: Dict mapping field names to expected types
        optional_fields: Dict mapping optional field names to expected types
        max_lengths: Dict mapping field names to maximum string lengths

    Returns:
        Tuple of (is_valid, error_message, field_name)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object", None

    for field_name, expected_type in required_fields.items():
        if field_name not in data or data[field_name] is None:
            return False, f"Missing required field: {field_name}", field_name
        if not isinstance(data[field_name], expected_type):
            return False, f"Field '{field_name}' must be of type {expected_type.__name__}", field_name

    for field_name, expected_type in (optional_fields or {}).items():
        if data.get(field_name) is not None and not isinstance(data[field_name], expected_type):
            return False, f"Field '{field_name}' must be of type {expected_type.__name__}", field_name

    for field_name, max_len in (max_lengths or {}).items():
        value = data.get(field_name)
        if isinstance(value, str) and len(value) > max_len:
            return False, f"Field '{field_name}' exceeds maximum length of {max_len}", field_name

    return True, None, None


def require_json_body(
    required_fields: dict[str, type],
    optional_fields: dict[str, type] | None = None,
    max_lengths: dict[str, int] | None = None,
) -> dict[str, Any]:
    """
    Parse and validate the request JSON body.

    Raises:
        ValidationError: If the body is missing or does not match the schema
    """
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be valid JSON.")

    is_valid, error_msg, field = validate_json_schema(
        data, required_fields, optional_fields, max_lengths
    )
    if not is_valid:
        raise ValidationError(error_msg, field=field)
    return data


def client_identity() -> str:
    """Raw client address for identity hashing (empty when unavailable)."""
    return extract_client_ip(
        request.headers,
        request.remote_addr,
        current_app.config.get("TRUSTED_PROXIES", frozenset()),
    )


def update_token_from_request(data: dict[str, Any] | None = None) -> str | None:
    """Update token from the body, the X-Update-Token header or the cookie, in that order."""
    if data and isinstance(data.get("update_token"), str) and data["update_token"]:
        return data["update_token"]
    return request.headers.get(UPDATE_TOKEN_HEADER) or request.cookies.get(TOKEN_COOKIE_NAME)


def set_token_cookie(response, update_token: str):
    """Attach the update token cookie to a response."""
    response.set_cookie(
        TOKEN_COOKIE_NAME,
        update_token,
        max_age=TOKEN_COOKIE_MAX_AGE,
        httponly=True,
        secure=current_app.config.get("COOKIE_SECURE", True),
        samesite="Strict",
    )
    return response
