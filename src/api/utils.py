"""
Shared utilities for the Guardian Recovery API.

Authentication, caller identity, payload validation and error rendering used
by every blueprint.
"""

import secrets
from functools import wraps
from typing import Any

from flask import g, jsonify, request

from recovery_errors import RecoveryError

from .state import get_config

# Caller identity is established upstream and forwarded in this header
CALLER_HEADER = "X-Caller-Id"
MAX_IDENTITY_LENGTH = 256


# ============================================================
# Validation Utilities
# ============================================================

def validate_json_schema(
    data: dict[str, Any],
    required_fields: dict[str, type | tuple],
    optional_fields: dict[str, type | tuple] | None = None,
    max_lengths: dict[str, int] | None = None,
) -> tuple:
    """
    Validate a JSON payload against a simple schema.

    Args:
        data: The JSON data to validate
        required_fields: Field name -> expected type(s)
        optional_fields: Optional field name -> expected type(s)
        max_lengths: Field name -> maximum string length

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for field_name, expected_type in required_fields.items():
        if field_name not in data:
            return False, f"Missing required field: {field_name}"
        if not isinstance(data[field_name], expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    for field_name, expected_type in (optional_fields or {}).items():
        if data.get(field_name) is not None and not isinstance(data[field_name], expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    for field_name, max_len in (max_lengths or {}).items():
        value = data.get(field_name)
        if isinstance(value, str) and len(value) > max_len:
            return False, f"Field '{field_name}' exceeds maximum length of {max_len}"

    return True, None


def error_response(error: RecoveryError):
    """Render a RecoveryError as a JSON response with its mapped status."""
    return jsonify(error.to_dict()), error.http_status


# ============================================================
# Authentication Decorators
# ============================================================

def require_api_key(f):
    """Decorator to require API key authentication."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        config = get_config()
        if not config.require_auth:
            return f(*args, **kwargs)

        provided_key = request.headers.get("X-API-Key")
        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header",
            }), 401

        if not config.api_key:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set RECOVERY_API_KEY environment variable",
            }), 503

        if not secrets.compare_digest(provided_key, config.api_key):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)
    return decorated_function


def require_caller(f):
    """Decorator that stores the authenticated caller identity on ``g.caller``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        caller = (request.headers.get(CALLER_HEADER) or "").strip()
        if not caller:
            return jsonify({
                "error": "Caller identity required",
                "hint": f"Provide caller identity in {CALLER_HEADER} header",
            }), 401
        if len(caller) > MAX_IDENTITY_LENGTH:
            return jsonify({"error": "Caller identity too long"}), 400
        g.caller = caller
        return f(*args, **kwargs)
    return decorated_function
