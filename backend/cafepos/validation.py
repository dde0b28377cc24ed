# Overview: Request payload coercion and error-to-JSON mapping shared by routes.

from __future__ import annotations

from typing import Any

from flask import jsonify, request

from .errors import BillingError, InvalidRequest


MAX_QUERY_LIMIT = 500


def json_body() -> dict:
    """Request body as a dict; anything else is an InvalidRequest."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return data


def coerce_int(name: str, value: Any, *, required: bool = False, minimum: int | None = None) -> int | None:
    """
    Strict integer coercion for payload and query values.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals and
    scientific notation.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise InvalidRequest(f"{name} is required")
        return None

    if isinstance(value, bool):
        raise InvalidRequest(f"{name} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise InvalidRequest(f"{name} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise InvalidRequest(f"{name} must be an integer")
    else:
        raise InvalidRequest(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise InvalidRequest(f"{name} must be >= {minimum}")
    return result


def query_limit(default: int = 50) -> int:
    limit = coerce_int("limit", request.args.get("limit"), minimum=1)
    if limit is None:
        return default
    return min(limit, MAX_QUERY_LIMIT)


def error_response(exc: BillingError):
    return jsonify(exc.to_dict()), exc.status_code
