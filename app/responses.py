"""
JSON envelope shared by every API blueprint.

Responses look like ``{"success": true, "data": ..., "message": ...}``;
``message`` is omitted when there is nothing to say.
"""

from typing import Any

from flask import jsonify, request

from app.exceptions import ValidationError


def success(data: Any = None, status: int = 200, message: str | None = None):
    """Return a ``(response, status)`` pair with the success envelope."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def failure(message: str, status: int):
    """Return a ``(response, status)`` pair with the error envelope."""
    return jsonify({"success": False, "data": None, "message": message}), status


def json_body() -> dict[str, Any]:
    """
    Return the request's JSON object.

    Raises:
        ValidationError: The body is missing or not a JSON object.
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body
