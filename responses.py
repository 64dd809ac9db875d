# responses.py
"""JSON envelope shared by every API endpoint: {code, status, message, errors, data}."""

from flask import jsonify, request

from errors import ValidationError


def api_response(data=None, message: str = "OK", code: int = 200):
    return (
        jsonify(
            {
                "code": code,
                "status": code,
                "message": message,
                "errors": None,
                "data": data,
            }
        ),
        code,
    )


def api_error(message: str, code: int, errors=None):
    return (
        jsonify(
            {
                "code": code,
                "status": code,
                "message": message,
                "errors": errors,
                "data": None,
            }
        ),
        code,
    )


def json_body() -> dict:
    """Return the request JSON object or raise ``ValidationError``."""

    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object", field="body")
    return payload
