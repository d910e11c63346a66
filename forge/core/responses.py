"""FORGE - API error envelope helper."""
from typing import Any


def error_response(
    code: str,
    message: str,
    field_errors: list[dict] | None = None,
    meta: dict | None = None,
    **extra: Any,
) -> dict:
    error = {
        "code": code,
        "message": message,
        "field_errors": field_errors or [],
    }
    error.update(extra)
    return {"data": None, "error": error, "meta": meta}
