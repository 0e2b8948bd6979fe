"""
GuardianShield — Request Body Helpers

Routers read raw JSON and validate it here, so malformed input always
becomes an InputValidationError (400) rather than FastAPI's 422.
"""

from __future__ import annotations

from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from guardianshield.systems.authority.errors import InputValidationError

M = TypeVar("M", bound=BaseModel)

_FIELD_NAMES = {
    "playerId": "player ID",
    "deviceId": "device ID",
    "gameValues": "game values",
    "initialData": "initial data",
}


async def read_json(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise InputValidationError("Invalid JSON") from exc
    if not isinstance(body, dict):
        raise InputValidationError("Invalid request body")
    return body


def parse_model(model: type[M], body: dict[str, Any]) -> M:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else "request body"
        raise InputValidationError(f"Invalid {_FIELD_NAMES.get(field, field)}") from exc
