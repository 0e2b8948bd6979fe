"""
GuardianShield — Authority Error Hierarchy

All exceptions raised by the server-side authority. The HTTP layer maps
each class onto a status code and a structured JSON body; nothing here
knows about FastAPI.

Escalation guide:
  InputValidationError  never   rejected at the edge, nothing recorded
  AuthorizationError    never   answered only after a deliberate delay
  PlayerNotFound        never
  SuspensionError       terminal, the player is already banned
  IntegrityViolation    once    routed through the ViolationEscalator
  StoreUnavailable      never   no silent accept or reject
"""

from __future__ import annotations

from typing import Any


class GuardianShieldError(RuntimeError):
    """Base for all authority errors."""

    status_code: int = 500

    def __init__(self, message: str = "", **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_response(self) -> dict[str, Any]:
        return {"error": self.message, **self.extra}


class InputValidationError(GuardianShieldError):
    """
    Malformed or out-of-range request data.

    HTTP: 400 ``{error}``.
    """

    status_code = 400


class AuthorizationError(GuardianShieldError):
    """
    Missing or invalid API credentials.

    HTTP: 401 ``{error}``, sent after ``server.auth_failure_delay_s``.
    """

    status_code = 401


class PlayerNotFound(GuardianShieldError):
    """
    No record for the requested player id.

    HTTP: 404 ``{error: "Player not found"}``.
    """

    status_code = 404

    def __init__(self, player_id: str) -> None:
        super().__init__("Player not found")
        self.player_id = player_id


class SuspensionError(GuardianShieldError):
    """
    The player is suspended. Raised before any value verification.

    HTTP: 403 ``{error: "Account suspended", action: "ban"}``.
    """

    status_code = 403

    def __init__(self, player_id: str) -> None:
        super().__init__("Account suspended", action="ban")
        self.player_id = player_id


class IntegrityViolation(GuardianShieldError):
    """
    Reported values failed verification.

    Recovery: recorded exactly once through the ViolationEscalator. The
    service answers 200 ``invalid`` with server values, or 403 ``ban``
    once the threshold is crossed.
    """

    status_code = 200

    def __init__(self, player_id: str, reason: str) -> None:
        super().__init__(reason)
        self.player_id = player_id
        self.reason = reason


class StoreUnavailable(GuardianShieldError):
    """
    The authoritative store cannot be reached.

    HTTP: 503 ``{error: "Database service unavailable", retryAfter: "30"}``.
    """

    status_code = 503

    def __init__(self, detail: str = "") -> None:
        super().__init__("Database service unavailable", retryAfter="30")
        self.detail = detail
