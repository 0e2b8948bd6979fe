"""
GuardianShield — Management Router

Operator views over the authoritative store.

Endpoints:
  GET  /api/management/logs?days=N                         — recent tampering log
  GET  /api/management/player/{player_id}                  — record, reports, syncs
  POST /api/management/player/{player_id}/reset-violations — clear the counter
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request

from guardianshield.systems.authority.errors import InputValidationError

logger = structlog.get_logger("guardianshield.api.management")

router = APIRouter(prefix="/api/management")


@router.get("/logs")
async def get_logs(request: Request, days: str = "1") -> dict[str, Any]:
    try:
        window = int(days)
    except ValueError as exc:
        raise InputValidationError("Days parameter must be an integer") from exc
    logs = await request.app.state.authority.recent_tampering(window)
    return {"logs": logs}


@router.get("/player/{player_id}")
async def get_player(request: Request, player_id: str) -> dict[str, Any]:
    """Sanitised record plus its newest reports and syncs."""
    return await request.app.state.authority.player_report(player_id)


@router.post("/player/{player_id}/reset-violations")
async def reset_violations(request: Request, player_id: str) -> dict[str, Any]:
    record = await request.app.state.authority.reset_violations(player_id)
    logger.info("management_reset_violations", player_id=player_id)
    return {"player": record.public_view()}
