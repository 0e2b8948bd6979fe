"""
GuardianShield — Value Sync Router

Endpoints:
  POST /api/sync-game-values — verify reported values against the record
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from guardianshield.api.body import parse_model, read_json
from guardianshield.systems.sync.types import SyncRequest, SyncResult

router = APIRouter()


@router.post("/api/sync-game-values")
async def sync_game_values(request: Request) -> JSONResponse:
    payload = parse_model(SyncRequest, await read_json(request))
    result: SyncResult = await request.app.state.authority.sync_values(payload)

    # Crossing the threshold answers 403; a plain invalid sync is still 200
    status_code = 403 if result.action is not None else 200
    return JSONResponse(status_code=status_code, content=result.to_wire())
