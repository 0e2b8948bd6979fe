"""
GuardianShield — Player Registration Router

Endpoints:
  POST /api/register-player — create a player (201) or refresh its device (200)
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from guardianshield.api.body import parse_model, read_json
from guardianshield.systems.sync.types import RegisterPlayerRequest, RegisterPlayerResponse

router = APIRouter()


@router.post("/api/register-player")
async def register_player(request: Request) -> JSONResponse:
    payload = parse_model(RegisterPlayerRequest, await read_json(request))
    created = await request.app.state.authority.register_player(payload)

    response = RegisterPlayerResponse(
        message="Player registered" if created else "Player updated",
        player_id=payload.player_id,
    )
    return JSONResponse(status_code=201 if created else 200, content=response.to_wire())
