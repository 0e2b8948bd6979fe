"""
GuardianShield — Tampering Report Router

Endpoints:
  POST /api/log-tampering — record a client tampering report
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from guardianshield.api.body import read_json
from guardianshield.primitives.common import EnforcementAction
from guardianshield.systems.sync.types import TamperingAck

router = APIRouter()


@router.post("/api/log-tampering")
async def log_tampering(request: Request) -> JSONResponse:
    """Sanitise and record a report. Critical reports (or a crossed threshold) answer 403 ban."""
    body = await read_json(request)
    config = request.app.state.config
    event, outcome = await request.app.state.authority.report_tampering(body)

    if outcome.is_ban:
        ack = TamperingAck(
            message=config.escalation.terminal_message,
            action=EnforcementAction.BAN,
            duration=config.escalation.ban_duration_ms,
            request_id=event.id,
        )
        return JSONResponse(status_code=403, content=ack.to_wire())

    ack = TamperingAck(
        message=config.escalation.warning_message,
        action=EnforcementAction.WARN,
        request_id=event.id,
    )
    return JSONResponse(status_code=200, content=ack.to_wire())
