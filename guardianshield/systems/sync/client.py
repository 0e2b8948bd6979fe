"""
GuardianShield — Sync Client

Client-side transport for the sync protocol. Every call is a single
attempt: network failures and timeouts are logged as soft failures and
surface as ``None``, never as exceptions into the guardian cycle.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from guardianshield.config import ShieldConfig
from guardianshield.primitives.checksum import checksum
from guardianshield.primitives.common import EnforcementAction, utc_now
from guardianshield.systems.sync.types import (
    GameValues,
    RegisterPlayerRequest,
    RegisterPlayerResponse,
    SyncRequest,
    SyncResult,
    SyncStatus,
    TamperingAck,
    TamperingReport,
)

logger = structlog.get_logger().bind(system="sync", component="client")


class SyncClient:
    """
    Thin async wrapper over httpx for the authority's endpoints.

    Usage:
        client = SyncClient(config)
        ack = await client.report_tampering(report)
        await client.close()
    """

    def __init__(
        self,
        config: ShieldConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not config.server_endpoint:
            raise ValueError("SyncClient requires shield.server_endpoint")
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["X-API-Key"] = config.api_key
        self._client = httpx.AsyncClient(
            base_url=config.server_endpoint.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(config.read_timeout_s, connect=config.connect_timeout_s),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response | None:
        try:
            return await self._client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("sync_request_timeout", path=path, error=str(exc))
        except httpx.HTTPError as exc:
            logger.warning("sync_request_failed", path=path, error=str(exc))
        return None

    # ─── Tampering ────────────────────────────────────────────────

    async def report_tampering(self, report: TamperingReport) -> TamperingAck | None:
        response = await self._post("/api/log-tampering", report.to_wire())
        if response is None:
            return None
        if response.status_code not in (200, 403):
            logger.warning("tampering_report_rejected", status=response.status_code)
            return None
        try:
            ack = TamperingAck.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.warning("tampering_ack_unreadable", error=str(exc))
            return None
        logger.info("tampering_reported", action=ack.action, request_id=ack.request_id)
        return ack

    # ─── Registration ─────────────────────────────────────────────

    async def register_player(
        self,
        player_id: str,
        device_id: str,
        initial_data: GameValues | None = None,
    ) -> RegisterPlayerResponse | None:
        request = RegisterPlayerRequest(
            player_id=player_id,
            device_id=device_id,
            initial_data=initial_data,
        )
        response = await self._post("/api/register-player", request.to_wire())
        if response is None:
            return None
        if response.status_code not in (200, 201):
            logger.warning(
                "player_registration_failed", player_id=player_id, status=response.status_code
            )
            return None
        try:
            registered = RegisterPlayerResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.warning("registration_response_unreadable", error=str(exc))
            return None
        logger.info("player_registered", player_id=player_id, status=response.status_code)
        return registered

    # ─── Value Sync ───────────────────────────────────────────────

    async def sync_values(
        self,
        player_id: str,
        session_id: str,
        values: GameValues,
    ) -> SyncResult | None:
        request = SyncRequest(
            player_id=player_id,
            session_id=session_id,
            game_values=values,
            client_timestamp=utc_now().isoformat(),
            checksum=checksum(values),
        )
        response = await self._post("/api/sync-game-values", request.to_wire())
        if response is None:
            return None
        if response.status_code not in (200, 403):
            logger.warning("sync_rejected", player_id=player_id, status=response.status_code)
            return None
        try:
            body = response.json()
        except ValueError as exc:
            logger.warning("sync_response_unreadable", error=str(exc))
            return None

        if response.status_code == 403 and "status" not in body:
            # Suspended accounts are rejected before verification
            return SyncResult(
                status=SyncStatus.INVALID,
                message=body.get("error") or body.get("message"),
                action=EnforcementAction.BAN,
            )
        try:
            return SyncResult.model_validate(body)
        except ValidationError as exc:
            logger.warning("sync_response_unreadable", error=str(exc))
            return None
