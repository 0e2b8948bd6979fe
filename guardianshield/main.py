"""
GuardianShield — Application Entry Point

FastAPI application for the server-side authority.

`uvicorn guardianshield.main:app`
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

# Load .env file before any configuration is loaded
load_dotenv()

from guardianshield.api.routers.management import router as management_router
from guardianshield.api.routers.players import router as players_router
from guardianshield.api.routers.sync import router as sync_router
from guardianshield.api.routers.tampering import router as tampering_router
from guardianshield.clients.redis import RedisClient
from guardianshield.config import GuardianShieldConfig, load_config
from guardianshield.primitives.common import utc_now
from guardianshield.systems.authority.errors import (
    AuthorizationError,
    GuardianShieldError,
    StoreUnavailable,
)
from guardianshield.systems.authority.service import AuthorityService
from guardianshield.systems.authority.store import (
    InMemoryPlayerStore,
    PlayerRecordStore,
    RedisPlayerStore,
)
from guardianshield.telemetry.logging import setup_logging

if TYPE_CHECKING:
    from starlette.requests import Request

logger = structlog.get_logger()

CONFIG_PATH = os.environ.get("GUARDIANSHIELD_CONFIG_PATH", "config/default.yaml")


def resolve_cors_origins(config: GuardianShieldConfig) -> list[str]:
    """Origins from CORS_ALLOWED_ORIGINS (comma-separated) when set, else from config."""
    raw = os.environ.get("CORS_ALLOWED_ORIGINS", "")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or list(config.server.cors_origins)


def build_store(config: GuardianShieldConfig) -> PlayerRecordStore:
    if config.store.backend == "redis":
        return RedisPlayerStore(RedisClient(config.redis), lock_timeout_s=config.store.lock_timeout_s)
    return InMemoryPlayerStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown sequence."""
    # ── 1. Load configuration ─────────────────────────────────
    config = load_config(CONFIG_PATH)
    app.state.config = config

    # ── 2. Set up logging ─────────────────────────────────────
    setup_logging(config.logging, environment=config.environment)
    logger.info(
        "guardianshield_starting",
        environment=config.environment,
        config_path=CONFIG_PATH,
        store=config.store.backend,
        auth_enabled=bool(config.server.api_keys),
    )

    # ── 3. Connect the authoritative store ────────────────────
    authority = AuthorityService(build_store(config), config)
    await authority.initialize()
    app.state.authority = authority

    logger.info("guardianshield_ready", port=config.server.port)
    yield

    # ── Shutdown ──────────────────────────────────────────────
    await authority.shutdown()
    logger.info("guardianshield_stopped")


# ─── FastAPI Application ─────────────────────────────────────────

app = FastAPI(
    title="GuardianShield",
    description="Server-side authority for protected game values",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=resolve_cors_origins(load_config(CONFIG_PATH)),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(tampering_router)
app.include_router(players_router)
app.include_router(sync_router)
app.include_router(management_router)


# ─── API Key Authentication Middleware ─────────────────────────────
# Protects all /api/* endpoints. /health is always public.
# When no API keys are configured (dev mode), all requests pass through.


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Validates API key from X-API-Key header or Authorization Bearer token.

    Failed attempts are answered only after ``server.auth_failure_delay_s``.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        # Only protect /api/* paths
        if not path.startswith("/api/"):
            return await call_next(request)

        # Check if auth is configured
        config = getattr(request.app.state, "config", None)
        if config is None or not config.server.api_keys:
            # Dev mode: no keys configured, allow all
            return await call_next(request)

        # Extract API key from header or Authorization bearer
        api_key = request.headers.get(config.server.api_key_header, "")
        if not api_key:
            auth_header = request.headers.get("authorization", "")
            if auth_header.startswith("Bearer "):
                api_key = auth_header[7:]

        if not api_key or api_key not in config.server.api_keys:
            logger.warning(
                "unauthorized_request",
                path=_mask_path(path),
                client=request.client.host if request.client else None,
            )
            await asyncio.sleep(config.server.auth_failure_delay_s)
            denied = AuthorizationError("Unauthorized access")
            return JSONResponse(
                status_code=denied.status_code,
                content=denied.to_response(),
            )

        return await call_next(request)


# ─── Request Logging Middleware ────────────────────────────────────

_ID_SEGMENT = re.compile(r"/player/[^/]+")


def _mask_path(path: str) -> str:
    """Hide player ids in logged paths."""
    return _ID_SEGMENT.sub("/player/***", path)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, masked path, status and duration; warns on slow requests."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        config = getattr(request.app.state, "config", None)
        slow_ms = config.server.slow_request_ms if config is not None else 1000
        log = logger.warning if elapsed_ms > slow_ms else logger.debug
        log(
            "slow_request" if elapsed_ms > slow_ms else "request_handled",
            method=request.method,
            path=_mask_path(request.url.path),
            status=response.status_code,
            duration_ms=round(elapsed_ms, 1),
        )
        return response


app.add_middleware(APIKeyMiddleware)
app.add_middleware(RequestLoggingMiddleware)


# ─── Error Handlers ───────────────────────────────────────────────


@app.exception_handler(GuardianShieldError)
async def guardianshield_error_handler(request: Request, exc: GuardianShieldError) -> JSONResponse:
    headers = None
    if isinstance(exc, StoreUnavailable):
        logger.error("store_unavailable", path=_mask_path(request.url.path), detail=exc.detail)
        headers = {"Retry-After": "30"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_error",
        path=_mask_path(request.url.path),
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ─── Health ───────────────────────────────────────────────────────


@app.get("/health")
async def health() -> dict[str, Any]:
    """Public health check."""
    authority: AuthorityService | None = getattr(app.state, "authority", None)
    if authority is None:
        return {
            "status": "degraded",
            "timestamp": utc_now().isoformat(),
            "services": {"store": "disconnected"},
        }
    return await authority.health()
