"""
HTTP-level tests for the authority API.

The app is driven through httpx's ASGITransport with state injected
directly, so no lifespan, config file or Redis is needed.
"""

from __future__ import annotations

from datetime import timedelta

import httpx
import pytest

from guardianshield.config import GuardianShieldConfig
from guardianshield.main import app, resolve_cors_origins
from guardianshield.primitives.common import utc_now
from guardianshield.systems.authority.errors import StoreUnavailable
from guardianshield.systems.authority.service import AuthorityService
from guardianshield.systems.authority.store import InMemoryPlayerStore

API_KEY = "test-key"


class _DownStore(InMemoryPlayerStore):
    async def get_player(self, player_id):
        raise StoreUnavailable("connection refused")

    async def health(self):
        return {"status": "disconnected", "backend": "memory"}


def _install(store=None, api_keys=(API_KEY,)) -> AuthorityService:
    config = GuardianShieldConfig(
        server={"api_keys": list(api_keys), "auth_failure_delay_s": 0},
    )
    authority = AuthorityService(store or InMemoryPlayerStore(), config)
    app.state.config = config
    app.state.authority = authority
    return authority


def _client(api_key: str | None = API_KEY) -> httpx.AsyncClient:
    headers = {"X-API-Key": api_key} if api_key else {}
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
        headers=headers,
    )


def _sync_body(values: dict, minutes: float = 1.0) -> dict:
    return {
        "playerId": "p1",
        "sessionId": "s1",
        "gameValues": values,
        "clientTimestamp": (utc_now() + timedelta(minutes=minutes)).isoformat(),
    }


async def _register(client: httpx.AsyncClient) -> httpx.Response:
    return await client.post(
        "/api/register-player",
        json={"playerId": "p1", "deviceId": "d1", "initialData": {"coins": 100, "xp": 0}},
    )


class TestAuth:
    @pytest.mark.asyncio
    async def test_wrong_key_rejected(self):
        _install()
        async with _client("nope") as client:
            response = await client.post("/api/log-tampering", json={"type": "x"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized access"}

    @pytest.mark.asyncio
    async def test_bearer_token_accepted(self):
        _install()
        async with _client(None) as client:
            response = await client.post(
                "/api/log-tampering",
                json={"type": "x"},
                headers={"Authorization": f"Bearer {API_KEY}"},
            )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_dev_mode_without_keys(self):
        _install(api_keys=())
        async with _client(None) as client:
            response = await client.post("/api/log-tampering", json={"type": "x"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_health_is_public(self):
        _install()
        async with _client(None) as client:
            response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestRegisterPlayer:
    @pytest.mark.asyncio
    async def test_create_then_update(self):
        _install()
        async with _client() as client:
            first = await _register(client)
            second = await _register(client)
        assert first.status_code == 201
        assert first.json() == {"message": "Player registered", "playerId": "p1"}
        assert second.status_code == 200
        assert second.json()["message"] == "Player updated"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,error",
        [
            ({"deviceId": "d1"}, "Invalid player ID"),
            ({"playerId": 42, "deviceId": "d1"}, "Invalid player ID"),
            ({"playerId": "p" * 101, "deviceId": "d1"}, "Invalid player ID"),
            ({"playerId": "p1"}, "Invalid device ID"),
        ],
    )
    async def test_invalid_bodies(self, body, error):
        _install()
        async with _client() as client:
            response = await client.post("/api/register-player", json=body)
        assert response.status_code == 400
        assert response.json() == {"error": error}

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        _install()
        async with _client() as client:
            response = await client.post(
                "/api/register-player",
                content=b"{not json",
                headers={"Content-Type": "application/json"},
            )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}


class TestSync:
    @pytest.mark.asyncio
    async def test_unknown_player(self):
        _install()
        async with _client() as client:
            response = await client.post("/api/sync-game-values", json=_sync_body({"coins": 1}))
        assert response.status_code == 404
        assert response.json() == {"error": "Player not found"}

    @pytest.mark.asyncio
    async def test_valid_sync(self):
        _install()
        async with _client() as client:
            await _register(client)
            response = await client.post("/api/sync-game-values", json=_sync_body({"coins": 150}))
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "valid"
        assert body["verifiedValues"] == {"coins": 150, "xp": 0}

    @pytest.mark.asyncio
    async def test_missing_game_values(self):
        _install()
        async with _client() as client:
            response = await client.post("/api/sync-game-values", json={"playerId": "p1"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid game values"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
    async def test_non_finite_values_never_stored(self, token):
        authority = _install()
        timestamp = (utc_now() + timedelta(minutes=1)).isoformat()
        raw = (
            '{"playerId": "p1", "sessionId": "s1", "gameValues": {"coins": %s}, '
            '"clientTimestamp": "%s"}' % (token, timestamp)
        )
        async with _client() as client:
            await _register(client)
            response = await client.post(
                "/api/sync-game-values",
                content=raw.encode(),
                headers={"Content-Type": "application/json"},
            )
            follow_up = await client.post(
                "/api/sync-game-values", json=_sync_body({"coins": 10**9})
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid game values"}
        assert (await authority.store.get_player("p1")).game_data == {"coins": 100, "xp": 0}
        assert follow_up.json()["status"] == "invalid"

    @pytest.mark.asyncio
    async def test_non_finite_initial_data_rejected(self):
        _install()
        async with _client() as client:
            response = await client.post(
                "/api/register-player",
                content=b'{"playerId": "p1", "deviceId": "d1", "initialData": {"coins": NaN}}',
                headers={"Content-Type": "application/json"},
            )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid initial data"}

    @pytest.mark.asyncio
    async def test_escalation_to_ban_and_suspension(self):
        _install()
        async with _client() as client:
            await _register(client)
            responses = [
                await client.post("/api/sync-game-values", json=_sync_body({"coins": 5100}))
                for _ in range(4)
            ]

        first = responses[0].json()
        assert responses[0].status_code == 200
        assert first["status"] == "invalid"
        assert first["message"] == "Security violation detected."
        assert first["reason"].startswith("Coins increased too fast (5000 in")
        assert first["serverValues"] == {"coins": 100, "xp": 0}

        assert responses[1].status_code == 200
        assert responses[2].status_code == 403
        assert responses[2].json()["action"] == "ban"
        assert responses[3].status_code == 403
        assert responses[3].json() == {"error": "Account suspended", "action": "ban"}


class TestTampering:
    @pytest.mark.asyncio
    async def test_warning_report(self):
        _install()
        async with _client() as client:
            response = await client.post(
                "/api/log-tampering", json={"type": "memory_tampering", "severity": "medium"}
            )
        assert response.status_code == 200
        body = response.json()
        assert body["action"] == "warn"
        assert body["requestId"]

    @pytest.mark.asyncio
    async def test_critical_report_bans_on_first_call(self):
        _install()
        async with _client() as client:
            await _register(client)
            response = await client.post(
                "/api/log-tampering",
                json={"type": "tool_detected", "severity": "critical", "playerId": "p1"},
            )
            sync = await client.post("/api/sync-game-values", json=_sync_body({"coins": 101}))
        assert response.status_code == 403
        assert response.json()["action"] == "ban"
        assert response.json()["duration"] == 24 * 60 * 60 * 1000
        assert sync.status_code == 403

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        _install()
        async with _client() as client:
            response = await client.post("/api/log-tampering", json=[1, 2])
        assert response.status_code == 400


class TestManagement:
    @pytest.mark.asyncio
    async def test_player_view_and_reset(self):
        _install()
        async with _client() as client:
            await _register(client)
            await client.post("/api/sync-game-values", json=_sync_body({"coins": 5100}))
            view = await client.get("/api/management/player/p1")
            reset = await client.post("/api/management/player/p1/reset-violations")

        assert view.status_code == 200
        assert view.json()["player"]["tamperingAttempts"] == 1
        assert "deviceId" not in view.json()["player"]
        assert reset.json()["player"]["tamperingAttempts"] == 0

    @pytest.mark.asyncio
    async def test_unknown_player(self):
        _install()
        async with _client() as client:
            response = await client.get("/api/management/player/ghost")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_logs(self):
        _install()
        async with _client() as client:
            await client.post("/api/log-tampering", json={"type": "debugger_detected"})
            response = await client.get("/api/management/logs", params={"days": 7})
        assert response.status_code == 200
        assert [e["type"] for e in response.json()["logs"]] == ["debugger_detected"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", ["0", "31", "week"])
    async def test_logs_days_validated(self, days):
        _install()
        async with _client() as client:
            response = await client.get("/api/management/logs", params={"days": days})
        assert response.status_code == 400


class TestStoreOutage:
    @pytest.mark.asyncio
    async def test_store_failure_answers_503(self):
        _install(store=_DownStore())
        async with _client() as client:
            response = await client.post("/api/sync-game-values", json=_sync_body({"coins": 1}))
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json() == {"error": "Database service unavailable", "retryAfter": "30"}

    @pytest.mark.asyncio
    async def test_health_degraded(self):
        _install(store=_DownStore())
        async with _client() as client:
            response = await client.get("/health")
        assert response.json()["status"] == "degraded"
        assert response.json()["services"] == {"store": "disconnected"}


class TestCorsOrigins:
    def test_origins_from_config(self, monkeypatch):
        monkeypatch.delenv("CORS_ALLOWED_ORIGINS", raising=False)
        config = GuardianShieldConfig(server={"cors_origins": ["https://game.example"]})
        assert resolve_cors_origins(config) == ["https://game.example"]

    def test_environment_overrides_config(self, monkeypatch):
        monkeypatch.setenv("CORS_ALLOWED_ORIGINS", " https://a.example, ,https://b.example")
        config = GuardianShieldConfig(server={"cors_origins": ["https://game.example"]})
        assert resolve_cors_origins(config) == ["https://a.example", "https://b.example"]
