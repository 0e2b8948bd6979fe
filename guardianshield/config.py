"""
GuardianShield — Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

Every tunable parameter of the shield and the authority lives here.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class ServerConfig(BaseModel):
    port: int = 8443
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    api_key_header: str = "X-API-Key"
    # When empty, auth is disabled (dev mode).
    # Set via GUARDIANSHIELD_API_KEY or config YAML.
    api_keys: list[str] = Field(default_factory=list)
    # Slows down brute-force key guessing
    auth_failure_delay_s: float = 0.5
    slow_request_ms: int = 1000

    @model_validator(mode="after")
    def _strip_api_keys(self) -> ServerConfig:
        # Secret managers can inject trailing \r\n into env vars
        object.__setattr__(self, "api_keys", [k.strip() for k in self.api_keys if k.strip()])
        return self


class StoreConfig(BaseModel):
    backend: str = "memory"  # "memory" | "redis"
    lock_timeout_s: float = 5.0

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("memory", "redis"):
            raise ValueError(f"Unknown store backend: {value}")
        return value


class RedisConfig(BaseModel):
    url: str = "redis://localhost:6379/0"
    prefix: str = "gs"
    password: str = ""

    @property
    def full_url(self) -> str:
        """Build URL with password injected."""
        clean_pw = self.password.strip() if self.password else ""
        if clean_pw and "://" in self.url:
            scheme, rest = self.url.split("://", 1)
            return f"{scheme}://:{clean_pw}@{rest}"
        return self.url


class GameRulesConfig(BaseModel):
    max_coins_per_minute: float = 1000
    max_xp_per_minute: float = 500
    default_health_regen_rate: float = 5  # health points per minute
    default_max_health: float = 100
    max_future_skew_s: float = 300.0
    enforce_payload_checksum: bool = False


class EscalationConfig(BaseModel):
    max_tampering_attempts: int = Field(3, ge=1)
    ban_duration_ms: int = 24 * 60 * 60 * 1000
    warning_message: str = "Security violation detected."
    terminal_message: str = "Your access has been suspended due to security violations."
    tampering_history_limit: int = 100


class ManagementConfig(BaseModel):
    player_tampering_limit: int = 100
    player_sync_limit: int = 20
    logs_max_days: int = 30
    logs_limit: int = 1000


class ShieldConfig(BaseModel):
    """Client-side guardian settings."""

    check_interval_ms: int = Field(1000, ge=10)
    max_tampering_attempts: int = Field(3, ge=1)
    server_endpoint: str | None = None
    api_key: str = ""
    connect_timeout_s: float = 5.0
    read_timeout_s: float = 5.0
    allow_emulator: bool = False
    max_clock_gap_ms: int = 5000

    @property
    def clock_gap_limit_ms(self) -> int:
        """Largest gap between two scans that is not time manipulation; at least two intervals."""
        return max(self.max_clock_gap_ms, 2 * self.check_interval_ms)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class GuardianShieldConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="GUARDIANSHIELD_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = "production"

    server: ServerConfig = Field(default_factory=ServerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    rules: GameRulesConfig = Field(default_factory=GameRulesConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    management: ManagementConfig = Field(default_factory=ManagementConfig)
    shield: ShieldConfig = Field(default_factory=ShieldConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> GuardianShieldConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    # Inject secrets from environment
    if api_key := os.environ.get("GUARDIANSHIELD_API_KEY"):
        raw.setdefault("server", {})["api_keys"] = [
            k.strip() for k in api_key.split(",") if k.strip()
        ]
    if redis_url := os.environ.get("GUARDIANSHIELD_REDIS__URL"):
        raw.setdefault("redis", {})["url"] = redis_url
    if redis_pw := os.environ.get("GUARDIANSHIELD_REDIS_PASSWORD"):
        raw.setdefault("redis", {})["password"] = redis_pw
    if backend := os.environ.get("GUARDIANSHIELD_STORE__BACKEND"):
        raw.setdefault("store", {})["backend"] = backend
    if environment := os.environ.get("GUARDIANSHIELD_ENVIRONMENT"):
        raw["environment"] = environment

    if overrides:
        raw = _deep_merge(raw, overrides)

    return GuardianShieldConfig(**raw)
