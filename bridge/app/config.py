"""Central configuration for the session bridge service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class PerformanceSettings(BaseModel):
    """Queue and concurrency tuning."""
    subscriber_queue_size: int = Field(64, description="Max buffered events per realtime subscriber")
    inbound_queue_size: int = Field(256, description="Max buffered lifecycle events from the gateway")
    projection_concurrency: int = Field(8, description="Parallel presence lookups during contact projection")


class QrSettings(BaseModel):
    """Rendering of the QR challenge image."""
    box_size: int = Field(10, description="Pixels per QR module")
    border: int = Field(4, description="Quiet-zone width in modules")


class Settings(BaseSettings):
    """Environment-driven settings for the bridge."""

    # HTTP server
    host: str = Field("0.0.0.0", description="Host interface for the FastAPI server")
    port: int = Field(3000, description="Port for the FastAPI server")
    frontend_url: str = Field("*", description="Allowed origin for REST and realtime clients")
    admin_token: Optional[str] = Field(None, description="Shared secret required on /api and /ws when set")

    # Messaging gateway
    gateway_api_url: str = Field("http://localhost:8080", description="Gateway REST base URL")
    gateway_ws_url: str = Field("ws://localhost:8080/ws", description="Gateway lifecycle event websocket URL")
    gateway_api_key: Optional[str] = Field(None, description="API key presented to the gateway")
    gateway_timeout_seconds: float = Field(30.0, description="Transport timeout for gateway HTTP calls")
    gateway_reconnect_seconds: float = Field(5.0, description="Delay before reconnecting the event stream")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")
    qr: QrSettings = Field(default_factory=QrSettings, description="QR rendering")

    @field_validator("admin_token", "gateway_api_key", mode="before")
    @classmethod
    def _blank_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.frontend_url.split(",") if origin.strip()] or ["*"]

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
