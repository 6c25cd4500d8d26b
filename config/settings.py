"""
Application settings loaded from environment variables.

All configurable values are centralized here; nothing is hard-coded elsewhere.
Uses pydantic-settings for type-safe .env loading.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration, loaded from .env / environment variables."""

    # ── General ──────────────────────────────────────────────────────────
    APP_NAME: str = "Beacon Sentinel"
    ENVIRONMENT: Environment = Environment.DEVELOPMENT
    LOG_LEVEL: str = "INFO"
    ENABLE_TRACE_DASHBOARD: bool = True  # console update trace
    DEBUG: bool = False
    RUN_MODE: str = "api"  # "api" | "monitor" | "hybrid"

    # ── API Server ───────────────────────────────────────────────────────
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    # ── Log Sources ──────────────────────────────────────────────────────
    LOG_PATH: str = ""  # file monitored on startup (monitor/hybrid modes)
    LOG_DIRECTORY: str = "/Library/Logs/Microsoft/mdatp"
    ALLOWED_EXTENSIONS: list[str] = [".log", ".json", ".txt", ""]

    # ── Monitor Loop ─────────────────────────────────────────────────────
    POLL_INTERVAL_SECONDS: float = Field(
        default=3.0,
        gt=0.0,
        description="Cadence of the auto-refresh poll.",
    )
    AUTO_REFRESH: bool = True

    # ── Line Parsing ─────────────────────────────────────────────────────
    MERGE_CONTINUATION_LINES: bool = True
    TIMESTAMP_FORMATS: list[str] = [
        "%Y-%m-%d %H:%M:%S.%f UTC",
        "%Y-%m-%d %H:%M:%S UTC",
        "%Y-%m-%d %H:%M:%S.%f%z",
        "%Y-%m-%d %H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f%z",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S",
        "%b %d %H:%M:%S",
        "%H:%M:%S.%f",
        "%H:%M:%S",
    ]

    # ── Correlation / Pattern Detection ──────────────────────────────────
    CORRELATION_WINDOW_SECONDS: int = Field(
        default=60,
        ge=1,
        description="Width of the tumbling window used to group entries.",
    )
    THREAT_PATTERNS: list[str] = ["threat", "malware", "virus", "attack"]

    # ── Azure Log Analytics forwarding ───────────────────────────────────
    AZURE_LOG_ANALYTICS_ENABLED: bool = False
    AZURE_WORKSPACE_ID: str = ""
    AZURE_SHARED_KEY: str = ""
    AZURE_LOG_TYPE: str = "BeaconSentinelLogs"
    FORWARD_TIMEOUT_SECONDS: float = 10.0

    # ── Compliance Scripts ───────────────────────────────────────────────
    COMPLIANCE_SCRIPTS_DIR: str = "scripts"
    COMPLIANCE_REPORT_DIR: str = "/tmp"
    COMPLIANCE_TIMEOUT_SECONDS: float = 900.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
