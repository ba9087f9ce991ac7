"""
Unified Configuration Management for ClaimSync

Consolidates all sync configuration into a single source of truth using Pydantic BaseSettings.
All settings can be overridden via environment variables with CLAIMSYNC_ prefix.

Usage:
    from claimsync.config import get_settings

    settings = get_settings()
    print(settings.remote_url)
    print(settings.sync_interval_seconds)
"""

import uuid
from pathlib import Path
from typing import Optional, Literal
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClaimSyncSettings(BaseSettings):
    """
    Unified configuration for ClaimSync

    All settings can be overridden via environment variables with CLAIMSYNC_ prefix.
    Example: CLAIMSYNC_REMOTE_URL=https://project.supabase.co
    """

    model_config = SettingsConfigDict(
        env_prefix="CLAIMSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================
    # SYSTEM SETTINGS
    # ============================================

    environment: Literal["development", "production", "testing"] = Field(
        default="development",
        description="Application environment"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    structured_logging: bool = Field(
        default=False,
        description="Emit JSON log lines (with sync pass id) instead of plain text"
    )

    api_host: str = Field(
        default="localhost",
        description="Status API host"
    )

    api_port: int = Field(
        default=8000,
        description="Status API port"
    )

    # ============================================
    # DEVICE / OWNER IDENTITY
    # ============================================

    device_id: str = Field(
        default="",
        description="Identifier stamped on every queue entry (generated when empty)"
    )

    owner_id: Optional[str] = Field(
        default=None,
        description="Remote user id; scopes the realtime stream and is sent as user_id"
    )

    # ============================================
    # REMOTE BACKEND SETTINGS
    # ============================================

    remote_url: str = Field(
        default="http://localhost:54321",
        description="Base URL of the remote backend (Supabase project URL)"
    )

    remote_api_key: str = Field(
        default="",
        description="API key sent as apikey / bearer token"
    )

    realtime_url: Optional[str] = Field(
        default=None,
        description="Realtime websocket URL (derived from remote_url when unset)"
    )

    request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single remote call"
    )

    photo_bucket: str = Field(
        default="claim-photos",
        description="Object storage bucket for photo bytes"
    )

    documents_bucket: str = Field(
        default="documents",
        description="Object storage bucket for document bytes"
    )

    # ============================================
    # SYNC POLICY
    # ============================================

    sync_interval_seconds: int = Field(
        default=300,
        description="Periodic sync trigger interval"
    )

    network_probe_interval_seconds: int = Field(
        default=30,
        description="Interval between connectivity probes"
    )

    max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts before a queue entry becomes terminally failed"
    )

    queue_expiry_days: int = Field(
        default=7,
        description="Age after which an open queue entry is reported as expired"
    )

    completed_retention_days: int = Field(
        default=30,
        description="Completed queue entries older than this are pruned"
    )

    realtime_reconnect_seconds: float = Field(
        default=5.0,
        description="Delay before re-subscribing after the change stream drops"
    )

    offline_mode: bool = Field(
        default=False,
        description="Force the network monitor offline (queue only, never sync)"
    )

    # ============================================
    # PATH CONFIGURATION
    # ============================================

    data_dir: Path = Field(
        default_factory=lambda: Path.cwd() / ".claimsync_data",
        description="Base data directory for the local database and captured files"
    )

    database_name: str = Field(
        default="claimsync.db",
        description="SQLite file name inside data_dir"
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def ensure_data_dir_exists(cls, v: Path) -> Path:
        """Ensure data directory exists"""
        v.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("remote_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def fill_derived_values(self) -> "ClaimSyncSettings":
        """Generate a device id and derive the realtime URL when not configured"""
        if not self.device_id:
            object.__setattr__(self, "device_id", uuid.uuid4().hex[:16])

        if not self.realtime_url:
            ws_base = self.remote_url.replace("https://", "wss://").replace("http://", "ws://")
            object.__setattr__(self, "realtime_url", f"{ws_base}/realtime/v1/websocket")

        return self

    # ============================================
    # DERIVED PATHS
    # ============================================

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_name

    @property
    def photos_dir(self) -> Path:
        return self.data_dir / "photos"

    @property
    def documents_dir(self) -> Path:
        return self.data_dir / "documents"

    @property
    def health_url(self) -> str:
        """URL probed by the network monitor"""
        return f"{self.remote_url}/rest/v1/"

    def to_dict(self) -> dict:
        """Convert settings to dictionary (API key redacted)"""
        data = self.model_dump()
        if data.get("remote_api_key"):
            data["remote_api_key"] = "***"
        return data


# ============================================
# CACHED ACCESSOR
# ============================================

@lru_cache()
def get_settings() -> ClaimSyncSettings:
    """
    Get cached settings instance

    Returns:
        ClaimSyncSettings: Application settings
    """
    return ClaimSyncSettings()
