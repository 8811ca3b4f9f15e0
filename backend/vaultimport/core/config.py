"""Application configuration using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VAULTIMPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Vault Import"
    version: str = "0.3.0"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8040, description="Server port")

    # Paths
    config_path: Path = Field(
        default=Path("/config"),
        description="Path for configuration files and database",
    )
    storage_path: Path = Field(
        default=Path("/vault"),
        description="Root directory for stored asset content",
    )

    # Database
    database_url: str | None = Field(
        default=None,
        description="Database connection URL (defaults to SQLite under config_path)",
    )

    # CORS
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )

    # Workers
    workers_enabled: bool = Field(
        default=True,
        description="Start import and dedup workers with the API process",
    )
    import_worker_count: int = Field(default=2, ge=1, le=16)
    dedup_worker_count: int = Field(default=1, ge=1, le=4)
    worker_poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between polls for claimable jobs",
    )
    lease_seconds: int = Field(
        default=120,
        ge=5,
        description="How long a worker owns a job without renewing its lease",
    )
    maintenance_interval: int = Field(
        default=60,
        ge=5,
        description="Seconds between expired-lease recovery passes",
    )

    # Provider access
    provider_max_retries: int = Field(default=5, ge=0, le=10)
    provider_backoff_base: float = Field(
        default=2.0,
        ge=0,
        description="Base delay in seconds for provider retry backoff",
    )
    provider_backoff_max: float = Field(
        default=120.0,
        ge=0,
        description="Upper bound in seconds for a single backoff delay",
    )
    provider_timeout: float = Field(default=30.0, gt=0)
    google_client_id: str | None = None
    dropbox_app_key: str | None = None
    oauth_redirect_uri: str = Field(
        default="http://localhost:8040/auth/callback",
        description="Redirect URI registered with OAuth providers",
    )

    services_pending_review: list[str] = Field(
        default=["facebook"],
        description="Catalog services whose provider app review is still outstanding",
    )

    # Credential storage
    encryption_key: str | None = Field(
        default=None,
        description="Fernet key for stored provider credentials (generated per process if unset)",
    )

    # Import engine
    max_asset_failures: int = Field(
        default=25,
        ge=0,
        description="Storage failures tolerated per job before it fails",
    )
    seconds_per_asset: float = Field(
        default=0.5,
        ge=0,
        description="Per-asset transfer estimate used for duration estimates",
    )

    # Deduplication
    similarity_threshold: float = Field(
        default=0.90,
        gt=0,
        le=1,
        description="Similarity score a pair must exceed to be grouped as similar",
    )
    phash_bands: int = Field(
        default=8,
        ge=1,
        le=16,
        description="Number of bands used to bucket perceptual hashes",
    )

    # Plans
    default_plan_tier: str = "free"
    plan_limits: dict[str, int] = Field(
        default={"free": 1000, "family": 20000, "unlimited": 1_000_000},
        description="Maximum live photos per plan tier",
    )
    status_poll_interval: float = Field(
        default=2.0,
        description="Poll cadence suggested to clients in job responses",
    )

    @property
    def db_path(self) -> Path:
        """Get the SQLite database file path."""
        return self.config_path / "vaultimport.db"

    @property
    def default_max_photos(self) -> int:
        """Limit applied to owners without an explicit plan row."""
        return self.plan_limits.get(self.default_plan_tier, 0)


# Global settings instance
settings = Settings()
