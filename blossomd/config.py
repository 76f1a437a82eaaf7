"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings from env."""

    model_config = SettingsConfigDict(env_prefix="BLOSSOMD_", extra="ignore")

    # Storage: blob_dir / cache_dir / config_dir default to subfolders of data_dir
    data_dir: Path = Path("./data")
    blob_dir: Optional[Path] = None
    cache_dir: Optional[Path] = None
    config_dir: Optional[Path] = None

    # Base URL used in blob descriptors; empty = derive from the request
    public_url: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # Watching and reconciliation
    watch_enabled: bool = True
    watch_force_polling: bool = False
    watch_debounce_ms: int = 200
    sweep_interval_seconds: float = 300.0
    wait_for_initial_scan: bool = True

    # Admin JSON API (empty = disabled)
    admin_token: str = ""

    # Rate limits (slowapi syntax)
    upload_rate_limit: str = "600/minute"
    delete_rate_limit: str = "600/minute"
    list_rate_limit: str = "120/minute"

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""

    @property
    def blob_path(self) -> Path:
        """Root of the blob tree."""
        return self.blob_dir or self.data_dir / "blobs"

    @property
    def cache_file(self) -> Path:
        """Hash cache snapshot file."""
        return (self.cache_dir or self.data_dir / "cache") / "blobs.json"

    @property
    def config_file(self) -> Path:
        """Whitelist / upload limits config file."""
        return (self.config_dir or self.data_dir / "config") / "app-config.json"


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
