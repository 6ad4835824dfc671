"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseModel):
    """Knobs for the image sync engine and the local image store."""

    # Coordinator
    sync_interval_minutes: int = 15
    max_upload_retries: int = 3
    retry_delay_seconds: float = 30
    max_concurrent_uploads: int = 3
    max_upload_size_bytes: int = 32 * 1024 * 1024  # 32 MiB
    allowed_extensions: list[str] = [
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".bmp",
        ".webp",
    ]

    # Local image store
    max_image_size_bytes: int = 10 * 1024 * 1024  # 10 MiB
    max_images_per_type: int = 10
    max_storage_per_installation_bytes: int = 100 * 1024 * 1024  # 100 MiB
    auto_cleanup_enabled: bool = True

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Lowercase extensions and make sure they start with a dot."""
        return [e.lower() if e.startswith(".") else f".{e.lower()}" for e in v]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # App Info
    app_name: str = "PV Site Image Sync"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8400
    workers: int = 1

    # Storage
    data_save_folder: str = "./data"
    local_db_file: str = "pvsync_local.db"
    images_dir_name: str = "images"

    catalog_database_url: str = Field(
        default="sqlite+aiosqlite:///./data/pvsync_catalog.db",
        alias="CATALOG_DATABASE_URL",
    )

    @property
    def local_database_url(self) -> str:
        """SQLite URL of the on-device image index."""
        db_path = Path(self.data_save_folder) / self.local_db_file
        return f"sqlite+aiosqlite:///{db_path}"

    @property
    def images_dir(self) -> Path:
        """Root directory of locally stored image files."""
        return Path(self.data_save_folder) / self.images_dir_name

    # Remote object store (OneDrive / Graph style drive)
    remote_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        alias="REMOTE_BASE_URL",
    )
    remote_base_folder: str = Field(default="/FVE", alias="REMOTE_BASE_FOLDER")
    remote_bearer_token: str | None = Field(default=None, alias="REMOTE_BEARER_TOKEN")
    remote_timeout_seconds: float = 30.0

    # Remote drive YAML file (optional overrides for the drive layout)
    remote_cfg_path: str = "./config/remote.cfg"

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Background sync (timer driven reconciliation)
    # Set to False to run the API without the periodic coordinator
    enable_sync_service: bool = Field(
        default=False,
        alias="ENABLE_SYNC_SERVICE",
    )

    sync: SyncSettings = Field(default_factory=SyncSettings)

    @field_validator("remote_base_folder", mode="before")
    @classmethod
    def normalize_base_folder(cls, v: str) -> str:
        """Drive paths are absolute and carry no trailing slash."""
        v = "/" + v.strip("/")
        return v


class RemoteDriveConfig:
    """Remote drive configuration loaded from YAML file (remote.cfg)."""

    def __init__(self, config_path: str | None = None):
        self._config: dict[str, Any] = {}
        if config_path:
            self.load(config_path)

    def load(self, config_path: str) -> None:
        """Load configuration from YAML file."""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                self._config = yaml.safe_load(f) or {}

    @property
    def base_url(self) -> str | None:
        """Drive API base URL override."""
        return self._config.get("graph_base_url")

    @property
    def base_folder_path(self) -> str | None:
        """Folder under which installation folders are created."""
        return self._config.get("base_folder_path")

    @property
    def bearer_token(self) -> str | None:
        """Access token for the drive API."""
        return self._config.get("bearer_token")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@lru_cache
def get_remote_drive_config() -> RemoteDriveConfig:
    """Get cached remote drive config instance."""
    settings = get_settings()
    return RemoteDriveConfig(settings.remote_cfg_path)
