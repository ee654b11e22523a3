"""Centralized configuration management for the Nexus storage layer.

This module provides a single source of truth for storage configuration:
remote bucket credentials, local fallback paths, timeouts and logging.
Values are read from the environment (and an optional ``.env`` file) once
and cached for the lifetime of the process.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Annotated
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import NoDecode


class Settings(BaseSettings):
    """Centralized settings for the storage layer."""

    # === Google Cloud Storage ===
    google_cloud_project_id: str | None = Field(default=None, description="GCP project owning the bucket")
    google_cloud_storage_bucket: str | None = Field(default=None, description="Bucket for records and blobs")
    google_cloud_client_email: str | None = Field(default=None, description="Service account client email")
    google_cloud_private_key: str | None = Field(default=None, description="Service account private key (PEM)")
    google_application_credentials: str | None = Field(
        default=None, description="Path to a service account JSON key file"
    )

    # === Backend Selection ===
    storage_backend: Literal["auto", "local", "gcs"] = Field(
        default="auto", description="Storage backend: 'auto', 'local', or 'gcs'"
    )
    development_mode: bool = Field(default=False, description="Force local storage even with remote credentials")
    require_remote_storage: bool = Field(
        default=False, description="Report init failure when the remote bucket cannot be used"
    )

    # === Local Storage ===
    storage_root_dir: str = Field(default=".local-storage", description="Root directory for local storage")
    storage_public_url_prefix: str = Field(default="/uploads", description="URL prefix for locally served blobs")
    storage_upload_subdirs: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["avatars", "models", "temp"],
        description="Upload folders created at bootstrap",
    )

    # === Timeouts ===
    storage_remote_timeout: float = Field(default=10.0, gt=0, description="Seconds before a remote call is abandoned")

    # === Logging ===
    log_level: str = Field(default="INFO", description="Level for the nexus_storage, call and error loggers")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("storage_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value):
        if isinstance(value, str):
            return value.strip().lower() or "auto"
        return value

    @field_validator("google_cloud_private_key", mode="after")
    @classmethod
    def _unescape_private_key(cls, value: str | None) -> str | None:
        # Keys pasted into env files usually carry literal "\n" sequences
        if value:
            return value.replace("\\n", "\n")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value):
        level = str(value).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value!r}")
        return level

    @field_validator("storage_upload_subdirs", mode="before")
    @classmethod
    def _split_subdirs(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def is_test_environment(self) -> bool:
        """Check if running under pytest or CI."""
        return "PYTEST_CURRENT_TEST" in os.environ or "CI" in os.environ

    @property
    def force_local(self) -> bool:
        """True when configuration explicitly pins the local backend."""
        return self.storage_backend == "local" or self.development_mode

    @property
    def has_service_account(self) -> bool:
        return bool(_filled(self.google_cloud_client_email) and _filled(self.google_cloud_private_key))

    @property
    def has_credentials_file(self) -> bool:
        return bool(_filled(self.google_application_credentials))

    @property
    def missing_remote_fields(self) -> list[str]:
        """Names of the remote settings that are absent or blank."""
        missing = []
        if not _filled(self.google_cloud_project_id):
            missing.append("GOOGLE_CLOUD_PROJECT_ID")
        if not _filled(self.google_cloud_storage_bucket):
            missing.append("GOOGLE_CLOUD_STORAGE_BUCKET")
        if not (self.has_service_account or self.has_credentials_file):
            missing.append("GOOGLE_CLOUD_CLIENT_EMAIL/GOOGLE_CLOUD_PRIVATE_KEY or GOOGLE_APPLICATION_CREDENTIALS")
        return missing

    @property
    def remote_configured(self) -> bool:
        return not self.missing_remote_fields

    @property
    def storage_root_path(self) -> Path:
        """Get the local storage root as an absolute Path (not created here)."""
        return Path(self.storage_root_dir).expanduser().resolve()


def _filled(value: str | None) -> bool:
    return bool(value and value.strip())


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        load_dotenv()
        _settings = Settings()
    return _settings


def reset_settings():
    """Reset the global settings instance (primarily for testing)."""
    global _settings
    _settings = None
