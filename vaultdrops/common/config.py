import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_TIMEOUT = 30


class ConfigError(Exception):
    """Exception raised for configuration errors."""

    pass


class LogfireConfig(BaseModel):
    token: str | None = None
    service_name: str = "vaultdrops"
    environment: str = "development"

    @property
    def is_enabled(self) -> bool:
        return bool(self.token)


class RemoteConfig(BaseModel):
    backend: Literal["jsonl", "supabase"] = "jsonl"
    url: str = ""
    anon_key: str = ""
    table: str = "submissions"
    timeout_seconds: int = DEFAULT_REMOTE_TIMEOUT

    @field_validator("timeout_seconds", mode="before")
    @classmethod
    def validate_timeout_seconds(cls, v) -> int:
        """Validate and return timeout_seconds, using default if invalid."""
        if v is None:
            return DEFAULT_REMOTE_TIMEOUT

        try:
            timeout = int(v)
            if timeout <= 0:
                logger.warning(
                    f"Invalid timeout_seconds value: {v}. Using default: {DEFAULT_REMOTE_TIMEOUT}s"
                )
                return DEFAULT_REMOTE_TIMEOUT
            return timeout
        except (ValueError, TypeError):
            logger.warning(
                f"Invalid timeout_seconds value: {v}. Using default: {DEFAULT_REMOTE_TIMEOUT}s"
            )
            return DEFAULT_REMOTE_TIMEOUT

    @field_validator("table")
    @classmethod
    def validate_table(cls, v) -> str:
        """Validate table name is not blank."""
        if not v.strip():
            raise ValueError("table must not be empty")
        return v


class Settings(BaseSettings):
    data_dir: Path = Path("data")
    local_storage_path: Path = Path("data/local_storage.json")
    catalog_path: Path = Path("catalog.yaml")
    confidence_z: float = 1.96
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    logfire: LogfireConfig = Field(default_factory=LogfireConfig)

    model_config = SettingsConfigDict(
        env_prefix="VAULTDROPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("confidence_z")
    @classmethod
    def validate_confidence_z(cls, v) -> float:
        """Validate confidence_z is positive."""
        if v <= 0:
            raise ValueError("confidence_z must be greater than 0")
        return v

    def require_supabase(self) -> tuple[str, str]:
        """Return (url, anon_key) for the Supabase backend.

        Raises:
            ConfigError: If either value is missing
        """
        if not self.remote.url or not self.remote.anon_key:
            raise ConfigError(
                "Missing Supabase settings. Set VAULTDROPS_REMOTE__URL and "
                "VAULTDROPS_REMOTE__ANON_KEY."
            )
        return self.remote.url, self.remote.anon_key
