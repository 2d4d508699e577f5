"""
Operator configuration management with environment validation.

Settings are loaded from environment variables (and an optional ``.env``
file) using pydantic-settings, grouped by the collaborator they configure.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from servelane.core.exceptions import ConfigurationError


class ClusterSettings(BaseSettings):
    """Cluster and reconciliation settings."""

    model_config = SettingsConfigDict(env_prefix="SERVELANE_", extra="ignore")

    cluster_name: str = Field("servelane")
    namespace: str = Field("default")
    bucket: Optional[str] = Field(None)
    in_cluster: bool = Field(True)

    # seconds between autoscaler ticks for each API
    autoscaling_tick_interval: float = Field(10.0, gt=0)


class StorageSettings(BaseSettings):
    """Object storage (MinIO / S3 compatible) settings."""

    model_config = SettingsConfigDict(env_prefix="MINIO_", extra="ignore")

    endpoint: str = Field("minio:9000")
    access_key: Optional[str] = Field(None)
    secret_key: Optional[SecretStr] = Field(None)
    session_token: Optional[str] = Field(None)
    secure: bool = Field(False)
    region: Optional[str] = Field(None)


class DashboardSettings(BaseSettings):
    """Grafana dashboard registration settings."""

    model_config = SettingsConfigDict(env_prefix="GRAFANA_", extra="ignore")

    enabled: bool = Field(True)
    url: str = Field("http://grafana:3000")
    api_key: Optional[SecretStr] = Field(None)
    timeout_seconds: float = Field(10.0, gt=0)


class Settings(BaseSettings):
    """Main operator settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    environment: str = Field("development")
    debug: bool = Field(False)
    log_level: str = Field("INFO")

    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    dashboard: DashboardSettings = Field(default_factory=DashboardSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed_environments = {"development", "staging", "production"}
        if v.lower() not in allowed_environments:
            raise ValueError(f"Environment must be one of: {allowed_environments}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level value."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Log level must be one of: {allowed_levels}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def get_secret_value(self, secret: Optional[SecretStr]) -> Optional[str]:
        """Safely get secret value."""
        return secret.get_secret_value() if secret else None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached operator settings.

    Returns:
        Settings: The settings instance, loaded once per process.
    """
    return Settings()


def validate_required_settings(settings: Optional[Settings] = None) -> None:
    """
    Validate that all required settings are properly configured.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    settings = settings or get_settings()

    if not settings.cluster.bucket:
        raise ConfigurationError("SERVELANE_BUCKET is required")

    if not settings.cluster.cluster_name:
        raise ConfigurationError("SERVELANE_CLUSTER_NAME is required")

    if settings.is_production and settings.debug:
        raise ConfigurationError("Debug mode must be disabled in production")


__all__ = [
    "Settings",
    "ClusterSettings",
    "StorageSettings",
    "DashboardSettings",
    "get_settings",
    "validate_required_settings",
]
