"""Telemetry sink configuration.

Each sink reads its own environment prefix so the log and metric collectors
can be configured (or left unconfigured) independently:

    TELEMETRY_LOGS_URL, TELEMETRY_LOGS_API_KEY, TELEMETRY_LOGS_USER_ID,
    TELEMETRY_LOGS_INTERVAL_MS, TELEMETRY_LOGS_SOURCE
    TELEMETRY_METRICS_URL, TELEMETRY_METRICS_API_KEY, ...
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SinkSettings(BaseSettings):
    """Settings shared by every sink."""

    url: str | None = None
    api_key: str | None = None
    user_id: str | None = None
    interval_ms: int = 10_000
    source: str = "telemetripy"

    @property
    def configured(self) -> bool:
        """True when both the endpoint and the credential are present."""
        return bool(self.url) and bool(self.api_key)


class LogSinkSettings(SinkSettings):
    """Loki push endpoint settings."""

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_LOGS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    max_string_length: int | None = 32


class MetricsSettings(SinkSettings):
    """OTLP/HTTP metrics endpoint settings."""

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_METRICS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Lifetime distinct users by default; True turns it into a windowed gauge
    reset_active_users: bool = False
    system_metrics: bool = True


class TelemetrySettings(BaseSettings):
    """Top-level settings handed to the Telemetry runtime."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field(default="production", validation_alias="APP_ENV")
    logs: LogSinkSettings = Field(default_factory=LogSinkSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)

    @property
    def schedulers_enabled(self) -> bool:
        """Schedulers stay suspended while the test suite is running."""
        return self.environment.lower() != "test"


@lru_cache
def get_settings() -> TelemetrySettings:
    """Get cached settings instance."""
    return TelemetrySettings()
