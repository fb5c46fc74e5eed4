"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings can live in config.toml. Secrets (Slack tokens, signing
secret) live in .env. Environment variables override both using ``__`` as the
nested delimiter (e.g. ``SLACK__BOT_TOKEN``, ``AWS__SERVER1_INSTANCE_ID``).
Secrets use SecretStr for masking in logs.

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from serverswitch.config import get_settings

    s = get_settings()
    print(s.aws.region)
    print(s.destination_for("layout 2"))
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path

from croniter import croniter
from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from serverswitch.layouts import LAYOUT_ALL_SERVERS, LAYOUT_SERVER2
from serverswitch.types import TrackedInstance

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Unknown keys are rejected so typos fail loudly."""

    model_config = {"extra": "forbid"}


class SlackConfig(_StrictModel):
    bot_token: SecretStr | None = None  # xoxb-... Bot User OAuth Token
    signing_secret: SecretStr | None = None  # HTTP mode request verification
    app_token: SecretStr | None = None  # xapp-... App-Level Token (Socket Mode)


class ServerConfig(_StrictModel):
    port: int = 3003


class AwsConfig(_StrictModel):
    region: str = "us-east-1"
    server1_instance_id: str = ""
    server2_instance_id: str = ""


class DestinationConfig(_StrictModel):
    """Default channels a mention publishes to, per layout. Empty → reply in place."""

    layout1: str = ""
    layout2: str = ""


class SchedulerConfig(_StrictModel):
    timezone: str = "America/Glace_Bay"
    refresh_schedule: str = "0 * * * *"  # top of every hour
    shutdown_schedule: str = "0 18 * * *"  # end of the working day
    poll_interval: float = 30.0  # seconds

    @field_validator("refresh_schedule", "shutdown_schedule")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        if not croniter.is_valid(v):
            msg = f"Invalid cron expression: {v}"
            raise ValueError(msg)
        return v

    @field_validator("poll_interval")
    @classmethod
    def clamp_poll_interval(cls, v: float) -> float:
        return max(1.0, v)


class DisplayConfig(_StrictModel):
    timezone: str = "America/Halifax"
    title: str = "*Test Servers*"


class ReconcileConfig(_StrictModel):
    recheck_delay: float = 15.0  # seconds between re-checks of a transitioning message


class StoreConfig(_StrictModel):
    path: str = "data/locations.db"


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = "production"
    slack: SlackConfig = SlackConfig()
    server: ServerConfig = ServerConfig()
    aws: AwsConfig = AwsConfig()
    destinations: dict[str, DestinationConfig] = {}  # [destinations.<environment>]
    scheduler: SchedulerConfig = SchedulerConfig()
    display: DisplayConfig = DisplayConfig()
    reconcile: ReconcileConfig = ReconcileConfig()
    store: StoreConfig = StoreConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def tracked_instances(self) -> tuple[TrackedInstance, ...]:
        return (
            TrackedInstance("Server1", "Server 1", self.aws.server1_instance_id),
            TrackedInstance("Server2", "Server 2", self.aws.server2_instance_id),
        )

    @cached_property
    def store_path(self) -> Path:
        return Path(self.store.path).resolve()

    def destination_for(self, layout: str) -> str:
        """Default channel for a layout in the active environment ("" if unset)."""
        dest = self.destinations.get(self.environment)
        if dest is None:
            return ""
        if layout == LAYOUT_SERVER2:
            return dest.layout2
        if layout == LAYOUT_ALL_SERVERS:
            return dest.layout1
        return ""


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
