"""Configuration schema using Pydantic.

Environment variables use the ``CHRONICLE_`` prefix and take precedence over
values read from ``~/.chronicle/config.json``.
"""

from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

# Inactivity watchdog and backoff parameters are part of the wire contract, not user config.
INACTIVITY_TIMEOUT_SECONDS = 60.0
RECONNECT_BASE_DELAY_SECONDS = 1.0
RECONNECT_MAX_DELAY_SECONDS = 60.0


class Config(BaseSettings):
    """Root configuration for chronicle."""
    model: str = "anthropic/claude-sonnet-4-20250514"
    max_tokens: int = 4096
    ws_host: str = "127.0.0.1"
    ws_port: int = 9847
    ws_timeout: int = 30000  # per-request timeout, milliseconds
    ping_interval: float = 20.0  # seconds between keepalive pings, 0 disables
    push_queue_limit: int = 1000  # 0 means unbounded
    push_overflow: Literal["drop_oldest", "reject_new"] = "drop_oldest"
    workspace: str | None = None
    log_level: str = "INFO"
    log_file: bool = False
    default_style: str = "standard"
    markers: dict[str, str] = Field(
        default_factory=lambda: {
            "thought": ">",
            "important": "!",
            "question": "?",
            "action": "[]",
            "attribution": "@",
        }
    )

    model_config = SettingsConfigDict(
        env_prefix="CHRONICLE_",
        extra="ignore",
    )

    @field_validator("max_tokens", "ws_port", "ws_timeout", mode="before")
    @classmethod
    def _positive_int_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        """Unparsable or non-positive numbers fall back to the field default."""
        default = cls.model_fields[info.field_name].default
        try:
            number = int(str(value).strip())
        except (TypeError, ValueError):
            return default
        return number if number > 0 else default

    @field_validator("ping_interval", mode="before")
    @classmethod
    def _non_negative_float_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        default = cls.model_fields[info.field_name].default
        try:
            number = float(str(value).strip())
        except (TypeError, ValueError):
            return default
        return number if number >= 0 else default

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, init_settings

    @property
    def ws_url(self) -> str:
        return f"ws://{self.ws_host}:{self.ws_port}"

    @property
    def request_timeout_seconds(self) -> float:
        return self.ws_timeout / 1000.0
