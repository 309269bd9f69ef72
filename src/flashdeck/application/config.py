from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from flashdeck.domain.constants import (
    BACKOFF_BASE_SECONDS,
    BATCH_POLL_ATTEMPTS,
    BATCH_POLL_INTERVAL,
    COMMIT_MAX_ATTEMPTS,
    DEFAULT_GATEWAY_URL,
    DEFAULT_RATE_LIMIT_DELAY,
    LOAD_MAX_ATTEMPTS,
    MAX_RATE_LIMIT_DELAY,
    REQUEST_TIMEOUT,
    SUBMIT_MAX_ATTEMPTS,
)


def config_files() -> list[Path]:
    return [
        Path.home() / ".config/flashdeck/config.toml",
        Path.home() / ".flashdeck.toml",
    ]


class AppConfig(BaseSettings):
    """
    Configuration model for flashdeck.
    Supports loading from:
    1. Environment variables (FLASHDECK_*)
    2. Config file (~/.config/flashdeck/config.toml or ~/.flashdeck.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="FLASHDECK_",
        extra="ignore",
    )

    # Gateway
    gateway_url: str = DEFAULT_GATEWAY_URL
    api_token: str | None = None
    request_timeout: float = REQUEST_TIMEOUT
    error_log_url: str | None = None

    # Retry budgets
    load_max_attempts: int = LOAD_MAX_ATTEMPTS
    submit_max_attempts: int = SUBMIT_MAX_ATTEMPTS
    commit_max_attempts: int = COMMIT_MAX_ATTEMPTS
    backoff_base_seconds: float = BACKOFF_BASE_SECONDS
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY
    max_rate_limit_delay: float = MAX_RATE_LIMIT_DELAY

    # Generation batches
    batch_poll_interval: float = BATCH_POLL_INTERVAL
    batch_poll_attempts: int = BATCH_POLL_ATTEMPTS
    deck_id: str | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing file wins; init (CLI) overrides env, env overrides the file
        toml_file = next((f for f in config_files() if f.exists()), None)
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("gateway_url", "error_log_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @field_validator(
        "load_max_attempts",
        "submit_max_attempts",
        "commit_max_attempts",
        "batch_poll_attempts",
    )
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("attempt counts must be at least 1")
        return v

    @field_validator(
        "backoff_base_seconds",
        "request_timeout",
        "batch_poll_interval",
        "max_rate_limit_delay",
    )
    @classmethod
    def positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/flashdeck/config.toml (if exists)
    3. Environment variables (FLASHDECK_*)
    4. cli_overrides (passed from Typer), None values ignored
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
