"""Configuration for the render tracker.

RenderSettings holds the engine connection and the reconciliation
timings (poll interval, message duration, preview size).

Lookup:
    get_settings() returns, in order of preference, the settings bound to
    the current context (SettingsContext / set_context_settings), the
    process-wide instance (set_settings), or a lazily built default.

Sources, highest priority first:
    1. Constructor arguments
    2. RENDER_TRACKER_* environment variables
    3. ./.render_tracker/settings.json
    4. ~/.render_tracker/settings.json
    5. .env
    6. Field defaults
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Iterator, Literal, Tuple, Type

from pydantic import Field
from pydantic_settings import (
    BaseSettings as PydanticBaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

__all__ = [
    "RenderSettings",
    "SettingsContext",
    "get_settings",
    "set_settings",
    "set_context_settings",
    "reload_settings",
]

APP_NAME = "render_tracker"


def settings_files() -> list[Path]:
    """JSON settings files, project before user."""
    return [
        Path.cwd() / f".{APP_NAME}" / "settings.json",
        Path.home() / f".{APP_NAME}" / "settings.json",
    ]


class RenderSettings(PydanticBaseSettings):
    """Settings for polling, messaging and the render engine connection."""

    model_config = SettingsConfigDict(
        env_prefix="RENDER_TRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Engine connection
    engine_url: str = Field(
        default="http://127.0.0.1:8765",
        title="Engine URL",
        description="Base URL of the render engine HTTP API",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        title="Request Timeout",
        description="Seconds before an engine request is abandoned",
    )

    # Reconciliation timing
    poll_interval: float = Field(
        default=5.0,
        ge=0.01,
        title="Poll Interval",
        description="Seconds between full task list fetches",
    )
    message_duration: float = Field(
        default=3.0,
        gt=0,
        title="Message Duration",
        description="Seconds a transient message stays visible",
    )
    resolved_preview_limit: int = Field(
        default=3,
        ge=0,
        title="Resolved Preview Limit",
        description="Resolved tasks shown before collapsing into a count",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning",
        title="Log Level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        title="Log Format",
        description="console for development, json for log collectors",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[PydanticBaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Place existing JSON settings files between the environment and .env."""
        json_sources = [
            JsonConfigSettingsSource(settings_cls, json_file=path)
            for path in settings_files()
            if path.exists()
        ]
        return (init_settings, env_settings, *json_sources, dotenv_settings)


_settings_context: ContextVar[RenderSettings | None] = ContextVar(
    "render_settings_context", default=None
)
_settings_instance: RenderSettings | None = None


def get_settings() -> RenderSettings:
    context_settings = _settings_context.get()
    if context_settings is not None:
        return context_settings

    global _settings_instance
    if _settings_instance is None:
        _settings_instance = RenderSettings()
    return _settings_instance


def set_settings(settings: RenderSettings) -> None:
    """Replace the process-wide settings instance."""
    global _settings_instance
    _settings_instance = settings


def set_context_settings(settings: RenderSettings | None) -> Token:
    """Bind settings to the current context; None unbinds.

    Returns:
        Token for ``ContextVar.reset``.
    """
    return _settings_context.set(settings)


@contextmanager
def SettingsContext(settings: RenderSettings) -> Iterator[RenderSettings]:
    """Use ``settings`` for everything created inside the block.

    Example:
        with SettingsContext(RenderSettings(poll_interval=0.1)):
            scope = ScopeContext(engine)  # polls every 100 ms
    """
    token = _settings_context.set(settings)
    try:
        yield settings
    finally:
        _settings_context.reset(token)


def reload_settings() -> RenderSettings:
    """Drop cached settings and rebuild them from the sources."""
    global _settings_instance
    _settings_instance = None
    _settings_context.set(None)
    return get_settings()
