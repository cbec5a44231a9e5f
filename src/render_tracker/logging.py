"""Structured logging for the render tracker.

structlog renders either a coloured console line for development or one
JSON object per event. Every component logger carries a ``component``
key, and an open scope binds ``project_id`` and ``generation`` into the
context, so a poll discarded after a scope switch can be traced back to
the scope that issued it.
"""

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from render_tracker.config import RenderSettings

# Third-party loggers that would otherwise log every poll request
_QUIET_LOGGERS = ("httpx", "httpcore")

_SCOPE_KEYS = ("project_id", "generation")


def _build_processors(log_format: str) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    return processors


def configure_logging(settings: "RenderSettings | None" = None) -> None:
    """Configure structlog and stdlib logging from settings.

    Without settings, logs warnings and above to stderr in console format.
    """
    level_name = settings.log_level if settings is not None else "warning"
    log_format = settings.log_format if settings is not None else "console"
    level = getattr(logging, level_name.upper(), logging.WARNING)

    structlog.configure(
        processors=_build_processors(log_format),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Get a lazily configured logger, optionally with bound values."""
    if name:
        return structlog.get_logger(name, **initial_values)
    return structlog.get_logger(**initial_values)


def bind_context(**kwargs: object) -> None:
    """Bind values into every log call made from the current context.

    Tasks created afterwards inherit the binding.

    Example:
        bind_context(project_id="p1", generation=3)
        logger.info("poll_applied")  # Will include project_id and generation
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def bind_scope(project_id: str, generation: int) -> None:
    bind_context(project_id=project_id, generation=generation)


def unbind_scope() -> None:
    unbind_context(*_SCOPE_KEYS)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def _component_logger(component: str) -> structlog.stdlib.BoundLogger:
    return get_logger(f"render_tracker.{component}", component=component)


class Loggers:
    """Component loggers; each tags its events with ``component``."""

    @staticmethod
    def store() -> structlog.stdlib.BoundLogger:
        """Task store and merge decisions."""
        return _component_logger("store")

    @staticmethod
    def poll() -> structlog.stdlib.BoundLogger:
        return _component_logger("poll")

    @staticmethod
    def push() -> structlog.stdlib.BoundLogger:
        return _component_logger("push")

    @staticmethod
    def commands() -> structlog.stdlib.BoundLogger:
        """Life-cycle commands sent to the engine."""
        return _component_logger("commands")

    @staticmethod
    def messages() -> structlog.stdlib.BoundLogger:
        return _component_logger("messages")

    @staticmethod
    def engine() -> structlog.stdlib.BoundLogger:
        """Engine adapters and the event stream."""
        return _component_logger("engine")

    @staticmethod
    def scope() -> structlog.stdlib.BoundLogger:
        return _component_logger("scope")
