"""
Structured logging for the fantasy live services.
structlog events flow through the stdlib root handler so library logs share one format.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from shared.config import Settings, get_settings

QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _pick_renderer(settings: Settings) -> structlog.types.Processor:
    log_format = settings.log_format.lower()
    if log_format == "auto":
        log_format = "console" if settings.environment.value == "dev" else "json"
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def _install_root_handler(formatter: logging.Formatter, level: int) -> None:
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(stream)
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(service_name: str, extra_context: dict[str, Any] | None = None) -> None:
    """
    Route structlog and stdlib logging through one stdout handler.

    ``service_name`` and ``extra_context`` are bound as contextvars, so every
    line from this process carries them.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _pick_renderer(settings),
        ],
        foreign_pre_chain=shared_processors,
    )

    _install_root_handler(formatter, log_level)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=service_name,
        instance_id=settings.instance_id,
        **(extra_context or {}),
    )


def bind_context(**fields: Any) -> None:
    """Bind fields to every log line emitted from the current task."""
    structlog.contextvars.bind_contextvars(**fields)


def unbind_context(*names: str) -> None:
    structlog.contextvars.unbind_contextvars(*names)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
