"""Structured logging for the monitor, built on structlog over stdlib logging."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from chainwatch.core.config import LoggingConfig, get_settings

DECISION_LOGGER = "decision_log"

# Chatty at DEBUG; never let them drown out poll and alert records.
_QUIET_LOGGERS = ("httpx", "httpcore", "aiohttp.access")


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _formatter(renderer: structlog.types.Processor) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    config: LoggingConfig | None = None,
) -> None:
    """Route structlog through the stdlib root logger.

    Args:
        level: Log level override (e.g. "DEBUG").
        fmt: Renderer override, "json" or "console".
        config: Logging section to use; the cached settings' section if None.
    """
    cfg = config or get_settings().logging
    log_level = getattr(logging, (level or cfg.level).upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(_renderer(fmt or cfg.format)))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console)
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    decisions = logging.getLogger(DECISION_LOGGER)
    for handler in list(decisions.handlers):
        decisions.removeHandler(handler)
        handler.close()
    if cfg.decision_log_path:
        path = Path(cfg.decision_log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        decisions.addHandler(file_handler)
