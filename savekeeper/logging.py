"""Structured logging for savekeeper processes.

`configure()` sets up structlog once per process:

- JSON lines by default, or coloured console output with
  SAVEKEEPER_LOG_FORMAT=console
- Level from SAVEKEEPER_LOG_LEVEL (default INFO)
- Context variables merged into every line, so each sweep's lines share a
  ``sweep_id`` (see `reset_context()`)
- Standard library loggers rendered through the same processors

Everything is written to stderr. stdout carries command output only, so
``savekeeper plan --json`` stays parseable.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

LOG_LEVEL_ENV = "SAVEKEEPER_LOG_LEVEL"
LOG_FORMAT_ENV = "SAVEKEEPER_LOG_FORMAT"

# Service name bound by configure(); re-bound after every context reset
_configured_service_name: str | None = None


def _add_service_name(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Expose the bound ``_service_name`` context var as ``service``."""
    if "_service_name" in event_dict:
        event_dict["service"] = event_dict.pop("_service_name")
    return event_dict


def _stderr_logger_factory(*args: object) -> structlog.PrintLogger:
    # Looked up per logger so a replaced sys.stderr (test runners) is used
    return structlog.PrintLogger(file=sys.stderr)


def _log_level() -> int:
    name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _renderer() -> structlog.types.Processor:
    if os.environ.get(LOG_FORMAT_ENV, "json").lower() == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure(service_name: str) -> None:
    """Configure structlog and stdlib logging for one process.

    Safe to call more than once; the last call wins.

    Args:
        service_name: Reported as ``service`` on every line ("daemon", "cli").
    """
    level = _log_level()
    renderer = _renderer()
    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_service_name,
    ]

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=_stderr_logger_factory,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    global _configured_service_name
    _configured_service_name = service_name
    structlog.contextvars.bind_contextvars(_service_name=service_name)


def reset_context(**extra: str) -> None:
    """Start a fresh logging context, keeping the configured service name.

    Args:
        **extra: Context variables for the new scope, e.g. ``sweep_id``.
    """
    structlog.contextvars.clear_contextvars()
    if _configured_service_name:
        structlog.contextvars.bind_contextvars(_service_name=_configured_service_name)
    if extra:
        structlog.contextvars.bind_contextvars(**extra)
