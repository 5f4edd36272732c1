"""Structured logging configuration for ClientLens.

structlog renders JSON lines (production) or colored console output (CLI)
to stderr, so command output on stdout stays clean. A pipeline run's
insight_run_id is kept in a ContextVar and stamped on every entry logged
while the run is in progress.

Usage:
    from clientlens.core.logging import get_logger, set_correlation_id

    logger = get_logger(__name__)

    set_correlation_id(run_id)
    logger.info("insight_persisted", communication_id="abc123", category="Risk")
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

RUN_ID_KEY = "insight_run_id"

# Model output and email bodies can be large; cap them in log entries
MAX_LOGGED_VALUE_LENGTH = 2000

_correlation_id: ContextVar[str | None] = ContextVar("insight_run_id", default=None)


def set_correlation_id(correlation_id: str | None) -> None:
    """Bind a pipeline run id to the current context (None clears it)."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def add_correlation_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor: stamp the active run id, if any."""
    run_id = _correlation_id.get()
    if run_id is not None:
        event_dict.setdefault(RUN_ID_KEY, run_id)
    return event_dict


def truncate_long_values(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor: cut string values longer than MAX_LOGGED_VALUE_LENGTH."""
    for key, value in event_dict.items():
        if key == "event" or not isinstance(value, str):
            continue
        if len(value) > MAX_LOGGED_VALUE_LENGTH:
            event_dict[key] = f"{value[:MAX_LOGGED_VALUE_LENGTH]}... [{len(value)} chars]"
    return event_dict


def _build_processors(json_output: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_correlation_id,
        truncate_long_values,
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once; the handler is rebound to the current
    stderr each time.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines if True, console rendering otherwise
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    structlog.configure(
        processors=_build_processors(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically with name=__name__."""
    return structlog.get_logger(name)
