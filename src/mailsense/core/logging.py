"""structlog setup and per-run log context for MailSense.

Every entry written while an analysis runs carries three extra keys:
``analysis_run_id`` (a fresh UUID per run), ``message_id`` and
``analysis_id``. They are held in context variables, so concurrent worker
tasks never see each other's values.

Usage:
    from mailsense.core.logging import analysis_run, get_logger

    logger = get_logger(__name__)

    with analysis_run(message_id=42, analysis_id=7):
        logger.info("analysis_started")  # includes analysis_run_id etc.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog

_run_id: ContextVar[str | None] = ContextVar("analysis_run_id", default=None)

# Third-party loggers that report every HTTP request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def get_run_id() -> str | None:
    """The current analysis run's ID, or None outside a run."""
    return _run_id.get()


@contextmanager
def analysis_run(message_id: int, analysis_id: int | None = None) -> Iterator[str]:
    """Scope log entries to one analysis run.

    Yields the generated run ID. The previous context (usually none) is
    restored on exit, even if the run raises.
    """
    run_id = str(uuid.uuid4())
    token = _run_id.set(run_id)
    try:
        with structlog.contextvars.bound_contextvars(
            message_id=message_id, analysis_id=analysis_id
        ):
            yield run_id
    finally:
        _run_id.reset(token)


def bind_analysis_id(analysis_id: int | None) -> None:
    """Record the analysis ID once a run has created its attempt."""
    structlog.contextvars.bind_contextvars(analysis_id=analysis_id)


def add_run_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog processor stamping the current run ID onto an entry."""
    run_id = _run_id.get()
    if run_id is not None:
        event_dict["analysis_run_id"] = run_id
    return event_dict


def _renderer(json_output: bool) -> list[structlog.types.Processor]:
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=True)]


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Route structlog through stdlib logging to stdout.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines when True, colored console output when False
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            add_run_id,
            *_renderer(json_output),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
