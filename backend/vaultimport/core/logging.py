"""structlog setup for the API process and the background workers.

Every log line is an event name plus key/value context. Workers bind the
job they are running with :func:`job_log_context`, so engine and
connector events carry ``worker_id`` and ``job_id`` without passing them
around.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from vaultimport.core.config import settings

# Libraries that log every request or statement at INFO
NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")

UVICORN_LOGGERS: tuple[str, ...] = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderers(json_output: bool) -> list[Any]:
    if json_output:
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging(level: str | None = None, *, json_output: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; defaults to ``settings.log_level``.
        json_output: JSON lines for log shipping; defaults to on outside debug.
    """
    log_level = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    if json_output is None:
        json_output = not settings.debug

    structlog.configure(
        processors=_shared_processors() + _renderers(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level, force=True)

    for name in UVICORN_LOGGERS:
        logging.getLogger(name).setLevel(log_level)
    if not settings.debug:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


@contextmanager
def job_log_context(**context: Any) -> Iterator[None]:
    """Bind ``context`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(**context):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
