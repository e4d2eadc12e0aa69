"""Structured logging: structlog front end, stdlib logging as the sink."""

from __future__ import annotations

import logging
import logging.config
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=False)


def _dict_config(
    level: str, processors: list[structlog.types.Processor], renderer: structlog.types.Processor
) -> dict[str, Any]:
    loggers: dict[str, Any] = {"relaysync": {"level": level}}
    loggers.update({name: {"level": "WARNING"} for name in _QUIET_LOGGERS})
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "relaysync": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": processors,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "relaysync",
            },
        },
        "root": {"handlers": ["stderr"], "level": level},
        "loggers": loggers,
    }


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog and route stdlib logging through the same renderer.

    Arguments win over the environment:
        RELAYSYNC_LOG_LEVEL   engine log level (default: INFO)
        RELAYSYNC_LOG_FORMAT  console | json (default: console)

    Logs go to stderr so that stdout stays free for command output.
    """
    log_level = (level or os.environ.get("RELAYSYNC_LOG_LEVEL", "INFO")).upper()
    log_format = (fmt or os.environ.get("RELAYSYNC_LOG_FORMAT", "console")).lower()
    processors = _shared_processors()

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.config.dictConfig(_dict_config(log_level, processors, _renderer(log_format)))


@contextmanager
def import_log_context(url: str, **extra: Any) -> Iterator[None]:
    """Attach ``import_url`` (and *extra*) to every log line in this task.

    Concurrent imports run in separate tasks, so their bindings never mix.
    """
    with structlog.contextvars.bound_contextvars(import_url=url, **extra):
        yield
