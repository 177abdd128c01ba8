"""structlog setup shared by the CLI, the API and the huey worker."""

from __future__ import annotations

import logging
import sys

import structlog

# Libraries that log every request or task at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore", "huey")


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def _processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Point structlog and the stdlib root logger at one renderer.

    ``log_format`` is ``"json"`` for log shippers; anything else renders for
    a terminal. Lifecycle loggers honour ``log_level``; the chatty HTTP and
    queue libraries stay at WARNING unless DEBUG is asked for.
    """
    level = _level(log_level)
    renderer = _renderer(log_format)

    structlog.configure(
        processors=[*_processors(), renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_processors(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    library_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
