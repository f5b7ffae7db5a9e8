# src/ilastik_bridge/core/logging.py
"""Structured logging configuration for ilastik-bridge.

Configures BOTH structlog and stdlib logging to emit consistent output
(JSON or console). ProcessorFormatter routes stdlib log records through
structlog's processor chain, so h5py and other stdlib loggers produce the
same format as the bridge's own structlog loggers.

Engine output is relayed line by line through its own logger,
ENGINE_OUTPUT_LOGGER, whose level can be set apart from the rest: a
headless engine run easily prints thousands of progress lines.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

ENGINE_OUTPUT_LOGGER = "ilastik_bridge.engine.output"

# h5py logs dtype conversion chatter at DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = (
    "h5py",
    "h5py._conv",
)


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Drop the _record/_from_structlog bookkeeping ProcessorFormatter adds."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def _renderers(json_output: bool) -> list[Any]:
    if json_output:
        return [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [
        _remove_internal_fields,
        structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
    ]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    engine_output_level: str | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        engine_output_level: Level for relayed engine output. None follows
            `level`; WARNING keeps only the engine's stderr.
    """
    log_level = getattr(logging, level.upper())

    # merge_contextvars first: it carries the invocation_id into every record,
    # including those logged from the output drainer threads
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Caching off so tests can reconfigure
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        ProcessorFormatter(
            processors=_renderers(json_output),
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    engine_output = logging.getLogger(ENGINE_OUTPUT_LOGGER)
    engine_output.setLevel(getattr(logging, engine_output_level.upper()) if engine_output_level else logging.NOTSET)

    # Never less restrictive than the root level
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
