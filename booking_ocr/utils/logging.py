"""structlog configuration for booking-ocr.

Development gets the coloured console renderer, production (``APP_ENV``) or
``json_output=True`` gets one JSON object per line.  Both share a processor
chain that merges context variables, so anything bound with
:func:`bind_request_context` (request id, HTTP path) appears on every event
emitted while that request is processed, including the per-attempt events of
the OCR orchestrator.

The stdlib root logger is routed through the same renderer.  Client
libraries that log every request (httpx, openai) are held at WARNING unless
the configured level is DEBUG.
"""

import logging
import os
import sys
from typing import Any

import structlog

_CHATTY_LOGGERS = ("httpx", "httpcore", "openai", "PIL")


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Force JSON rendering regardless of ``APP_ENV``.
    """
    level = log_level.upper()
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    ))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    chatty_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Named logger; applies the default configuration on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)


def bind_request_context(**values: Any) -> None:
    """Attach *values* to every event logged by the current task from now on."""
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
