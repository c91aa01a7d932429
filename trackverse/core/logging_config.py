"""Structured logging for the TrackVerse API.

structlog renders both its own loggers (webhook engine, retry worker) and
plain stdlib ``logging`` calls (web layer) through one handler, so every
line carries the same fields: timestamp, level, logger, service context
and, inside a request, the ``request_id`` bound by the tracking middleware.
"""

import logging
import sys
from typing import Optional

import structlog

from trackverse.app.config import get_settings

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def _service_context(app_name: str, environment: str):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", app_name)
        event_dict.setdefault("env", environment)
        return event_dict

    return processor


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure structlog and the root stdlib logger.

    Args:
        level: Log level name, defaults to ``LOG_LEVEL``
        fmt: ``json`` or ``text``, defaults to ``LOG_FORMAT``. Development
            always gets console output.
    """
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    fmt = (fmt or settings.LOG_FORMAT).lower()

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_context(settings.APP_NAME, settings.ENVIRONMENT),
    ]

    if settings.is_development or fmt == "text":
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]
    else:
        renderers = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
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

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *renderers,
            ],
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
