"""
Structured logging for the alert engine.

structlog renders every line, including records from the stdlib
loggers used by the store, queue, channel and dispatcher modules, so
a tick's output reads as one stream with the same bound fields
(task, request_id) whichever layer emitted it.
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from alert_engine.config.settings import get_settings

SERVICE_NAME = "alert-engine"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg", "redis", "uvicorn.access")


def _add_service(environment: str) -> Processor:
    def processor(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("env", environment)
        return event_dict

    return processor


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Configure structlog and route stdlib logging through it.

    Args:
        level: Root log level (defaults to ``settings.log_level``)
        json_logs: Force JSON or console output (defaults to JSON in production)

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Alert state changed", alert_id="a1", new_state="FIRING")
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.is_production

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service(settings.environment),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer: Processor = structlog.processors.JSONRenderer()
        final_processors: list[Processor] = [structlog.processors.format_exc_info, renderer]
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        final_processors = [renderer]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta]
        + final_processors,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """
    Bind fields to every subsequent log line in the current context.

    The scheduler binds ``task`` for each tick; the API binds
    ``request_id`` per request.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
