"""Structured logging for Ganj (structlog over the standard library).

Every entry carries the service name, version and environment, plus the
correlation id of the HTTP request being served (set by the request
middleware). Output is JSON in production and a colored console rendering
in development. Events are snake_case names with keyword context:

    from ganj.core.logging import configure_logging, get_logger

    configure_logging(settings)
    logger = get_logger(__name__)
    logger.info("poem_fetched", poem_id=2133, source="ganjoor")

JSON output keeps Persian text unescaped so poet and poem titles stay
readable in aggregated logs.
"""

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from ganj.config import Settings

correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio", "aiosqlite")


def get_correlation_id() -> str | None:
    return correlation_id_ctx.get()


def set_correlation_id(correlation_id: str) -> None:
    """Tag every entry logged in the current context with ``correlation_id``."""
    correlation_id_ctx.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_ctx.set(None)


def add_correlation_id(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def drop_color_message(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Uvicorn duplicates its message with ANSI codes under ``color_message``."""
    event_dict.pop("color_message", None)
    return event_dict


class ServiceContext:
    """Processor adding the service identity to every entry."""

    def __init__(self, settings: Settings) -> None:
        self._fields = {
            "service": settings.app_name.lower(),
            "version": settings.app_version,
            "environment": settings.app_env.value,
        }

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        for key, value in self._fields.items():
            event_dict.setdefault(key, value)
        return event_dict


def _renderer(settings: Settings) -> Processor:
    if settings.use_json_logs:
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and route standard library logging through it.

    Safe to call more than once; the root handler is replaced each time.

    Args:
        settings: Application settings. If None, uses ``get_settings()``.
    """
    if settings is None:
        from ganj.config import get_settings

        settings = get_settings()

    log_level = getattr(logging, settings.log_level.value, logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_correlation_id,
        ServiceContext(settings),
        drop_color_message,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.use_json_logs:
        shared_processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # SQL statements only when debugging
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically ``get_logger(__name__)``."""
    return structlog.get_logger(name)
