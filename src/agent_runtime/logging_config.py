"""Structured logging configuration using structlog."""

import logging
import sys

import structlog
from rich.console import Console
from rich.logging import RichHandler

from agent_runtime.config import LoggingConfig

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def _build_handler(config: LoggingConfig) -> logging.Handler:
    """Create the stdlib handler that renders structlog events.

    Args:
        config: Logging configuration.

    Returns:
        Handler with a formatter attached.
    """
    if config.format == "rich" and not config.file:
        return RichHandler(
            console=Console(stderr=True),
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )

    handler: logging.Handler
    if config.file:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(config.file)
    else:
        handler = logging.StreamHandler(sys.stderr)

    renderer: structlog.types.Processor
    if config.format == "json" or config.file:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    return handler


def setup_logging(config: LoggingConfig) -> None:
    """Configure structured logging with structlog and rich.

    Rich output is for interactive use; a log file always gets JSON lines.

    Args:
        config: Logging configuration.
    """
    final_processor: structlog.types.Processor
    if config.format == "rich" and not config.file:
        # RichHandler formats the record itself, so hand it a rendered line.
        final_processor = structlog.dev.ConsoleRenderer(colors=False)
    else:
        final_processor = structlog.stdlib.ProcessorFormatter.wrap_for_formatter

    structlog.configure(
        processors=_SHARED_PROCESSORS + [final_processor],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(_build_handler(config))
    root_logger.setLevel(getattr(logging, config.level.value))

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured logger instance.
    """
    return structlog.get_logger(name)


def bind_thread_context(thread_id: str) -> None:
    """Attach a thread id to every subsequent log line in this context.

    Args:
        thread_id: Conversation thread identifier.
    """
    structlog.contextvars.bind_contextvars(thread_id=thread_id)


def clear_log_context() -> None:
    """Clear all logging context variables."""
    structlog.contextvars.clear_contextvars()
