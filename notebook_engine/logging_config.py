"""Logging setup: structlog over the standard library, JSON by default"""

import sys
import logging
from typing import Any, Optional
import structlog
from structlog.types import EventDict, Processor

from notebook_engine.config import settings

_configured = False


def add_engine_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with the environment and service name"""
    event_dict["environment"] = settings.environment
    event_dict["service"] = "notebook-engine"
    return event_dict


def setup_logging(level: Optional[str] = None, force: bool = False) -> None:
    """Configure structlog for the engine.

    Subsequent calls are no-ops unless ``force`` is set, so the API, the CLI
    and tests can all call it.

    Args:
        level: Overrides ``settings.logging.level`` when given
        force: Reconfigure even if logging was already set up
    """
    global _configured
    if _configured and not force:
        return

    log_level = getattr(logging, (level or settings.logging.level).upper(), logging.INFO)

    if settings.logging.output == "stdout":
        stream = sys.stdout
    else:
        stream = open(settings.logging.output, "a")

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=log_level,
        force=True,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_engine_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def bind_execution(execution_id: str) -> None:
    """Attach an execution id to every log entry emitted by the current task"""
    structlog.contextvars.bind_contextvars(execution_id=execution_id)


def unbind_execution() -> None:
    structlog.contextvars.unbind_contextvars("execution_id")


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
