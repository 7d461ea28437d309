"""Structured logging for the knowledge store and its scripts.

Modules log through ``structlog.get_logger("<package>.<module>")`` with
keyword fields. Entry points call ``configure_logging`` once; it routes
structlog through the stdlib root logger and renders JSON or console output.
"""

import logging
import sys
from typing import Any, List, Optional

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

_performance_logger = structlog.get_logger("performance")


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    environment: Optional[str] = None,
) -> None:
    """Configure structlog for a process.

    Parameters
    - service_name: Bound to every log line as ``service``
    - log_level: Stdlib level name, case-insensitive
    - log_format: ``json`` or ``console``
    - environment: Bound as ``env`` when given (``CLARITY_ENV``)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    context = {"service": service_name}
    if environment:
        context["env"] = environment
    structlog.contextvars.bind_contextvars(**context)


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Log one timed operation (e.g. ``vector_search``) with extra dimensions."""
    _performance_logger.info(
        f"Operation {operation} completed",
        operation=operation,
        duration_ms=round(duration_ms, 3),
        **kwargs
    )
