"""
Structured logging via structlog.

    from settlement.observability import get_logger

    log = get_logger(__name__)
    log.info("checkout_completed", order_id=order.id, total_cents=order.total)

configure_logging() is called once by the application factory; library code
only ever calls get_logger().
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger


def configure_logging(level: str = "INFO", json: bool = True) -> None:
    """Configure structlog processors and the minimum level."""
    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str) -> FilteringBoundLogger:
    """Logger bound to a component name."""
    return structlog.get_logger().bind(component=component)


def bind_request(**values: object) -> None:
    """Bind values (request id, order id) to every log line of this task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_request() -> None:
    structlog.contextvars.clear_contextvars()


__all__ = ("configure_logging", "get_logger", "bind_request", "clear_request")
