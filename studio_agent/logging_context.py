"""Per-customer correlation logging.

Every inbound turn runs with the customer id stored in a context
variable, so log lines emitted by strategies, the draft engine and the
quality gate can be tied back to one customer's conversation even when
many customers are being served concurrently.

Usage:
    from studio_agent.logging_context import get_turn_logger, set_customer_id

    set_customer_id("cust-42")
    logger = get_turn_logger(__name__)
    logger.info("Routing message")  # record.customer_id == "cust-42"
"""

import logging
from contextvars import ContextVar
from typing import Iterable, Optional

_customer_id: ContextVar[str] = ContextVar("customer_id", default="NO_CUSTOMER")


def set_customer_id(customer_id: str) -> None:
    """Set the correlation id for the current async context."""
    _customer_id.set(customer_id)


def get_customer_id() -> str:
    """Retrieve the current correlation id."""
    return _customer_id.get()


class CustomerIdFilter(logging.Filter):
    """Injects customer_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.customer_id = _customer_id.get()  # type: ignore[attr-defined]
        return True


def get_turn_logger(name: str) -> logging.Logger:
    """Return a logger with the CustomerIdFilter attached.

    The filter adds ``customer_id`` to each record so formatters can
    include ``%(customer_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CustomerIdFilter) for f in logger.filters):
        logger.addFilter(CustomerIdFilter())
    return logger


def install_customer_id_filter(handlers: Optional[Iterable[logging.Handler]] = None) -> None:
    """Attach a CustomerIdFilter to ``handlers`` (default: the root handlers).

    Handler-level filters see records from every logger, so a format
    string using ``%(customer_id)s`` also works for third-party loggers.
    """
    for handler in logging.getLogger().handlers if handlers is None else handlers:
        if not any(isinstance(f, CustomerIdFilter) for f in handler.filters):
            handler.addFilter(CustomerIdFilter())
