"""
Correlation ID generation and context management.

Every orchestrated operation and every sweep run gets a short ID that is
attached to its log lines and to any domain exception it raises, so a
single failure can be traced through the logs.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

# Context variable for operation-scoped correlation ID
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    """
    Generate a short, unique correlation ID.

    Returns:
        8-character hexadecimal string (e.g., "abc123de").
    """
    return uuid.uuid4().hex[:8]


def get_correlation_id() -> str:
    """Current correlation ID, or empty string if none is set."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Run a block under a correlation ID.

    An ID already set by an outer scope is reused, so nested operations
    (a login that revokes sessions) share one ID.

    Args:
        correlation_id: Explicit ID to use; generated when omitted.

    Yields:
        The active correlation ID.
    """
    current = correlation_id_var.get()
    if current and correlation_id is None:
        yield current
        return

    token = correlation_id_var.set(correlation_id or generate_correlation_id())
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)
