"""Models package - Pydantic schemas and domain types."""

from .security_event_types import SecurityEventType, TokenPurpose

__all__ = [
    "SecurityEventType",
    "TokenPurpose",
]
