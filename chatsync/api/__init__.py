"""Chat server API: wire models and the async REST client."""

from chatsync.api.client import ChatServerClient
from chatsync.api.models import Customer, Event, Session, correlation_key, parse_date

__all__ = [
    "ChatServerClient",
    "Customer",
    "Event",
    "Session",
    "correlation_key",
    "parse_date",
]
