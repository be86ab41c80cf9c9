"""Per-client message history."""

from kite.messages.models import HistoryMessage, MessagesRequest
from kite.messages.store import Messages

__all__ = [
    "HistoryMessage",
    "Messages",
    "MessagesRequest",
]
