"""Telegram transport: webhook connector, command parsing and chat-id encoding."""

from kite.tg.connector import TelegramConnector
from kite.tg.ids import from_long, to_long
from kite.tg.payload import TelegramBinaryMessage

__all__ = ["TelegramBinaryMessage", "TelegramConnector", "from_long", "to_long"]
