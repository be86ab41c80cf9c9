"""HistoryMessage and MessagesRequest data models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from kite.db import from_db_time, to_db_time

if TYPE_CHECKING:
    from datetime import datetime

    from kite.channels.models import Member


def owner_key(channel_name: str, member_id: str) -> str:
    """Partition key of a member's history: ``<channel>:<member>``."""
    return f"{channel_name}:{member_id}"


@dataclass
class HistoryMessage:
    """One delivered message in a client's transcript.

    Attributes:
        channel_name: Channel of the owner.
        member_id: Owner (always the client side of the conversation).
        message_id: Remote id assigned by the owner-side connector.
        content: Payload re-encoded in the wire format.
        time: Delivery time.
        is_host: Whether the host authored the message.
    """

    channel_name: str
    member_id: str
    message_id: str
    content: str
    time: datetime
    is_host: bool = False

    @property
    def id(self) -> str:
        return owner_key(self.channel_name, self.member_id)

    def to_row(self) -> tuple:
        return (
            self.id,
            self.message_id,
            self.channel_name,
            self.member_id,
            self.content,
            to_db_time(self.time),
            int(self.is_host),
        )

    @classmethod
    def from_row(cls, row: tuple) -> HistoryMessage:
        return cls(
            message_id=row[1],
            channel_name=row[2],
            member_id=row[3],
            content=row[4],
            time=from_db_time(row[5]),
            is_host=bool(row[6]),
        )


@dataclass
class MessagesRequest:
    """History query.

    At least one of ``member`` and ``connection_uri`` is required; the owner
    is looked up by connection when ``member`` is missing.
    ``last_message_time`` wins over ``last_message_id`` when both are set.
    With ``last_message_by_connection`` the lower bound is the time the
    member last received a message on ``connection_uri``.
    """

    member: Member | None = None
    connection_uri: str | None = None
    last_message_time: datetime | None = None
    last_message_id: str | None = None
    limit: int | None = None
    last_message_by_connection: bool = False
