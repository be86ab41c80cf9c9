"""Channel and Member data models."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kite.db import from_db_time, to_db_time

if TYPE_CHECKING:
    from datetime import datetime

CHANNEL_NAME_RE = re.compile(r"[A-Za-z0-9_-]{8,32}")


def is_valid_channel_name(name: str) -> bool:
    return bool(CHANNEL_NAME_RE.fullmatch(name or ""))


@dataclass
class Channel:
    """A named support channel with exactly one host."""

    name: str
    host_member_id: str
    title: str = ""

    def to_row(self) -> tuple:
        return (self.name, self.host_member_id, self.title)

    @classmethod
    def from_row(cls, row: tuple) -> Channel:
        return cls(name=row[0], host_member_id=row[1], title=row[2] or "")


@dataclass
class Member:
    """A host or client of a channel and the connection it is reachable on.

    Attributes:
        id: Opaque member id (base-36 chat id for Telegram members).
        channel_name: Channel the member belongs to.
        user_name: Display name.
        is_host: Whether this member operates the channel.
        connection_uri: ``<connectorId>:<raw>`` route to the member.
        peer_member_id: Counterpart of the last conversation. A client's
            peer is always the host; a host's peer is the last client that
            wrote to it.
        pinned_messages: Peer member id -> remote id of the message pinned
            in that peer's chat and not yet answered.
        last_message_time: Connection uri -> ISO time of the last message
            delivered over that connection.
        last_message_id: Remote id of the last delivered message.
    """

    id: str
    channel_name: str
    user_name: str
    is_host: bool = False
    connection_uri: str = ""
    peer_member_id: str | None = None
    pinned_messages: dict[str, str] = field(default_factory=dict)
    last_message_time: dict[str, str] = field(default_factory=dict)
    last_message_id: str | None = None

    def unanswered_message(self, peer_id: str) -> str | None:
        """Return the pinned message id for *peer_id*, if any."""
        return self.pinned_messages.get(peer_id)

    def last_message_time_for(self, connection_uri: str) -> datetime | None:
        """Return when a message was last delivered over *connection_uri*."""
        value = self.last_message_time.get(connection_uri)
        return from_db_time(value) if value else None

    def record_delivery(self, connection_uri: str, message_id: str, time: datetime) -> None:
        self.last_message_time[connection_uri] = to_db_time(time)
        self.last_message_id = message_id

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``members`` column order."""
        return (
            self.channel_name,
            self.id,
            self.user_name,
            int(self.is_host),
            self.connection_uri,
            self.peer_member_id,
            json.dumps(self.pinned_messages),
            json.dumps(self.last_message_time),
            self.last_message_id,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Member:
        return cls(
            channel_name=row[0],
            id=row[1],
            user_name=row[2],
            is_host=bool(row[3]),
            connection_uri=row[4],
            peer_member_id=row[5],
            pinned_messages=json.loads(row[6] or "{}"),
            last_message_time=json.loads(row[7] or "{}"),
            last_message_id=row[8],
        )
