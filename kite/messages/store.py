"""Messages — append-only history store keyed by channel and owner."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kite.config import settings
from kite.db import get_connection, to_db_time
from kite.errors import NotFoundError, ValidationError
from kite.messages.models import HistoryMessage, MessagesRequest, owner_key

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime
    from pathlib import Path

    import aiosqlite

    from kite.channels.models import Member
    from kite.channels.store import Channels

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        channel_name TEXT NOT NULL,
        member_id TEXT NOT NULL,
        content TEXT NOT NULL,
        time TEXT NOT NULL,
        is_host INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (id, message_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS messages_time ON messages (id, time)",
)

_COLUMNS = "id, message_id, channel_name, member_id, content, time, is_host"


class Messages:
    """Persists message history in SQLite.

    Singleton accessed via ``Messages.get()``.  Pass explicit *channels* and
    *db_path* for test isolation.
    """

    _instance: Messages | None = None

    def __init__(self, channels: Channels, db_path: Path | None = None) -> None:
        self._channels = channels
        self._db_path = db_path or settings.database_path

    @classmethod
    def get(cls) -> Messages:
        """Return the shared Messages instance."""
        if cls._instance is None:
            from kite.channels.store import Channels

            cls._instance = cls(Channels.get())
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    def _connect(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        return get_connection(self._db_path, _SCHEMA)

    # -- Writes ----------------------------------------------------------------

    async def persist(
        self,
        owner: Member,
        message_id: str,
        content: str,
        time: datetime,
        is_host: bool = False,
    ) -> HistoryMessage:
        """Store a message in *owner*'s history; an existing id is overwritten."""
        message = HistoryMessage(
            channel_name=owner.channel_name,
            member_id=owner.id,
            message_id=message_id,
            content=content,
            time=time,
            is_host=is_host,
        )
        async with self._connect() as db:
            await db.execute(
                f"INSERT OR REPLACE INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                message.to_row(),
            )
            await db.commit()
        logger.debug("Persisted message %s for %s", message_id, message.id)
        return message

    async def purge(self, channel_name: str) -> int:
        """Delete the history of every member of *channel_name*. Returns the row count."""
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM messages WHERE channel_name = ?", (channel_name,)
            )
            await db.commit()
            removed = cursor.rowcount
        logger.info("Purged %d history messages of channel %s", removed, channel_name)
        return removed

    # -- Reads -----------------------------------------------------------------

    async def find(self, member: Member, message_id: str) -> HistoryMessage:
        """Fetch one history message. Raises ``NotFoundError`` when absent."""
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE id = ? AND message_id = ?",
                (owner_key(member.channel_name, member.id), message_id),
            )
            row = await cursor.fetchone()
        if row is None:
            msg = "History message not found"
            raise NotFoundError(msg)
        return HistoryMessage.from_row(row)

    async def find_all(self, request: MessagesRequest) -> list[HistoryMessage]:
        """Return the newest matching messages, oldest first.

        Only messages strictly newer than the resolved lower bound are
        returned; without a bound the whole history is eligible. The result
        size is ``request.limit`` or ``settings.history_page_cap``.
        """
        if request.member is None and request.connection_uri is None:
            msg = "Either member or connection uri is required"
            raise ValidationError(msg)
        if request.limit is not None and request.limit < 0:
            msg = f"Invalid limit {request.limit}"
            raise ValidationError(msg)
        member = request.member
        if member is None:
            member = await self._channels.find(request.connection_uri)

        after = request.last_message_time
        if request.last_message_by_connection:
            if request.connection_uri is None:
                msg = "last_message_by_connection requires a connection uri"
                raise ValidationError(msg)
            current = await self._channels.get_member(member.channel_name, member.id)
            after = (current or member).last_message_time_for(request.connection_uri)
        elif after is None and request.last_message_id:
            after = (await self.find(member, request.last_message_id)).time

        limit = request.limit if request.limit is not None else settings.history_page_cap
        sql = f"SELECT {_COLUMNS} FROM messages WHERE id = ?"
        params: list = [owner_key(member.channel_name, member.id)]
        if after is not None:
            sql += " AND time > ?"
            params.append(to_db_time(after))
        sql += " ORDER BY time DESC, message_id DESC LIMIT ?"
        params.append(limit)

        async with self._connect() as db:
            cursor = await db.execute(sql, tuple(params))
            rows = await cursor.fetchall()
        return sorted(
            (HistoryMessage.from_row(row) for row in rows),
            key=lambda m: (m.time, m.message_id),
        )
