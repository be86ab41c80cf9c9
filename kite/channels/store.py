"""Channels — registry of channels, members and the connections they use."""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING

from kite.channels.models import Channel, Member, is_valid_channel_name
from kite.config import settings
from kite.db import get_connection
from kite.errors import ConflictError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS channels (
        name TEXT PRIMARY KEY,
        host_member_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS members (
        channel_name TEXT NOT NULL,
        id TEXT NOT NULL,
        user_name TEXT NOT NULL,
        is_host INTEGER NOT NULL DEFAULT 0,
        connection_uri TEXT NOT NULL UNIQUE,
        peer_member_id TEXT,
        pinned_messages TEXT NOT NULL DEFAULT '{}',
        last_message_time TEXT NOT NULL DEFAULT '{}',
        last_message_id TEXT,
        PRIMARY KEY (channel_name, id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS members_by_id ON members (id)",
)

_MEMBER_COLUMNS = (
    "channel_name, id, user_name, is_host, connection_uri, peer_member_id, "
    "pinned_messages, last_message_time, last_message_id"
)

_INSERT_MEMBER = f"INSERT INTO members ({_MEMBER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"


class Channels:
    """Persists channels and members in SQLite.

    Singleton accessed via ``Channels.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    Mutations are serialized per channel with an ``asyncio.Lock``; each
    read-modify-write of a member record happens under its channel's lock.
    A lock lives only while some operation holds or awaits it.
    """

    _instance: Channels | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def get(cls) -> Channels:
        """Return the shared Channels instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    def _connect(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        return get_connection(self._db_path, _SCHEMA)

    def _lock(self, channel_name: str) -> asyncio.Lock:
        lock = self._locks.get(channel_name)
        if lock is None:
            lock = self._locks[channel_name] = asyncio.Lock()
        return lock

    @staticmethod
    async def _fetch_member(db: aiosqlite.Connection, where: str, params: tuple) -> Member | None:
        cursor = await db.execute(f"SELECT {_MEMBER_COLUMNS} FROM members WHERE {where}", params)
        row = await cursor.fetchone()
        return Member.from_row(row) if row else None

    @staticmethod
    async def _save_member(db: aiosqlite.Connection, member: Member) -> None:
        await db.execute(
            """
            UPDATE members SET user_name = ?, is_host = ?, connection_uri = ?,
                peer_member_id = ?, pinned_messages = ?, last_message_time = ?,
                last_message_id = ?
            WHERE channel_name = ? AND id = ?
            """,
            (*member.to_row()[2:], member.channel_name, member.id),
        )

    # -- Lifecycle -------------------------------------------------------------

    async def host_channel(
        self, name: str, member_id: str, connection_uri: str, title: str = ""
    ) -> Channel:
        """Create channel *name* hosted by *member_id* on *connection_uri*."""
        if not is_valid_channel_name(name):
            msg = (
                f"Invalid channel name '{name}': use 8..32 letters, digits, "
                "'-' or '_'"
            )
            raise ValidationError(msg)
        async with self._lock(name), self._connect() as db:
            cursor = await db.execute("SELECT 1 FROM channels WHERE name = ?", (name,))
            if await cursor.fetchone():
                msg = f"Channel '{name}' already exists"
                raise ConflictError(msg)
            existing = await self._fetch_member(
                db, "connection_uri = ? OR id = ?", (connection_uri, member_id)
            )
            if existing is not None:
                msg = f"Already a member of channel '{existing.channel_name}'"
                raise ConflictError(msg)
            channel = Channel(name=name, host_member_id=member_id, title=title)
            host = Member(
                id=member_id,
                channel_name=name,
                user_name=title or member_id,
                is_host=True,
                connection_uri=connection_uri,
            )
            await db.execute(
                "INSERT INTO channels (name, host_member_id, title) VALUES (?, ?, ?)",
                channel.to_row(),
            )
            await db.execute(_INSERT_MEMBER, host.to_row())
            await db.commit()
        logger.info("Channel %s hosted by %s (%s)", name, member_id, connection_uri)
        return channel

    async def join_channel(
        self, name: str, member_id: str, connection_uri: str, user_name: str
    ) -> Member:
        """Register *member_id* as a client of channel *name*."""
        async with self._lock(name), self._connect() as db:
            cursor = await db.execute(
                "SELECT name, host_member_id, title FROM channels WHERE name = ?", (name,)
            )
            row = await cursor.fetchone()
            if row is None:
                msg = f"Channel '{name}' not found"
                raise NotFoundError(msg)
            channel = Channel.from_row(row)
            if await self._fetch_member(db, "channel_name = ? AND id = ?", (name, member_id)):
                msg = f"Member '{member_id}' already joined channel '{name}'"
                raise ConflictError(msg)
            if await self._fetch_member(db, "connection_uri = ?", (connection_uri,)):
                msg = "This connection already belongs to a channel"
                raise ConflictError(msg)
            member = Member(
                id=member_id,
                channel_name=name,
                user_name=user_name,
                connection_uri=connection_uri,
                peer_member_id=channel.host_member_id,
            )
            await db.execute(_INSERT_MEMBER, member.to_row())
            await db.commit()
        logger.info("Member %s joined channel %s (%s)", member_id, name, connection_uri)
        return member

    async def leave_channel(self, connection_uri: str) -> Member:
        """Remove the client reachable on *connection_uri*. Returns its last state."""
        member = await self.find(connection_uri)
        if member.is_host:
            msg = "Host can not leave the channel, use /drop instead"
            raise ValidationError(msg)
        async with self._lock(member.channel_name), self._connect() as db:
            current = await self._fetch_member(db, "connection_uri = ?", (connection_uri,))
            if current is None:
                msg = f"Member on {connection_uri} not found"
                raise NotFoundError(msg)
            await db.execute(
                "DELETE FROM members WHERE channel_name = ? AND id = ?",
                (current.channel_name, current.id),
            )
            host = await self._fetch_member(
                db, "channel_name = ? AND is_host = 1", (current.channel_name,)
            )
            if host is not None and host.pinned_messages.pop(current.id, None) is not None:
                await self._save_member(db, host)
            await db.commit()
        logger.info("Member %s left channel %s", current.id, current.channel_name)
        return current

    async def drop_channel(self, connection_uri: str) -> Member:
        """Remove the channel hosted on *connection_uri* with all its members."""
        member = await self.find(connection_uri)
        if not member.is_host:
            msg = "Only the host can drop a channel"
            raise ValidationError(msg)
        async with self._lock(member.channel_name), self._connect() as db:
            await db.execute("DELETE FROM members WHERE channel_name = ?", (member.channel_name,))
            await db.execute("DELETE FROM channels WHERE name = ?", (member.channel_name,))
            await db.commit()
        logger.info("Channel %s dropped", member.channel_name)
        return member

    async def switch_connection(
        self, channel_name: str, member_id: str, new_connection_uri: str
    ) -> Member:
        """Rebind a member to *new_connection_uri*, keeping membership and peers."""
        async with self._lock(channel_name), self._connect() as db:
            member = await self._fetch_member(
                db, "channel_name = ? AND id = ?", (channel_name, member_id)
            )
            if member is None:
                msg = f"Member '{member_id}' not found in channel '{channel_name}'"
                raise NotFoundError(msg)
            other = await self._fetch_member(db, "connection_uri = ?", (new_connection_uri,))
            if other is not None and (other.channel_name, other.id) != (channel_name, member_id):
                msg = "This connection already belongs to another member"
                raise ConflictError(msg)
            old = member.connection_uri
            member.connection_uri = new_connection_uri
            await self._save_member(db, member)
            await db.commit()
        logger.info("Member %s switched %s -> %s", member_id, old, new_connection_uri)
        return member

    # -- Lookups ---------------------------------------------------------------

    async def get(self, connection_uri: str) -> Member | None:
        """Return the member reachable on *connection_uri*, or None."""
        async with self._connect() as db:
            return await self._fetch_member(db, "connection_uri = ?", (connection_uri,))

    async def get_member(self, channel_name: str, member_id: str) -> Member | None:
        """Return member *member_id* of *channel_name*, or None."""
        async with self._connect() as db:
            return await self._fetch_member(
                db, "channel_name = ? AND id = ?", (channel_name, member_id)
            )

    async def find(self, connection_uri: str) -> Member:
        """Like :meth:`get` but raises ``NotFoundError``."""
        member = await self.get(connection_uri)
        if member is None:
            msg = "Member not found"
            raise NotFoundError(msg)
        return member

    async def find_member(self, channel_name: str, member_id: str) -> Member:
        """Like :meth:`get_member` but raises ``NotFoundError``."""
        member = await self.get_member(channel_name, member_id)
        if member is None:
            msg = f"Member '{member_id}' not found in channel '{channel_name}'"
            raise NotFoundError(msg)
        return member

    # -- Delivery bookkeeping --------------------------------------------------

    async def _update(self, member: Member, mutate) -> None:  # noqa: ANN001
        """Apply *mutate* to the stored record and to the *member* snapshot.

        A member removed in the meantime only has its snapshot updated.
        """
        mutate(member)
        async with self._lock(member.channel_name), self._connect() as db:
            current = await self._fetch_member(
                db, "channel_name = ? AND id = ?", (member.channel_name, member.id)
            )
            if current is None:
                return
            mutate(current)
            await self._save_member(db, current)
            await db.commit()

    async def update_uri(
        self, member: Member, connection_uri: str, last_remote_message_id: str, time: datetime
    ) -> None:
        """Record a delivery over *connection_uri* at *time*."""
        await self._update(
            member, lambda m: m.record_delivery(connection_uri, last_remote_message_id, time)
        )

    async def update_peer(self, member: Member, other_member_id: str) -> None:
        """Set the member's current conversation counterpart."""

        def _set_peer(m: Member) -> None:
            m.peer_member_id = other_member_id

        await self._update(member, _set_peer)

    async def find_unanswered_message(self, from_member: Member, to_member: Member) -> str | None:
        """Return the id of the message *from_member* pinned in *to_member*'s chat."""
        current = await self.get_member(from_member.channel_name, from_member.id)
        source = current if current is not None else from_member
        return source.unanswered_message(to_member.id)

    async def update_unanswered_message(
        self, member: Member, peer: Member, message_id: str
    ) -> None:
        """Remember *message_id* as the message *member* pinned for *peer*."""

        def _pin(m: Member) -> None:
            m.pinned_messages[peer.id] = message_id

        await self._update(member, _pin)

    async def delete_unanswered_message(self, member: Member, peer: Member) -> None:
        """Forget the message *member* pinned for *peer*."""

        def _unpin(m: Member) -> None:
            m.pinned_messages.pop(peer.id, None)

        await self._update(member, _unpin)
