"""Async SQLite access shared by the channel registry and the history store.

Each operation opens its own ``aiosqlite`` connection. Driver failures are
re-raised as ``KiteError`` (or ``ConflictError`` for constraint violations)
so callers only ever see the router's error taxonomy.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from kite.errors import ConflictError, KiteError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

# Fixed width so the text column sorts chronologically.
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def to_db_time(value: datetime) -> str:
    """Serialize an instant for storage."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(_TIME_FORMAT)


def from_db_time(value: str) -> datetime:
    """Deserialize an instant written by :func:`to_db_time`."""
    return datetime.strptime(value, _TIME_FORMAT).replace(tzinfo=UTC)


async def _open(path: Path, schema: tuple[str, ...]) -> aiosqlite.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(path))
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA busy_timeout=5000")
    for statement in schema:
        await db.execute(statement)
    await db.commit()
    return db


@asynccontextmanager
async def get_connection(
    path: Path, schema: tuple[str, ...] = ()
) -> AsyncIterator[aiosqlite.Connection]:
    """Yield a connection to *path*, creating *schema* statements first.

    Pass ``schema=()`` once the tables are known to exist.
    """
    try:
        db = await _open(path, schema)
    except aiosqlite.Error as exc:
        logger.exception("Unable to open database %s", path)
        msg = "Storage unavailable"
        raise KiteError(msg) from exc
    try:
        yield db
    except aiosqlite.IntegrityError as exc:
        logger.warning("Constraint violation: %s", exc)
        msg = "Conflicting record"
        raise ConflictError(msg) from exc
    except aiosqlite.Error as exc:
        logger.exception("Database operation failed")
        msg = "Storage failure"
        raise KiteError(msg) from exc
    finally:
        await db.close()
