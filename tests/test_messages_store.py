"""Tests for the Messages history store."""

from datetime import UTC, datetime, timedelta

import pytest

from kite.channels.models import Member
from kite.channels.store import Channels
from kite.errors import NotFoundError, ValidationError
from kite.messages.models import MessagesRequest
from kite.messages.store import Messages

NAME = "support-desk"
CLIENT_URI = "ws:s1"
T0 = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)


@pytest.fixture
async def client(channels: Channels) -> Member:
    await channels.host_channel(NAME, "33", "tg:33", "Support")
    return await channels.join_channel(NAME, "abc", CLIENT_URI, "Alice")


async def _fill(messages: Messages, owner: Member, count: int) -> None:
    for i in range(count):
        await messages.persist(owner, f"m{i}", f'["TXT","m{i}","t{i}","x"]', T0 + timedelta(minutes=i))


# -- persist / find ----------------------------------------------------------


async def test_persist_and_find(messages: Messages, client: Member) -> None:
    stored = await messages.persist(client, "m1", "content", T0, is_host=True)
    assert stored.id == f"{NAME}:abc"

    fetched = await messages.find(client, "m1")
    assert fetched == stored
    assert fetched.is_host is True
    assert fetched.time == T0


async def test_persist_is_idempotent(messages: Messages, client: Member) -> None:
    await messages.persist(client, "m1", "first", T0)
    await messages.persist(client, "m1", "second", T0)

    history = await messages.find_all(MessagesRequest(member=client))
    assert [m.content for m in history] == ["second"]


async def test_find_missing(messages: Messages, client: Member) -> None:
    with pytest.raises(NotFoundError):
        await messages.find(client, "nope")


async def test_purge_channel(messages: Messages, client: Member) -> None:
    await _fill(messages, client, 3)
    assert await messages.purge(NAME) == 3
    assert await messages.find_all(MessagesRequest(member=client)) == []


# -- find_all ----------------------------------------------------------------


async def test_find_all_ascending(messages: Messages, client: Member) -> None:
    await messages.persist(client, "late", "c", T0 + timedelta(hours=1))
    await messages.persist(client, "early", "a", T0)
    await messages.persist(client, "middle", "b", T0 + timedelta(minutes=30))

    history = await messages.find_all(MessagesRequest(member=client))
    assert [m.message_id for m in history] == ["early", "middle", "late"]


async def test_find_all_limit_keeps_newest(messages: Messages, client: Member) -> None:
    await _fill(messages, client, 15)
    history = await messages.find_all(MessagesRequest(member=client, limit=10))
    assert [m.message_id for m in history] == [f"m{i}" for i in range(5, 15)]


async def test_find_all_rejects_negative_limit(messages: Messages, client: Member) -> None:
    await _fill(messages, client, 3)
    with pytest.raises(ValidationError, match="Invalid limit -1"):
        await messages.find_all(MessagesRequest(member=client, limit=-1))


async def test_find_all_page_cap(messages: Messages, client: Member, monkeypatch) -> None:
    monkeypatch.setattr("kite.messages.store.settings.history_page_cap", 4)
    await _fill(messages, client, 6)
    history = await messages.find_all(MessagesRequest(member=client))
    assert len(history) == 4


async def test_find_all_after_time(messages: Messages, client: Member) -> None:
    await _fill(messages, client, 5)
    history = await messages.find_all(
        MessagesRequest(member=client, last_message_time=T0 + timedelta(minutes=2))
    )
    assert [m.message_id for m in history] == ["m3", "m4"]


async def test_find_all_after_message_id(messages: Messages, client: Member) -> None:
    await _fill(messages, client, 5)
    history = await messages.find_all(MessagesRequest(member=client, last_message_id="m1"))
    assert [m.message_id for m in history] == ["m2", "m3", "m4"]


async def test_find_all_time_wins_over_id(messages: Messages, client: Member) -> None:
    await _fill(messages, client, 5)
    history = await messages.find_all(
        MessagesRequest(
            member=client,
            last_message_time=T0 + timedelta(minutes=3),
            last_message_id="m0",
        )
    )
    assert [m.message_id for m in history] == ["m4"]


async def test_find_all_by_connection_uri(messages: Messages, client: Member) -> None:
    await _fill(messages, client, 2)
    history = await messages.find_all(MessagesRequest(connection_uri=CLIENT_URI))
    assert len(history) == 2


async def test_find_all_requires_owner(messages: Messages) -> None:
    with pytest.raises(ValidationError):
        await messages.find_all(MessagesRequest())


async def test_find_all_unknown_connection(messages: Messages) -> None:
    with pytest.raises(NotFoundError):
        await messages.find_all(MessagesRequest(connection_uri="ws:nobody"))


async def test_find_all_since_last_delivery_on_connection(
    messages: Messages, channels: Channels, client: Member
) -> None:
    await _fill(messages, client, 5)
    await channels.update_uri(client, "tg:99", "x", T0 + timedelta(minutes=1))

    history = await messages.find_all(
        MessagesRequest(member=client, connection_uri="tg:99", last_message_by_connection=True)
    )
    assert [m.message_id for m in history] == ["m2", "m3", "m4"]


async def test_find_all_by_connection_requires_uri(messages: Messages, client: Member) -> None:
    with pytest.raises(ValidationError):
        await messages.find_all(MessagesRequest(member=client, last_message_by_connection=True))


async def test_histories_are_per_owner(
    messages: Messages, channels: Channels, client: Member
) -> None:
    other = await channels.join_channel(NAME, "xyz", "ws:s2", "Bob")
    await messages.persist(client, "m1", "a", T0)
    await messages.persist(other, "m1", "b", T0)

    assert [m.content for m in await messages.find_all(MessagesRequest(member=client))] == ["a"]
    assert [m.content for m in await messages.find_all(MessagesRequest(member=other))] == ["b"]
