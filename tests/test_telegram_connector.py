"""Tests for TelegramConnector — webhook updates, commands, forwarding and pins."""

import itertools
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram.error import TelegramError

from kite.channels.store import Channels
from kite.errors import NotFoundError, RoutingError
from kite.messages.models import MessagesRequest
from kite.messages.store import Messages
from kite.router.codec import decode, encode
from kite.router.payload import BinaryMessage, PlaintextMessage
from kite.router.router import KiteRouter
from kite.tg.connector import HELP, TelegramConnector, user_display_name
from kite.tg.ids import from_long
from kite.tg.payload import TelegramBinaryMessage
from kite.ws.connector import WsConnector

NAME = "support-desk"
HOST_CHAT = 111  # member id "33"
CLIENT_CHAT = 222  # member id "66"
NEW_CHAT = 333  # member id "99"
DATE = 1704067200
T0 = datetime(2024, 1, 1, tzinfo=UTC)

# -- Helpers -----------------------------------------------------------------


class FakeSession:
    def __init__(self) -> None:
        self.frames: list[str] = []

    async def send_str(self, data: str) -> None:
        self.frames.append(data)


def _make_mock_bot() -> AsyncMock:
    """A mock telegram.Bot whose sends echo back a message with a fresh id."""
    bot = AsyncMock()
    bot.defaults = None
    bot.username = "KiteBot"
    ids = itertools.count(1000)

    async def _sent(chat_id, text=None, **kwargs):
        return SimpleNamespace(message_id=next(ids), chat_id=chat_id, text=text, date=T0)

    bot.send_message.side_effect = _sent
    bot.send_photo.side_effect = _sent
    bot.send_document.side_effect = _sent
    bot.get_file.return_value = SimpleNamespace(file_path="https://api.telegram.org/file/bot/f")
    return bot


def _chat(chat_id: int, title: str | None = None) -> dict:
    if title:
        return {"id": chat_id, "type": "group", "title": title}
    return {"id": chat_id, "type": "private", "first_name": "Ann"}


def _message(chat_id: int, text: str | None = None, *, message_id: int = 10, **extra) -> dict:
    message = {
        "message_id": message_id,
        "date": DATE,
        "chat": _chat(chat_id, extra.pop("title", None)),
        "from": {"id": abs(chat_id), "is_bot": False, "first_name": "Ann", "last_name": "Lee"},
    }
    if text is not None:
        message["text"] = text
    message.update(extra)
    return message


def _update(message: dict, key: str = "message", update_id: int = 1) -> dict:
    return {"update_id": update_id, key: message}


def _command(chat_id: int, command: str, args: str = "", **extra) -> dict:
    text = f"{command} {args}".strip()
    entities = [{"type": "bot_command", "offset": 0, "length": len(command)}]
    return _update(_message(chat_id, text, entities=entities, **extra))


def _chat_member_update(chat_id: int, old: dict, new: dict) -> dict:
    return {
        "update_id": 1,
        "my_chat_member": {
            "chat": _chat(chat_id, "Support"),
            "from": {"id": 1, "is_bot": False, "first_name": "Owner"},
            "date": DATE,
            "old_chat_member": old,
            "new_chat_member": new,
        },
    }


_BOT_USER = {"id": 42, "is_bot": True, "first_name": "Kite", "username": "KiteBot"}
_ADMIN_RIGHTS = {
    "can_be_edited": False,
    "is_anonymous": False,
    "can_manage_chat": True,
    "can_delete_messages": True,
    "can_manage_video_chats": False,
    "can_restrict_members": False,
    "can_promote_members": False,
    "can_change_info": False,
    "can_invite_users": True,
    "can_post_stories": False,
    "can_edit_stories": False,
    "can_delete_stories": False,
}


def _text_of(response) -> str:
    assert isinstance(response, dict)
    assert response["method"] == "sendMessage"
    return response["text"]


def _sent_texts(bot: AsyncMock, chat_id: int) -> list[str]:
    return [
        c.kwargs["text"]
        for c in bot.send_message.call_args_list
        if c.kwargs.get("chat_id") == chat_id
    ]


@pytest.fixture
def bot() -> AsyncMock:
    return _make_mock_bot()


@pytest.fixture
def connectors(bot: AsyncMock, channels: Channels, messages: Messages):
    router = KiteRouter(channels, messages)
    tg = TelegramConnector(
        bot,
        router,
        channels,
        messages,
        webhook_endpoint="https://kite.example.com/tg",
        secret_token="s3cret",
        ws_api="wss://kite.example.com/ws",
    )
    ws = WsConnector(router, channels)
    router.register_connector(tg)
    router.register_connector(ws)
    return tg, ws


@pytest.fixture
async def hosted(connectors, channels: Channels):
    """A channel hosted by the Telegram group HOST_CHAT."""
    tg, ws = connectors
    await tg.on_update(_command(HOST_CHAT, "/host", NAME, title="Support"))
    return tg, ws


async def _ws_client(ws: WsConnector, session_id: str = "s1", member_id: str = "abc") -> FakeSession:
    session = FakeSession()
    ws.attach(session_id, session)
    await ws.on_open(session_id, NAME, member_id, member_id)
    return session


# -- Lifecycle ---------------------------------------------------------------


async def test_set_webhook(connectors, bot: AsyncMock) -> None:
    tg, _ = connectors
    assert await tg.set_webhook() == "https://kite.example.com/tg"
    bot.set_webhook.assert_awaited_once_with(
        url="https://kite.example.com/tg",
        allowed_updates=["message", "edited_message", "chat_member", "my_chat_member"],
        secret_token="s3cret",
    )


async def test_close_deletes_webhook(connectors, bot: AsyncMock) -> None:
    tg, _ = connectors
    await tg.close()
    bot.delete_webhook.assert_awaited_once()
    bot.shutdown.assert_awaited_once()


def test_user_display_name() -> None:
    assert user_display_name(SimpleNamespace(first_name="Ann", last_name="Lee", username="a")) == "Ann Lee"
    assert user_display_name(SimpleNamespace(first_name="Ann", last_name=None, username="a")) == "Ann"
    assert user_display_name(SimpleNamespace(first_name="", last_name=None, username="ann")) == "ann"
    assert user_display_name(None) == ""


# -- my_chat_member ----------------------------------------------------------


async def test_bot_added(connectors) -> None:
    tg, _ = connectors
    update = _chat_member_update(
        HOST_CHAT,
        {"status": "left", "user": _BOT_USER},
        {"status": "member", "user": _BOT_USER},
    )
    assert _text_of(await tg.on_update(update)) == "✅ You successfully added KiteBot"


async def test_bot_promoted(connectors) -> None:
    tg, _ = connectors
    update = _chat_member_update(
        HOST_CHAT,
        {"status": "member", "user": _BOT_USER},
        {"status": "administrator", "user": _BOT_USER, **_ADMIN_RIGHTS},
    )
    assert _text_of(await tg.on_update(update)) == "✅ Bot is an Administrator now"


async def test_bot_removed_from_host_chat_drops_channel(hosted, channels: Channels) -> None:
    tg, _ = hosted
    update = _chat_member_update(
        HOST_CHAT,
        {"status": "member", "user": _BOT_USER},
        {"status": "left", "user": _BOT_USER},
    )
    assert await tg.on_update(update) == "ok"
    with pytest.raises(NotFoundError):
        await channels.join_channel(NAME, "zz", "ws:zz", "zz")


async def test_bot_removed_from_unknown_chat(connectors) -> None:
    tg, _ = connectors
    update = _chat_member_update(
        CLIENT_CHAT,
        {"status": "member", "user": _BOT_USER},
        {"status": "left", "user": _BOT_USER},
    )
    assert await tg.on_update(update) == "ok"


async def test_bot_kicked_from_host_chat_drops_channel(hosted, channels: Channels) -> None:
    tg, _ = hosted
    update = _chat_member_update(
        HOST_CHAT,
        {"status": "administrator", "user": _BOT_USER, **_ADMIN_RIGHTS},
        {"status": "kicked", "user": _BOT_USER, "until_date": 0},
    )
    assert await tg.on_update(update) == "ok"
    with pytest.raises(NotFoundError):
        await channels.join_channel(NAME, "zz", "ws:zz", "zz")


async def test_bot_removed_from_client_chat_leaves(hosted, channels: Channels) -> None:
    tg, _ = hosted
    await tg.on_update(_command(CLIENT_CHAT, "/join", NAME))
    update = _chat_member_update(
        CLIENT_CHAT,
        {"status": "member", "user": _BOT_USER},
        {"status": "kicked", "user": _BOT_USER, "until_date": 0},
    )
    assert await tg.on_update(update) == "ok"
    assert await channels.get("tg:66") is None


# -- Service messages --------------------------------------------------------


async def test_pin_notification_is_deleted(connectors, bot: AsyncMock) -> None:
    tg, _ = connectors
    update = _update(_message(HOST_CHAT, message_id=77, pinned_message=_message(HOST_CHAT, "x")))
    assert await tg.on_update(update) == "ok"
    bot.delete_message.assert_awaited_once_with(HOST_CHAT, 77)


async def test_new_members_ignored(connectors, bot: AsyncMock) -> None:
    tg, _ = connectors
    update = _update(
        _message(HOST_CHAT, new_chat_members=[{"id": 5, "is_bot": False, "first_name": "Bo"}])
    )
    assert await tg.on_update(update) == "ok"
    bot.send_message.assert_not_awaited()


async def test_update_without_message(connectors) -> None:
    tg, _ = connectors
    assert await tg.on_update({"update_id": 9}) == "ok"


# -- Commands ----------------------------------------------------------------


async def test_help(connectors) -> None:
    tg, _ = connectors
    response = await tg.on_update(_command(CLIENT_CHAT, "/help"))
    assert response["text"] == HELP
    assert response["parse_mode"] == "Markdown"
    assert response["chat_id"] == CLIENT_CHAT


async def test_start_without_args_shows_help(connectors) -> None:
    tg, _ = connectors
    assert (await tg.on_update(_command(CLIENT_CHAT, "/start")))["text"] == HELP


async def test_host(connectors, channels: Channels) -> None:
    tg, _ = connectors
    response = await tg.on_update(_command(HOST_CHAT, "/host@KiteBot", NAME, title="Support"))
    assert _text_of(response) == (
        "✅ Created channel support-desk. "
        "Use URL wss://kite.example.com/ws?c=support-desk to configure k1te chat frontend"
    )
    host = await channels.find("tg:33")
    assert host.is_host
    assert host.user_name == "Support"


async def test_host_deep_link(connectors, channels: Channels) -> None:
    tg, _ = connectors
    response = await tg.on_update(_command(HOST_CHAT, "/start", f"host__{NAME}", title="Support"))
    assert _text_of(response).startswith("✅ Created channel support-desk")
    assert (await channels.find("tg:33")).is_host


async def test_host_invalid_name(connectors) -> None:
    tg, _ = connectors
    response = await tg.on_update(_command(HOST_CHAT, "/host", "support"))
    assert _text_of(response).startswith("⛔ Invalid channel name")


async def test_host_twice(hosted) -> None:
    tg, _ = hosted
    response = await tg.on_update(_command(NEW_CHAT, "/host", NAME))
    assert _text_of(response) == "⛔ Channel 'support-desk' already exists"


async def test_join_notifies_host(hosted, bot: AsyncMock, channels: Channels) -> None:
    tg, _ = hosted
    response = await tg.on_update(_command(CLIENT_CHAT, "/join", NAME))

    assert _text_of(response) == "✅ You joined channel support-desk"
    assert _sent_texts(bot, HOST_CHAT) == ["#66 Ann Lee\n✅ Ann Lee joined channel support-desk"]
    client = await channels.find("tg:66")
    assert client.peer_member_id == "33"
    # Notices are never pinned nor recorded.
    bot.pin_chat_message.assert_not_awaited()
    assert (await channels.find("tg:33")).peer_member_id is None


async def test_join_via_start(hosted, channels: Channels) -> None:
    tg, _ = hosted
    response = await tg.on_update(_command(CLIENT_CHAT, "/start", NAME))
    assert _text_of(response) == "✅ You joined channel support-desk"
    assert await channels.get("tg:66") is not None


async def test_join_unknown_channel(connectors) -> None:
    tg, _ = connectors
    response = await tg.on_update(_command(CLIENT_CHAT, "/join", "missing-desk"))
    assert _text_of(response) == "⛔ Channel 'missing-desk' not found"


async def test_info(hosted) -> None:
    tg, _ = hosted
    anonymous = await tg.on_update(_command(CLIENT_CHAT, "/info"))
    assert "You don't have any channels" in anonymous["text"]

    info = await tg.on_update(_command(HOST_CHAT, "/info"))
    assert "You are a Host of the support-desk channel" in info["text"]
    assert info["parse_mode"] == "Markdown"


async def test_unknown_command(connectors) -> None:
    tg, _ = connectors
    response = await tg.on_update(_command(CLIENT_CHAT, "/foo"))
    assert _text_of(response) == "⛔ Unsupported command /foo"


async def test_unsupported_sub_command(connectors) -> None:
    tg, _ = connectors
    response = await tg.on_update(_command(CLIENT_CHAT, "/start", "drop__x"))
    assert _text_of(response) == "⛔ Unsupported subCommand drop"


async def test_drop(hosted, channels: Channels, messages: Messages) -> None:
    tg, _ = hosted
    client = await channels.join_channel(NAME, "abc", "ws:s1", "abc")
    await messages.persist(client, "m1", "x", T0)

    response = await tg.on_update(_command(HOST_CHAT, "/drop"))
    assert _text_of(response) == "✅ You dropped channel support-desk"
    with pytest.raises(NotFoundError):
        await channels.join_channel(NAME, "zz", "ws:zz", "zz")
    assert await messages.purge(NAME) == 0


async def test_client_can_not_drop(hosted) -> None:
    tg, _ = hosted
    await tg.on_update(_command(CLIENT_CHAT, "/join", NAME))
    response = await tg.on_update(_command(CLIENT_CHAT, "/drop"))
    assert _text_of(response) == "⛔ Only the host can drop a channel"


# -- Forwarding --------------------------------------------------------------


async def test_ws_client_to_host(hosted, bot: AsyncMock, channels: Channels) -> None:
    _, ws = hosted
    await _ws_client(ws)
    bot.send_message.reset_mock()

    reply = await ws.on_message("s1", '["TXT","m1","hello","2024-01-01T00:00:00Z"]')

    bot.send_message.assert_awaited_once_with(chat_id=HOST_CHAT, text="#abc abc\nhello")
    tg_id = from_long(1001)
    assert decode(reply).message_id == "m1"
    assert decode(reply).destination_message_id == tg_id
    # First unanswered message is pinned silently in the host chat.
    bot.pin_chat_message.assert_awaited_once_with(
        chat_id=HOST_CHAT, message_id=1001, disable_notification=True
    )
    client = await channels.find("ws:s1")
    assert client.pinned_messages == {"33": tg_id}


async def test_second_unanswered_message_is_not_pinned_again(hosted, bot: AsyncMock) -> None:
    _, ws = hosted
    await _ws_client(ws)
    await ws.on_message("s1", '["TXT","m1","one","2024-01-01T00:00:00Z"]')
    await ws.on_message("s1", '["TXT","m2","two","2024-01-01T00:00:01Z"]')
    bot.pin_chat_message.assert_awaited_once()


async def test_client_text_looking_like_notice_keeps_pin(
    hosted, bot: AsyncMock, channels: Channels
) -> None:
    _, ws = hosted
    await _ws_client(ws)
    joined = PlaintextMessage("✅ Bob joined channel support-desk", "m1", T0)
    left = PlaintextMessage("✅ Bob left channel support-desk", "m2", T0)

    await ws.on_message("s1", encode(joined))
    await ws.on_message("s1", encode(left))

    bot.pin_chat_message.assert_awaited_once()
    bot.unpin_chat_message.assert_not_awaited()
    assert (await channels.find("ws:s1")).pinned_messages == {"33": from_long(1001)}


async def test_host_reply_routes_to_last_client(hosted, bot: AsyncMock, channels: Channels) -> None:
    tg, ws = hosted
    session = await _ws_client(ws)
    await ws.on_message("s1", '["TXT","m1","hello","2024-01-01T00:00:00Z"]')
    pinned = (await channels.find("ws:s1")).pinned_messages["33"]
    session.frames.clear()

    assert await tg.on_update(_update(_message(HOST_CHAT, "hi", message_id=55, title="Support"))) == "ok"

    frame = decode(session.frames[0])
    assert isinstance(frame, PlaintextMessage)
    assert frame.text == "hi"
    assert frame.message_id == from_long(55)
    assert frame.status == 2
    # The host answered, so the client's pin in the host chat goes away.
    bot.unpin_chat_message.assert_awaited_once_with(chat_id=HOST_CHAT, message_id=int(pinned, 36))
    assert (await channels.find("ws:s1")).pinned_messages == {}


async def test_reply_to_overrides_peer(hosted, channels: Channels) -> None:
    tg, ws = hosted
    abc = await _ws_client(ws, "s1", "abc")
    xyz = await _ws_client(ws, "s2", "xyz")
    await ws.on_message("s2", '["TXT","x1","from xyz","2024-01-01T00:00:00Z"]')
    await ws.on_message("s1", '["TXT","a1","from abc","2024-01-01T00:00:01Z"]')
    assert (await channels.find("tg:33")).peer_member_id == "abc"
    abc.frames.clear()
    xyz.frames.clear()

    replied = _message(
        HOST_CHAT,
        "#xyz xyz\nfrom xyz",
        message_id=3,
        title="Support",
        entities=[{"type": "hashtag", "offset": 0, "length": 4}],
    )
    update = _update(_message(HOST_CHAT, "answer", title="Support", reply_to_message=replied))
    assert await tg.on_update(update) == "ok"

    assert [decode(f).text for f in xyz.frames] == ["answer"]
    assert abc.frames == []


async def test_edited_message_is_forwarded(hosted, bot: AsyncMock) -> None:
    tg, ws = hosted
    session = await _ws_client(ws)
    await ws.on_message("s1", '["TXT","m1","hello","2024-01-01T00:00:00Z"]')
    session.frames.clear()

    update = _update(_message(HOST_CHAT, "fixed", title="Support"), key="edited_message")
    assert await tg.on_update(update) == "ok"
    assert decode(session.frames[0]).text == "fixed"


async def test_message_from_unknown_chat(connectors) -> None:
    tg, _ = connectors
    response = await tg.on_update(_update(_message(CLIENT_CHAT, "hello")))
    assert _text_of(response) == "⛔ Member not found"


async def test_host_without_peer(hosted) -> None:
    tg, _ = hosted
    response = await tg.on_update(_update(_message(HOST_CHAT, "anyone?", title="Support")))
    assert _text_of(response).startswith("⛔ ")


async def test_send_failure_is_reported(hosted, bot: AsyncMock) -> None:
    tg, _ = hosted
    await tg.on_update(_command(CLIENT_CHAT, "/join", NAME))
    bot.send_message.side_effect = TelegramError("chat not found")

    response = await tg.on_update(_update(_message(CLIENT_CHAT, "hello")))
    assert _text_of(response) == "⛔ tg connector error: chat not found"


async def test_photo_between_telegram_chats_uses_file_id(hosted, bot: AsyncMock) -> None:
    tg, _ = hosted
    await tg.on_update(_command(CLIENT_CHAT, "/join", NAME))
    photo = [
        {"file_id": "small", "file_unique_id": "s", "width": 90, "height": 90, "file_size": 100},
        {"file_id": "big", "file_unique_id": "b", "width": 800, "height": 800, "file_size": 9000},
    ]
    assert await tg.on_update(_update(_message(CLIENT_CHAT, photo=photo))) == "ok"

    bot.send_photo.assert_awaited_once_with(chat_id=HOST_CHAT, photo="big")


async def test_gif_document_sent_as_document(hosted, bot: AsyncMock) -> None:
    tg, _ = hosted
    await tg.on_update(_command(CLIENT_CHAT, "/join", NAME))
    document = {
        "file_id": "gif1",
        "file_unique_id": "g",
        "file_name": "fun.gif",
        "mime_type": "image/gif",
        "file_size": 512,
    }
    assert await tg.on_update(_update(_message(CLIENT_CHAT, document=document))) == "ok"

    bot.send_document.assert_awaited_once_with(chat_id=HOST_CHAT, document="gif1", filename="fun.gif")
    bot.send_photo.assert_not_awaited()


async def test_telegram_file_to_ws_resolves_uri(hosted, bot: AsyncMock, messages: Messages, channels: Channels) -> None:
    tg, ws = hosted
    session = await _ws_client(ws)
    await ws.on_message("s1", '["TXT","m1","hello","2024-01-01T00:00:00Z"]')
    session.frames.clear()
    bot.get_file.return_value = SimpleNamespace(file_path="https://api.telegram.org/file/bot/doc.pdf")

    document = {
        "file_id": "doc1",
        "file_unique_id": "d",
        "file_name": "doc.pdf",
        "mime_type": "application/pdf",
        "file_size": 2048,
    }
    update = _update(_message(HOST_CHAT, message_id=60, title="Support", document=document))
    assert await tg.on_update(update) == "ok"

    frame = decode(session.frames[0])
    assert isinstance(frame, BinaryMessage)
    assert frame.uri == "https://api.telegram.org/file/bot/doc.pdf"
    assert frame.file_name == "doc.pdf"
    assert frame.status == 2
    bot.get_file.assert_awaited_once_with("doc1")

    client = await channels.find("ws:s1")
    stored = decode((await messages.find(client, from_long(60))).content)
    assert stored.uri == frame.uri


async def test_telegram_binary_resolution_failure() -> None:
    bot = _make_mock_bot()
    bot.get_file.side_effect = TelegramError("file is too big")
    payload = TelegramBinaryMessage(
        message_id="1", file_id="f", file_name="a", file_type="image/png", file_size=1, bot=bot
    )
    with pytest.raises(RoutingError, match="file is too big"):
        await payload.resolve_uri()


# -- Leave -------------------------------------------------------------------


async def test_leave_notifies_host_and_unpins(hosted, bot: AsyncMock, channels: Channels) -> None:
    tg, _ = hosted
    await tg.on_update(_command(CLIENT_CHAT, "/join", NAME))
    await tg.on_update(_update(_message(CLIENT_CHAT, "hello")))
    pinned = (await channels.find("tg:66")).pinned_messages["33"]

    response = await tg.on_update(_command(CLIENT_CHAT, "/leave"))

    assert _text_of(response) == "✅ You left channel support-desk"
    assert _sent_texts(bot, HOST_CHAT)[-1] == "#66 Ann Lee\n✅ Ann Lee left channel support-desk"
    bot.unpin_chat_message.assert_awaited_once_with(chat_id=HOST_CHAT, message_id=int(pinned, 36))
    assert await channels.get("tg:66") is None


async def test_host_can_not_leave(hosted) -> None:
    tg, _ = hosted
    response = await tg.on_update(_command(HOST_CHAT, "/leave"))
    assert _text_of(response).startswith("⛔ Host can not leave")


# -- Switch to Telegram ------------------------------------------------------


async def _ws_history(channels: Channels, messages: Messages) -> None:
    client = await channels.join_channel(NAME, "abc", "ws:s1", "abc")
    await messages.persist(client, "a", encode(PlaintextMessage("hello", "m1", T0)), T0)
    image = BinaryMessage(
        message_id="m2",
        uri="https://files/cat.png",
        file_name="cat.png",
        file_type="image/png",
        file_size=10,
        created=T0,
    )
    await messages.persist(client, "b", encode(image), T0 + timedelta(minutes=1))
    reply = PlaintextMessage("hi there", "h1", T0, status=2)
    await messages.persist(client, "h1", encode(reply), T0 + timedelta(minutes=2), True)


async def test_switch_replays_history(hosted, bot: AsyncMock, channels: Channels, messages: Messages) -> None:
    tg, _ = hosted
    await _ws_history(channels, messages)

    response = await tg.on_update(_command(NEW_CHAT, "/start", f"join__{NAME}__abc"))

    assert _text_of(response) == "✅ You switched to Telegram"
    assert (await channels.find("tg:99")).id == "abc"
    assert _sent_texts(bot, HOST_CHAT) == ["#abc abc\n✅ abc switched to Telegram"]
    assert _sent_texts(bot, NEW_CHAT) == ["#Host\nhello", "hi there"]
    bot.copy_message.assert_awaited_once_with(
        chat_id=NEW_CHAT,
        from_chat_id=HOST_CHAT,
        message_id=int("b", 36),
        caption="#Host",
        disable_notification=True,
    )
    # Replays are deliveries only.
    client = await channels.find("tg:99")
    assert len(await messages.find_all(MessagesRequest(member=client))) == 3
    bot.pin_chat_message.assert_not_awaited()


async def test_switch_replay_failure_is_reported(
    hosted, bot: AsyncMock, channels: Channels, messages: Messages
) -> None:
    tg, _ = hosted
    await _ws_history(channels, messages)
    bot.copy_message.side_effect = TelegramError("message to copy not found")

    response = await tg.on_update(_command(NEW_CHAT, "/start", f"join__{NAME}__abc"))

    assert _text_of(response) == "✅ You switched to Telegram"
    assert "⛔ Unable to recover this message" in _sent_texts(bot, NEW_CHAT)


async def test_switch_unknown_member(hosted) -> None:
    tg, _ = hosted
    response = await tg.on_update(_command(NEW_CHAT, "/start", f"join__{NAME}__ghost"))
    assert _text_of(response) == "⛔ Member 'ghost' not found in channel 'support-desk'"
