"""TelegramConnector — Telegram Bot API transport for hosts and clients."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote_plus

from telegram import ChatMember, MessageEntity, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError

from kite.config import settings
from kite.errors import KiteError, NotFoundError, RoutingError, ValidationError
from kite.messages.models import MessagesRequest
from kite.router.codec import decode
from kite.router.connector import connection_uri, raw_connection
from kite.router.context import RoutingContext
from kite.router.payload import (
    NOTICE_MESSAGE_ID,
    STATUS_HOST,
    STATUS_INCOMING,
    BinaryPayload,
    MessageAck,
    PlaintextMessage,
)
from kite.tg.commands import Command, SubCommandType, parse_command
from kite.tg.ids import from_long, to_long
from kite.tg.payload import DEFAULT_MIME_TYPE, PHOTO_FILE_NAME, PHOTO_MIME_TYPE, TelegramBinaryMessage

if TYPE_CHECKING:
    import telegram

    from kite.channels.models import Member
    from kite.channels.store import Channels
    from kite.messages.models import HistoryMessage
    from kite.messages.store import Messages
    from kite.router.payload import MessagePayload
    from kite.router.router import KiteRouter

logger = logging.getLogger(__name__)

TG = "tg"
OK = "ok"
SUCCESS = "✅ "
FAIL = "⛔ "
ALLOWED_UPDATES = ["message", "edited_message", "chat_member", "my_chat_member"]
HOST_TAG = "#Host"

# Notice texts.
JOINED = "joined channel"
LEFT = "left channel"
SWITCHED = "switched to Telegram"

# Sent as documents so animations and stickers survive.
_DOCUMENT_IMAGE_TYPES = {"image/gif", "image/webp"}

# Kicked bots are reported as banned rather than left.
_REMOVED_STATUSES = {ChatMember.LEFT, ChatMember.BANNED}

HELP = """
This bot allows to set up support channel in the current chat as a host
or call existing support channel as a client.

/host *channel* set up current chat as a support channel named *channel*
/drop unregister current support channel

/join *channel* start conversation with support channel named *channel*
/leave leave current support channel

/info show the information about your current Channel
*channel* name should contain only alphanumeric letters, -(minus), \\_(underline)
and be 8..32 characters long.

Deep links `?start=join__channel` and `?start=host__channel` do the same in one tap.

Once conversation is established, bot will forward messages from client to host and vice versa.

Host messages will be forwarded to the client who sent the last incoming message.

Use ↰ (Reply To) to respond to other messages.
"""

ANONYMOUS_INFO = """
You don't have any channels at the moment.
To join one, use /join channelName.
For more information about possible actions, use /help.
"""

INFO = """
Hello {name}!

You are a {role} of the {channel} channel.

As a {role}, you have the following privileges:
- Manage channel settings
- Moderate discussions and activities
If you need any further information or assistance use /help.
"""


def send_message_response(
    chat_id: int, text: str, parse_mode: str | None = None
) -> dict[str, Any]:
    """Build an inline ``sendMessage`` webhook response."""
    response: dict[str, Any] = {"method": "sendMessage", "chat_id": chat_id, "text": text}
    if parse_mode:
        response["parse_mode"] = parse_mode
    return response


def user_display_name(user: telegram.User | None) -> str:
    """``"<first> <last>"``, falling back to the username."""
    if user is None:
        return ""
    parts = [p for p in (user.first_name, user.last_name) if p]
    return " ".join(parts) if parts else (user.username or "")


def _bot_transition(update: Update, old: str, new: str) -> bool:
    change = update.my_chat_member
    if change is None:
        return False
    return change.old_chat_member.status == old and change.new_chat_member.status == new


def _bot_removed(update: Update) -> bool:
    change = update.my_chat_member
    return (
        change is not None
        and change.new_chat_member.status in _REMOVED_STATUSES
        and change.old_chat_member.status not in _REMOVED_STATUSES
    )


def _is_command(message: telegram.Message) -> bool:
    entities = message.entities
    return bool(entities) and entities[0].type == MessageEntity.BOT_COMMAND


def _has_no_content(message: telegram.Message) -> bool:
    return bool(message.new_chat_members or message.left_chat_member or message.group_chat_created)


def _member_id_from_hashtag(reply_to: telegram.Message | None) -> str | None:
    """Return the first ``#hashtag`` of a replied-to message, without the ``#``."""
    if reply_to is None or not reply_to.text:
        return None
    hashtags = reply_to.parse_entities([MessageEntity.HASHTAG])
    if not hashtags:
        return None
    first = min(hashtags, key=lambda e: e.offset)
    return hashtags[first][1:]


class TelegramConnector:
    """Bridges Telegram chats into the router.

    Inbound updates arrive through :meth:`on_update` (webhook); outbound
    messages leave through :meth:`dispatch`. Also maintains the pin of the
    first unanswered message for every ordered pair of members.
    """

    def __init__(
        self,
        bot: telegram.Bot,
        router: KiteRouter,
        channels: Channels,
        messages: Messages,
        *,
        webhook_endpoint: str | None = None,
        secret_token: str | None = None,
        ws_api: str | None = None,
    ) -> None:
        self._bot = bot
        self._router = router
        self._channels = channels
        self._messages = messages
        self._webhook_endpoint = (
            webhook_endpoint if webhook_endpoint is not None else settings.telegram_webhook_endpoint
        )
        self._secret_token = (
            secret_token if secret_token is not None else settings.telegram_webhook_secret
        )
        self._ws_api = ws_api or settings.get_ws_api()
        logger.info("Webhook %s, wsApi %s", self._webhook_endpoint, self._ws_api)

    @property
    def id(self) -> str:
        return TG

    def connection_uri(self, member_id: str) -> str:
        return connection_uri(TG, member_id)

    # -- Webhook lifecycle -----------------------------------------------------

    async def initialize(self) -> None:
        """Fetch the bot's own identity; required before any update is parsed."""
        await self._bot.initialize()
        logger.info("Telegram bot @%s ready", self._bot.username)

    async def set_webhook(self) -> str:
        """Register the webhook endpoint with Telegram."""
        logger.debug("Register telegram webhook %s", self._webhook_endpoint)
        ok = await self._bot.set_webhook(
            url=self._webhook_endpoint,
            allowed_updates=ALLOWED_UPDATES,
            secret_token=self._secret_token or None,
        )
        if not ok:
            msg = f"Unable to register webhook {self._webhook_endpoint}"
            raise KiteError(msg)
        return self._webhook_endpoint

    async def close(self) -> None:
        logger.info("close")
        try:
            await self._bot.delete_webhook()
        finally:
            await self._bot.shutdown()

    # -- Inbound ---------------------------------------------------------------

    async def on_update(self, data: dict[str, Any]) -> dict[str, Any] | str:
        """Handle one webhook update. Returns ``"ok"`` or an inline response."""
        update = Update.de_json(data, self._bot)
        if update.my_chat_member is not None:
            try:
                return await self._on_chat_member(update)
            except KiteError as exc:
                logger.warning("Chat member update %s failed: %s", update.update_id, exc.message)
                return OK

        message = update.message or update.channel_post
        if message is None:
            message = update.edited_message or update.edited_channel_post
        if message is None:
            logger.warning("Unhandled update %s", update.update_id)
            return OK

        try:
            if message.pinned_message is not None:
                # Telegram posts a service message for every pin we make.
                await self._bot.delete_message(message.chat.id, message.message_id)
                return OK
            if _has_no_content(message):
                logger.debug("Service message in chat %s", message.chat.title)
                return OK
            if _is_command(message):
                return await self._on_command(message)
            return await self._on_message(message)
        except KiteError as exc:
            logger.warning("Update %s failed: %s", update.update_id, exc.message)
            return send_message_response(message.chat.id, FAIL + exc.message)
        except TelegramError as exc:
            logger.warning("Update %s failed: %s", update.update_id, exc.message)
            return send_message_response(message.chat.id, FAIL + exc.message)
        except Exception:
            logger.exception("Update %s failed", update.update_id)
            return send_message_response(message.chat.id, FAIL + "Something went wrong")

    async def _on_chat_member(self, update: Update) -> dict[str, Any] | str:
        chat_id = update.my_chat_member.chat.id
        if _bot_transition(update, ChatMember.LEFT, ChatMember.MEMBER):
            bot_name = update.my_chat_member.new_chat_member.user.username
            logger.debug("Bot %s was added to chat %s", bot_name, chat_id)
            return send_message_response(chat_id, f"{SUCCESS}You successfully added {bot_name}")
        if _bot_transition(update, ChatMember.MEMBER, ChatMember.ADMINISTRATOR):
            logger.debug("Bot has been made an administrator in chat %s", chat_id)
            return send_message_response(chat_id, f"{SUCCESS}Bot is an Administrator now")
        if _bot_removed(update):
            await self._on_bot_left(chat_id)
            return OK
        logger.warning("Unhandled chat member update %s", update.update_id)
        return OK

    async def _on_bot_left(self, chat_id: int) -> None:
        origin = self.connection_uri(from_long(chat_id))
        try:
            host = await self._channels.drop_channel(origin)
            await self._messages.purge(host.channel_name)
        except NotFoundError:
            logger.debug("Bot left chat %s which had no channel", chat_id)
        except ValidationError:
            client = await self._channels.leave_channel(origin)
            logger.debug("Bot left client chat %s of channel %s", chat_id, client.channel_name)

    # -- Commands --------------------------------------------------------------

    async def _on_command(self, message: telegram.Message) -> dict[str, Any]:
        entity = message.entities[0]
        command_text = message.parse_entity(entity)
        rest = message.text.split(command_text, 1)[1] if command_text in message.text else ""
        cmd = parse_command(command_text, rest)
        chat_id = message.chat.id

        if cmd.name == "/help":
            return send_message_response(chat_id, HELP, ParseMode.MARKDOWN)

        member_id = from_long(chat_id)
        origin = self.connection_uri(member_id)
        if cmd.name == "/info":
            return await self._on_info(chat_id, origin)

        member_name = user_display_name(message.from_user) or message.chat.full_name or member_id
        title = message.chat.title or member_name
        if cmd.name == "/start":
            if not cmd.args:
                return send_message_response(chat_id, HELP, ParseMode.MARKDOWN)
            response = await self._on_start(cmd, chat_id, member_id, origin, member_name, title)
        elif cmd.name == "/join":
            response = await self._on_join(cmd.args, member_id, origin, member_name)
        elif cmd.name == "/host":
            response = await self._on_host(cmd.args, title, member_id, origin)
        elif cmd.name == "/leave":
            response = await self._on_leave(origin)
        elif cmd.name == "/drop":
            host = await self._channels.drop_channel(origin)
            await self._messages.purge(host.channel_name)
            response = f"{SUCCESS}You dropped channel {host.channel_name}"
        else:
            msg = f"Unsupported command {cmd.name}"
            raise ValidationError(msg)
        return send_message_response(chat_id, response)

    async def _on_start(
        self,
        cmd: Command,
        chat_id: int,
        member_id: str,
        origin: str,
        member_name: str,
        title: str,
    ) -> str:
        sub = cmd.sub_command
        if sub is None:
            return await self._on_join(cmd.args, member_id, origin, member_name)
        channel_name = sub.args[0]
        if sub.type is SubCommandType.HOST:
            return await self._on_host(channel_name, title, member_id, origin)
        if len(sub.args) > 1:
            return await self._on_switch_connection(chat_id, channel_name, sub.args[1], origin)
        return await self._on_join(channel_name, member_id, origin, member_name)

    async def _on_info(self, chat_id: int, origin: str) -> dict[str, Any]:
        member = await self._channels.get(origin)
        if member is None:
            return send_message_response(chat_id, ANONYMOUS_INFO, ParseMode.MARKDOWN)
        role = "Host" if member.is_host else "Member"
        text = INFO.format(name=member.user_name, role=role, channel=member.channel_name)
        return send_message_response(chat_id, text, ParseMode.MARKDOWN)

    async def _on_host(self, channel_name: str, title: str, member_id: str, origin: str) -> str:
        await self._channels.host_channel(channel_name, member_id, origin, title)
        url = f"{self._ws_api}?c={quote_plus(channel_name)}"
        return f"{SUCCESS}Created channel {channel_name}. Use URL {url} to configure k1te chat frontend"

    async def _notify_peer(self, origin: str, member: Member, text: str) -> None:
        """Route a system notice from *member* to its peer."""
        ctx = RoutingContext(
            origin_connection=origin,
            from_member=member,
            request=PlaintextMessage(text),
        )
        await self._router.dispatch(ctx)

    async def _on_join(self, channel_name: str, member_id: str, origin: str, member_name: str) -> str:
        client = await self._channels.join_channel(channel_name, member_id, origin, member_name)
        await self._notify_peer(origin, client, f"{SUCCESS}{member_name} {JOINED} {channel_name}")
        return f"{SUCCESS}You joined channel {channel_name}"

    async def _on_leave(self, origin: str) -> str:
        client = await self._channels.leave_channel(origin)
        await self._notify_peer(
            origin, client, f"{SUCCESS}{client.user_name} {LEFT} {client.channel_name}"
        )
        return f"{SUCCESS}You left channel {client.channel_name}"

    async def _on_switch_connection(
        self, chat_id: int, channel_name: str, member_id: str, new_connection: str
    ) -> str:
        member = await self._channels.switch_connection(channel_name, member_id, new_connection)
        await self._notify_peer(new_connection, member, f"{SUCCESS}{member.user_name} {SWITCHED}")

        history = await self._messages.find_all(
            MessagesRequest(member=member, limit=settings.history_limit)
        )
        for message in history:
            await self._replay(chat_id, new_connection, member, message)
        return f"{SUCCESS}You switched to Telegram"

    async def _replay(
        self, chat_id: int, new_connection: str, member: Member, message: HistoryMessage
    ) -> None:
        """Deliver one history message into the member's new chat."""
        payload = decode(message.content)
        incoming = payload.status == STATUS_INCOMING
        try:
            if isinstance(payload, BinaryPayload) and incoming:
                await self._bot.copy_message(
                    chat_id=chat_id,
                    from_chat_id=to_long(member.peer_member_id),
                    message_id=to_long(message.message_id),
                    caption=HOST_TAG,
                    disable_notification=True,
                )
                return
            if isinstance(payload, PlaintextMessage) and incoming:
                payload = PlaintextMessage(
                    f"{HOST_TAG}\n{payload.text}", payload.message_id, payload.created
                )
            ctx = RoutingContext(
                origin_connection=new_connection,
                from_member=member,
                to_member=member,
                destination_connection=member.connection_uri,
                request=payload,
                is_idle=True,
            )
            await self._router.dispatch(ctx)
        except (RoutingError, TelegramError):
            logger.warning("Couldn't replay message %s", message.message_id)
            await self._bot.send_message(chat_id=chat_id, text=FAIL + "Unable to recover this message")

    # -- Messages --------------------------------------------------------------

    def _request_from(self, message: telegram.Message, status: int) -> BinaryPayload | PlaintextMessage:
        msg_id = from_long(message.message_id)
        created = message.date
        document = message.document
        if document is not None:
            return TelegramBinaryMessage(
                message_id=msg_id,
                file_id=document.file_id,
                file_name=document.file_name or document.file_unique_id,
                file_type=document.mime_type or DEFAULT_MIME_TYPE,
                file_size=document.file_size or 0,
                created=created,
                status=status,
                bot=self._bot,
            )
        if message.photo:
            photo = max(message.photo, key=lambda p: p.file_size or 0)
            return TelegramBinaryMessage(
                message_id=msg_id,
                file_id=photo.file_id,
                file_name=message.caption or PHOTO_FILE_NAME,
                file_type=PHOTO_MIME_TYPE,
                file_size=photo.file_size or 0,
                created=created,
                status=status,
                bot=self._bot,
            )
        if message.text is not None:
            return PlaintextMessage(message.text, msg_id, created, status)
        msg = "unsupported message type"
        raise RoutingError(msg)

    async def _on_message(self, message: telegram.Message) -> str:
        chat_id = message.chat.id
        origin = self.connection_uri(from_long(chat_id))
        from_member = await self._channels.find(origin)

        to_member_id = None
        if from_member.is_host:
            to_member_id = _member_id_from_hashtag(message.reply_to_message)
        to_member_id = to_member_id or from_member.peer_member_id
        if not to_member_id:
            msg = "Nobody to deliver this message to yet"
            raise RoutingError(msg)
        to_member = await self._channels.find_member(from_member.channel_name, to_member_id)

        status = STATUS_HOST if from_member.is_host else STATUS_INCOMING
        ctx = RoutingContext(
            origin_connection=origin,
            from_member=from_member,
            to_member=to_member,
            request=self._request_from(message, status),
        )
        await self._router.dispatch(ctx)

        # The recipient's pin in this chat is answered now.
        pinned = await self._channels.find_unanswered_message(to_member, from_member)
        if pinned is not None:
            await self._unpin(chat_id, pinned)
            await self._channels.delete_unanswered_message(to_member, from_member)
            logger.debug("Member %s unpinned message %s", to_member.id, pinned)

        logger.debug("Message #%s delivered", ctx.response.message_id)
        return OK

    # -- Outbound --------------------------------------------------------------

    async def _send(self, chat_id: int, ctx: RoutingContext) -> telegram.Message:
        request = ctx.request
        if isinstance(request, PlaintextMessage):
            text = request.text
            if ctx.to_member.is_host:
                text = f"#{ctx.from_member.id} {ctx.from_member.user_name}\n{text}"
            return await self._bot.send_message(chat_id=chat_id, text=text)
        if isinstance(request, BinaryPayload):
            if isinstance(request, TelegramBinaryMessage):
                file = request.file_id
            else:
                file = await request.resolve_uri()
            if request.is_image and request.file_type not in _DOCUMENT_IMAGE_TYPES:
                return await self._bot.send_photo(chat_id=chat_id, photo=file)
            return await self._bot.send_document(
                chat_id=chat_id, document=file, filename=request.file_name
            )
        msg = f"Unsupported payload {type(request).__name__}"
        raise RoutingError(msg)

    async def dispatch(self, ctx: RoutingContext) -> None:
        """Send ``ctx.request`` to the destination chat and fill ``ctx.response``."""
        chat_id = to_long(raw_connection(ctx.destination_connection))
        logger.debug(">> %s %s", chat_id, ctx.request)
        try:
            sent = await self._send(chat_id, ctx)
        except TelegramError as exc:
            msg = f"{self.id} connector error: {exc.message}"
            raise RoutingError(msg) from exc
        logger.debug("<< %s", sent.message_id)

        from_member, to_member = ctx.from_member, ctx.to_member
        if (from_member.channel_name, from_member.id) != (to_member.channel_name, to_member.id):
            await self._track_pin(chat_id, from_member, to_member, ctx.request, sent)

        delivered = sent.date or datetime.now(UTC)
        ctx.response = MessageAck(ctx.request.message_id, from_long(sent.message_id), delivered)

    async def _track_pin(
        self,
        chat_id: int,
        from_member: Member,
        to_member: Member,
        request: MessagePayload,
        sent: telegram.Message,
    ) -> None:
        """Pin the first unanswered message of a pair; drop the pin when the sender leaves."""
        is_notice = request.message_id == NOTICE_MESSAGE_ID
        is_leave = is_notice and isinstance(request, PlaintextMessage) and LEFT in request.text

        pinned = await self._channels.find_unanswered_message(from_member, to_member)
        if pinned is None:
            if is_notice:
                return
            try:
                await self._bot.pin_chat_message(
                    chat_id=chat_id, message_id=sent.message_id, disable_notification=True
                )
            except TelegramError as exc:
                logger.warning("Unable to pin message in chat %s: %s", chat_id, exc.message)
                return
            await self._channels.update_unanswered_message(
                from_member, to_member, from_long(sent.message_id)
            )
            logger.debug("Member %s pinned message %s", from_member.id, sent.message_id)
        elif is_leave:
            await self._unpin(chat_id, pinned)
            await self._channels.delete_unanswered_message(from_member, to_member)
            logger.debug("Member %s left, pinned message %s removed", from_member.id, pinned)

    async def _unpin(self, chat_id: int, message_id: str) -> None:
        try:
            await self._bot.unpin_chat_message(chat_id=chat_id, message_id=to_long(message_id))
        except TelegramError as exc:
            logger.warning("Unable to unpin message in chat %s: %s", chat_id, exc.message)
