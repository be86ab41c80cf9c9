"""WsConnector — browser clients speaking the JSON array protocol."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from kite.errors import KiteError, NotFoundError, RoutingError, ValidationError
from kite.router.codec import decode, encode
from kite.router.connector import connection_uri, raw_connection
from kite.router.context import RoutingContext
from kite.router.payload import (
    BinaryPayload,
    ErrorResponse,
    MessageAck,
    Ping,
    PlaintextMessage,
    Pong,
    UploadPayload,
)

if TYPE_CHECKING:
    from kite.channels.models import Member
    from kite.channels.store import Channels
    from kite.router.payload import Payload
    from kite.router.router import KiteRouter
    from kite.uploads import UploadSpace

logger = logging.getLogger(__name__)

WS = "ws"
JOINED = "joined channel"


class Session(Protocol):
    """The part of an open WebSocket the connector writes to."""

    async def send_str(self, data: str) -> None: ...


class WsConnector:
    """Terminates WebSocket sessions and routes their messages.

    Sessions are registered with :meth:`attach` when the socket opens and
    removed with :meth:`detach` when it closes; outbound dispatch writes
    to the session named by the destination connection uri.
    """

    def __init__(
        self,
        router: KiteRouter,
        channels: Channels,
        uploads: UploadSpace | None = None,
    ) -> None:
        self._router = router
        self._channels = channels
        self._uploads = uploads
        self._sessions: dict[str, Session] = {}

    @property
    def id(self) -> str:
        return WS

    def connection_uri(self, session_id: str) -> str:
        return connection_uri(WS, session_id)

    # -- Sessions --------------------------------------------------------------

    def attach(self, session_id: str, session: Session) -> None:
        self._sessions[session_id] = session
        logger.debug("WebSocket session %s opened (%d open)", session_id, len(self._sessions))

    def detach(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        logger.debug("WebSocket session %s closed (%d open)", session_id, len(self._sessions))

    async def on_open(
        self,
        session_id: str,
        channel_name: str,
        member_id: str | None = None,
        user_name: str | None = None,
    ) -> Member:
        """Bind the session to a member of *channel_name*.

        A known member id is switched over to this session; an unknown one
        joins the channel and the host is told about it.
        """
        origin = self.connection_uri(session_id)
        member_id = member_id or session_id
        user_name = user_name or member_id
        existing = await self._channels.get_member(channel_name, member_id)
        if existing is not None:
            return await self._channels.switch_connection(channel_name, member_id, origin)

        member = await self._channels.join_channel(channel_name, member_id, origin, user_name)
        ctx = RoutingContext(
            origin_connection=origin,
            from_member=member,
            request=PlaintextMessage(f"✅ {user_name} {JOINED} {channel_name}"),
        )
        await self._router.dispatch(ctx)
        return member

    async def on_close(self, session_id: str) -> None:
        """Leave the channel the session was bound to, if any."""
        self.detach(session_id)
        try:
            member = await self._channels.leave_channel(self.connection_uri(session_id))
        except (NotFoundError, ValidationError):
            return
        logger.info("Member %s left channel %s on disconnect", member.id, member.channel_name)

    # -- Inbound ---------------------------------------------------------------

    async def on_message(self, session_id: str, raw: str) -> str:
        """Decode a text frame, handle it and return the encoded reply."""
        try:
            payload = decode(raw)
        except ValidationError as exc:
            return encode(ErrorResponse(exc.message, exc.code))
        return encode(await self.on_payload(session_id, payload))

    async def on_payload(self, session_id: str, payload: Payload) -> Payload:
        """Handle one decoded client payload and return the reply payload."""
        try:
            if isinstance(payload, Ping):
                return Pong()
            if isinstance(payload, (PlaintextMessage, BinaryPayload)):
                ctx = RoutingContext(
                    origin_connection=self.connection_uri(session_id), request=payload
                )
                await self._router.dispatch(ctx)
                return ctx.response
            if isinstance(payload, UploadPayload):
                return await self._on_upload(session_id, payload)
            msg = f"Unsupported payload {payload.type.value}"
            raise ValidationError(msg)
        except KiteError as exc:
            logger.warning("Session %s: %s", session_id, exc.message)
            return ErrorResponse(exc.message, exc.code)

    async def _on_upload(self, session_id: str, request: UploadPayload) -> UploadPayload:
        if self._uploads is None or not self._uploads.enabled:
            msg = "uploads are disabled"
            raise ValidationError(msg)
        member = await self._channels.find(self.connection_uri(session_id))
        try:
            key = self._uploads.key_for(
                member.channel_name, member.id, request.message_id, request.canonical_uri
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        uri = self._uploads.uri_for(key)
        return UploadPayload(request.message_id, uri, uri)

    # -- Outbound --------------------------------------------------------------

    async def dispatch(self, ctx: RoutingContext) -> None:
        """Write ``ctx.request`` to the destination session as a text frame."""
        session_id = raw_connection(ctx.destination_connection)
        session = self._sessions.get(session_id)
        if session is None:
            msg = f"WebSocket session {session_id} is not connected"
            raise RoutingError(msg)

        request = ctx.request
        if isinstance(request, BinaryPayload):
            await request.resolve_uri()
        await session.send_str(encode(request))
        ctx.response = MessageAck(request.message_id, request.message_id, datetime.now(UTC))
