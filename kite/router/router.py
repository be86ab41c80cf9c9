"""KiteRouter — resolves both ends of a conversation and hands off to a connector."""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from kite.config import settings
from kite.errors import NotFoundError, RoutingError
from kite.router.codec import encode
from kite.router.connector import connector_id
from kite.router.payload import NOTICE_MESSAGE_ID, BinaryMessage, BinaryPayload

if TYPE_CHECKING:
    from collections.abc import Iterable

    from kite.channels.models import Member
    from kite.channels.store import Channels
    from kite.messages.store import Messages
    from kite.router.connector import Connector
    from kite.router.context import RoutingContext
    from kite.router.payload import MessagePayload

logger = logging.getLogger(__name__)

WS = "ws"


class KiteRouter:
    """Routes a message between two channel members.

    Connectors are registered once during startup wiring; the table is
    read-only afterwards. Dispatches for the same ordered pair of members
    are serialized so the destination sees them in acceptance order.
    """

    def __init__(
        self,
        channels: Channels,
        messages: Messages,
        connectors: Iterable[Connector] = (),
    ) -> None:
        self._channels = channels
        self._messages = messages
        self._connectors: dict[str, Connector] = {}
        self._pair_locks: weakref.WeakValueDictionary[tuple[str, str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        for connector in connectors:
            self.register_connector(connector)

    def register_connector(self, connector: Connector) -> None:
        """Register a connector. Raises ValueError on duplicate id."""
        if connector.id in self._connectors:
            msg = f"Connector '{connector.id}' is already registered"
            raise ValueError(msg)
        self._connectors[connector.id] = connector
        logger.info("Registered connector: %s", connector.id)

    def list_connectors(self) -> list[str]:
        return list(self._connectors)

    def _required_connector(self, connection: str) -> Connector:
        cid = connector_id(connection)
        connector = self._connectors.get(cid)
        if connector is None:
            msg = f"No connector with id {cid}"
            raise NotFoundError(msg)
        return connector

    def _pair_lock(self, from_member: Member, to_member: Member) -> asyncio.Lock:
        key = (from_member.channel_name, from_member.id, to_member.id)
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._pair_locks[key] = lock
        return lock

    # -- Resolution ------------------------------------------------------------

    async def _resolve_from(self, ctx: RoutingContext) -> Member | None:
        if ctx.from_member is not None:
            return ctx.from_member
        return await self._channels.get(ctx.origin_connection)

    async def _resolve_to(self, ctx: RoutingContext, from_member: Member) -> Member | None:
        if ctx.to_member is not None:
            return ctx.to_member
        if not from_member.peer_member_id:
            return None
        return await self._channels.get_member(from_member.channel_name, from_member.peer_member_id)

    # -- Dispatch --------------------------------------------------------------

    async def dispatch(self, ctx: RoutingContext) -> None:
        """Deliver ``ctx.request`` and record delivery metadata and history.

        Fills the unset fields of *ctx* in place. Raises ``RoutingError``
        when either end can not be resolved or the connector fails, and
        ``NotFoundError`` when no connector serves the destination.
        """
        if ctx.origin_connection is None:
            msg = "unknown origin"
            raise RoutingError(msg)

        from_member = await self._resolve_from(ctx)
        if from_member is None:
            logger.warning("No member on origin %s", ctx.origin_connection)
            raise RoutingError()
        ctx.from_member = from_member

        to_member = await self._resolve_to(ctx, from_member)
        if to_member is None:
            logger.warning(
                "No peer '%s' for member %s in channel %s",
                from_member.peer_member_id,
                from_member.id,
                from_member.channel_name,
            )
            raise RoutingError()
        ctx.to_member = to_member

        if ctx.destination_connection is None:
            ctx.destination_connection = to_member.connection_uri
        connector = self._required_connector(ctx.destination_connection)

        async with self._pair_lock(from_member, to_member):
            try:
                async with asyncio.timeout(settings.dispatch_timeout):
                    await connector.dispatch(ctx)
            except TimeoutError as exc:
                msg = f"{connector.id} connector timed out"
                raise RoutingError(msg) from exc

            response = ctx.response
            if response is None:
                msg = f"missing response from connector {connector.id}"
                raise RoutingError(msg)
            if ctx.is_idle or response.message_id == NOTICE_MESSAGE_ID:
                return
            await self._record(ctx, from_member, to_member)

    def _message_ids(self, ctx: RoutingContext) -> tuple[str, str]:
        """Pick the remote ids stored for the owner side and the destination side."""
        response = ctx.response
        if connector_id(ctx.origin_connection) == WS:
            return response.destination_message_id, response.destination_message_id
        if connector_id(ctx.destination_connection) == WS:
            return response.message_id, response.message_id
        return response.message_id, response.destination_message_id

    async def _record(self, ctx: RoutingContext, from_member: Member, to_member: Member) -> None:
        owner_message_id, to_message_id = self._message_ids(ctx)
        now = datetime.now(UTC)
        await self._channels.update_uri(from_member, ctx.origin_connection, owner_message_id, now)
        await self._channels.update_uri(to_member, ctx.destination_connection, to_message_id, now)

        content = encode(await _history_payload(ctx.request))
        delivered = ctx.response.delivered
        if from_member.is_host:
            await self._messages.persist(to_member, to_message_id, content, delivered, True)
        else:
            await self._messages.persist(from_member, owner_message_id, content, delivered, False)

        await self._channels.update_peer(from_member, to_member.id)
        await self._channels.update_peer(to_member, from_member.id)


async def _history_payload(request: MessagePayload) -> MessagePayload:
    """Return *request* in a form the codec can store (file uris resolved)."""
    if isinstance(request, BinaryPayload) and not isinstance(request, BinaryMessage):
        uri = await request.resolve_uri()
        return BinaryMessage(
            message_id=request.message_id,
            uri=uri,
            file_name=request.file_name,
            file_type=request.file_type,
            file_size=request.file_size,
            created=request.created,
            status=request.status,
        )
    return request
