"""RoutingContext — carries one in-flight message through the router."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kite.channels.models import Member
    from kite.router.payload import MessageAck, MessagePayload


@dataclass
class RoutingContext:
    """Context for a single routing request.

    The origin connector supplies ``origin_connection`` and ``request``;
    the router fills ``from_member``, ``to_member`` and
    ``destination_connection`` when they are unset, and the destination
    connector fills ``response``.

    Attributes:
        origin_connection: Connection uri the request arrived on.
        request: TXT or BIN payload being routed.
        destination_connection: Connection uri to deliver to.
        from_member: Sender.
        to_member: Recipient.
        response: Delivery ack from the destination connector.
        is_idle: Deliver only; skip history and peer bookkeeping.
    """

    origin_connection: str | None = None
    request: MessagePayload | None = None
    destination_connection: str | None = None
    from_member: Member | None = None
    to_member: Member | None = None
    response: MessageAck | None = None
    is_idle: bool = False
