"""Connector protocol — interface for every transport the router can deliver to."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from kite.errors import RoutingError

if TYPE_CHECKING:
    from kite.router.context import RoutingContext

_SEPARATOR = ":"


@runtime_checkable
class Connector(Protocol):
    """Protocol that all connectors must satisfy."""

    @property
    def id(self) -> str:
        """Short connector id used as the connection uri prefix (e.g. 'tg', 'ws')."""
        ...

    async def dispatch(self, ctx: RoutingContext) -> None:
        """Deliver ``ctx.request`` to ``ctx.destination_connection`` and set ``ctx.response``."""
        ...


def connection_uri(connector_id: str, raw_connection: str) -> str:
    """Build ``<connectorId>:<rawConnection>``."""
    return f"{connector_id}{_SEPARATOR}{raw_connection}"


def connector_id(uri: str) -> str:
    """Return the connector id prefix of a connection uri."""
    prefix, sep, _ = uri.partition(_SEPARATOR)
    if not sep or not prefix:
        msg = f"Malformed connection uri {uri!r}"
        raise RoutingError(msg)
    return prefix


def raw_connection(uri: str) -> str:
    """Return the transport-specific part of a connection uri."""
    _, sep, raw = uri.partition(_SEPARATOR)
    if not sep or not raw:
        msg = f"Malformed connection uri {uri!r}"
        raise RoutingError(msg)
    return raw
