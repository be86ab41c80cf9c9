"""Routing core: payloads, wire codec, routing context and the router."""

from kite.router.connector import Connector, connection_uri, connector_id, raw_connection
from kite.router.context import RoutingContext
from kite.router.router import KiteRouter

__all__ = [
    "Connector",
    "KiteRouter",
    "RoutingContext",
    "connection_uri",
    "connector_id",
    "raw_connection",
]
