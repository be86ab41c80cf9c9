"""WebSocket transport for browser clients."""

from kite.ws.connector import WsConnector
from kite.ws.handler import WS_CONNECTOR, websocket_handler

__all__ = ["WS_CONNECTOR", "WsConnector", "websocket_handler"]
