"""aiohttp handler for ``GET /ws`` — one WebSocket session per request."""

from __future__ import annotations

import logging
import uuid

from aiohttp import WSMsgType, web

from kite.errors import KiteError
from kite.router.codec import encode
from kite.router.payload import ErrorResponse
from kite.ws.connector import WsConnector

logger = logging.getLogger(__name__)

WS_CONNECTOR = web.AppKey("ws_connector", WsConnector)


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    """Serve a client session.

    Query parameters: ``c`` channel name, ``m`` member id, ``n`` user name.
    Without ``c`` the session stays unbound and can only ping.
    """
    connector = request.app[WS_CONNECTOR]
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)

    session_id = uuid.uuid4().hex
    connector.attach(session_id, ws)
    try:
        channel_name = request.query.get("c")
        if channel_name:
            try:
                await connector.on_open(
                    session_id, channel_name, request.query.get("m"), request.query.get("n")
                )
            except KiteError as exc:
                logger.warning("Session %s rejected: %s", session_id, exc.message)
                await ws.send_str(encode(ErrorResponse(exc.message, exc.code)))
                await ws.close()
                return ws

        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await ws.send_str(await connector.on_message(session_id, msg.data))
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Session %s error: %s", session_id, ws.exception())
    finally:
        await connector.on_close(session_id)
    return ws
