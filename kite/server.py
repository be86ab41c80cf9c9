"""Async HTTP server: Telegram webhook, WebSocket endpoint and uploaded files.

Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from kite.config import settings
from kite.tg.connector import TelegramConnector
from kite.uploads import UploadSpace
from kite.ws.handler import WS_CONNECTOR, websocket_handler

if TYPE_CHECKING:
    from kite.ws.connector import WsConnector

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

TG_CONNECTOR = web.AppKey("tg_connector", TelegramConnector)
UPLOADS = web.AppKey("uploads", UploadSpace)
WEBHOOK_SECRET = web.AppKey("webhook_secret", str)


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


async def _handle_telegram(request: web.Request) -> web.Response:
    """POST /tg — one Telegram update; the reply may carry an inline method call."""
    secret = request.app[WEBHOOK_SECRET]
    if secret and request.headers.get(SECRET_HEADER, "") != secret:
        logger.warning("Telegram webhook rejected: invalid secret")
        return web.json_response({"error": "unauthorized"}, status=401)

    try:
        payload: dict[str, Any] = await request.json()
    except ValueError:
        logger.warning("Telegram webhook bad request: invalid JSON")
        return web.json_response({"error": "invalid JSON"}, status=400)
    if not isinstance(payload, dict):
        return web.json_response({"error": "invalid update"}, status=400)

    response = await request.app[TG_CONNECTOR].on_update(payload)
    return web.json_response(response)


async def _put_file(request: web.Request) -> web.Response:
    """PUT /files/{path} — store the bytes of an upload announced over UPL."""
    uploads = request.app[UPLOADS]
    name = request.match_info["path"]
    data = await request.read()
    try:
        uploads.write(name, data)
    except ValueError as exc:
        logger.warning("Upload %s rejected: %s", name, exc)
        return web.json_response({"error": str(exc)}, status=400)
    return web.json_response({"ok": True}, status=201)


async def _get_file(request: web.Request) -> web.StreamResponse:
    """GET /files/{path} — serve a stored upload."""
    uploads = request.app[UPLOADS]
    name = request.match_info["path"]
    try:
        path = uploads.resolve(name)
    except ValueError:
        raise web.HTTPBadRequest() from None
    if not path.is_file():
        raise web.HTTPNotFound()
    return web.FileResponse(path)


def create_web_app(
    tg: TelegramConnector | None,
    ws: WsConnector,
    uploads: UploadSpace | None = None,
    webhook_secret: str | None = None,
) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(client_max_size=64 * 1024 * 1024)
    app.router.add_get("/health", _health)

    app[WS_CONNECTOR] = ws
    app.router.add_get("/ws", websocket_handler)

    if tg is not None:
        app[TG_CONNECTOR] = tg
        app[WEBHOOK_SECRET] = (
            webhook_secret if webhook_secret is not None else settings.telegram_webhook_secret
        )
        app.router.add_post("/tg", _handle_telegram)

    if uploads is not None and uploads.enabled:
        app[UPLOADS] = uploads
        app.router.add_put("/files/{path:.+}", _put_file)
        app.router.add_get("/files/{path:.+}", _get_file)
        logger.info("Upload routes registered at /files")

    return app


class KiteServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        app: web.Application,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.app = app
        self.host = host or settings.server_host
        self.port = port or settings.server_port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Kite server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Kite server stopped")
