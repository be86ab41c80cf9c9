"""Application factory: stores, router, connectors and the HTTP server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from telegram import Bot

from kite.channels.store import Channels
from kite.config import settings
from kite.messages.store import Messages
from kite.router.router import KiteRouter
from kite.server import KiteServer, create_web_app
from kite.tg.connector import TelegramConnector
from kite.uploads import UploadSpace
from kite.ws.connector import WsConnector

logger = logging.getLogger(__name__)


@dataclass
class KiteApp:
    router: KiteRouter
    ws: WsConnector
    tg: TelegramConnector | None
    server: KiteServer
    uploads: UploadSpace | None = None


def create_app(bot: Bot | None = None) -> KiteApp:
    """Wire the stores, the router and every configured connector."""
    channels = Channels.get()
    messages = Messages.get()
    router = KiteRouter(channels, messages)

    uploads = UploadSpace.get() if settings.uploads_enabled() else None
    ws = WsConnector(router, channels, uploads)
    router.register_connector(ws)

    tg = None
    if bot is None and settings.telegram_bot_token:
        bot = Bot(settings.telegram_bot_token)
    if bot is not None:
        tg = TelegramConnector(bot, router, channels, messages)
        router.register_connector(tg)
    else:
        logger.warning("TELEGRAM_BOT_TOKEN is empty — Telegram connector disabled")

    logger.info("Connectors initialized: %s", router.list_connectors())
    server = KiteServer(create_web_app(tg, ws, uploads))
    return KiteApp(router=router, ws=ws, tg=tg, server=server, uploads=uploads)


async def run(app: KiteApp) -> None:
    """Start everything and serve until cancelled."""
    if app.uploads is not None:
        removed = app.uploads.cleanup()
        if removed:
            logger.info("Upload cleanup: removed %d old files", removed)
    if app.tg is not None:
        await app.tg.initialize()
        if settings.telegram_webhook_endpoint:
            await app.tg.set_webhook()
        else:
            logger.warning("TELEGRAM_WEBHOOK_ENDPOINT is empty — webhook not registered")
    await app.server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await app.server.stop()
        if app.tg is not None:
            await app.tg.close()
