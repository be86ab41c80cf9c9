"""TelegramBinaryMessage — a file that already lives on Telegram's servers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from telegram.error import TelegramError

from kite.errors import RoutingError
from kite.router.payload import BinaryPayload

if TYPE_CHECKING:
    import telegram

PHOTO_FILE_NAME = "image.jpg"
PHOTO_MIME_TYPE = "image/jpeg"
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(kw_only=True)
class TelegramBinaryMessage(BinaryPayload):
    """Binary payload referenced by Telegram ``file_id``.

    Re-sending inside Telegram uses ``file_id`` directly. The download uri
    is only needed when the file leaves Telegram and is fetched with
    :meth:`resolve_uri` (one ``getFile`` call, cached afterwards).
    """

    file_id: str
    bot: telegram.Bot | None = field(default=None, repr=False, compare=False)

    async def resolve_uri(self) -> str:
        if self.uri is None:
            if self.bot is None:
                msg = f"Unable to resolve file {self.file_id}: no bot"
                raise RoutingError(msg)
            try:
                file = await self.bot.get_file(self.file_id)
            except TelegramError as exc:
                msg = f"Unable to resolve file {self.file_id}: {exc.message}"
                raise RoutingError(msg) from exc
            self.uri = file.file_path
        return self.uri
