"""Payload model — the closed set of messages exchanged with clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

# Message id of system notices (join/leave/switch); never persisted.
NOTICE_MESSAGE_ID = "-"

STATUS_INCOMING = 0
STATUS_HOST = 2


def _now() -> datetime:
    return datetime.now(UTC)


class PayloadType(str, Enum):
    """Wire type tags. The tag is the first element of every encoded array."""

    OK = "OK"
    ERR = "ERR"
    ACK = "ACK"
    TXT = "TXT"
    BIN = "BIN"
    UPL = "UPL"
    PING = "PING"
    PONG = "PONG"


@dataclass
class OkResponse:
    type = PayloadType.OK


@dataclass
class Ping:
    type = PayloadType.PING


@dataclass
class Pong:
    type = PayloadType.PONG


@dataclass
class ErrorResponse:
    reason: str
    code: int = 500

    type = PayloadType.ERR


@dataclass
class MessageAck:
    """Delivery receipt filled in by the destination connector.

    Attributes:
        message_id: Id of the request as the origin knows it.
        destination_message_id: Id assigned by the destination transport.
        delivered: When the destination accepted the message.
    """

    message_id: str
    destination_message_id: str
    delivered: datetime

    type = PayloadType.ACK


@dataclass
class PlaintextMessage:
    text: str
    message_id: str = NOTICE_MESSAGE_ID
    created: datetime = field(default_factory=_now)
    status: int = STATUS_INCOMING

    type = PayloadType.TXT


@dataclass(kw_only=True)
class BinaryPayload:
    """Common shape of file messages.

    ``uri`` may be unknown until :meth:`resolve_uri` is awaited; transports
    that can re-send a file by reference never need to resolve it.
    """

    message_id: str
    file_name: str
    file_type: str
    file_size: int
    created: datetime = field(default_factory=_now)
    status: int = STATUS_INCOMING
    uri: str | None = None

    type = PayloadType.BIN

    @property
    def is_image(self) -> bool:
        return self.file_type.startswith("image/")

    async def resolve_uri(self) -> str:
        if self.uri is None:
            msg = f"Binary message {self.message_id} has no uri"
            raise ValueError(msg)
        return self.uri


@dataclass(kw_only=True)
class BinaryMessage(BinaryPayload):
    """File message whose content lives at a known ``uri``."""

    uri: str


@dataclass
class UploadPayload:
    """Upload handshake.

    Client -> server: ``canonical_uri`` carries the requested file name.
    Server -> client: ``canonical_uri`` is where the file will be served,
    ``upload_uri`` is where to PUT its bytes.
    """

    message_id: str
    canonical_uri: str
    upload_uri: str | None = None

    type = PayloadType.UPL


MessagePayload = PlaintextMessage | BinaryPayload
Payload = (
    OkResponse
    | Ping
    | Pong
    | ErrorResponse
    | MessageAck
    | PlaintextMessage
    | BinaryPayload
    | UploadPayload
)
