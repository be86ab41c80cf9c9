"""Wire codec — payloads travel as JSON arrays whose first element is the type tag.

Field order per tag is a fixed contract with existing clients::

    ["OK"] ["PING"] ["PONG"]
    ["ERR", reason, code]
    ["ACK", messageId, destinationMessageId, delivered]
    ["TXT", messageId, text, created, status?]
    ["BIN", messageId, uri, fileName, fileType, fileSize, created, status?]
    ["UPL", messageId, canonicalUri, uploadUri?]

Optional trailing fields are omitted rather than sent as null, and a zero
``status`` is never written.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from kite.errors import ValidationError
from kite.router.payload import (
    BinaryMessage,
    BinaryPayload,
    ErrorResponse,
    MessageAck,
    OkResponse,
    Payload,
    PayloadType,
    Ping,
    PlaintextMessage,
    Pong,
    UploadPayload,
)


def format_instant(value: datetime) -> str:
    """Render an instant as UTC ISO-8601 with a ``Z`` suffix.

    Fractional seconds are written only when non-zero, in groups of three
    digits, so ``2024-01-01T00:00:00Z`` survives a decode/encode cycle.
    """
    value = value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    base = value.strftime("%Y-%m-%dT%H:%M:%S")
    micros = value.microsecond
    if micros == 0:
        return f"{base}Z"
    if micros % 1000 == 0:
        return f"{base}.{micros // 1000:03d}Z"
    return f"{base}.{micros:06d}Z"


def parse_instant(value: Any) -> datetime:
    if not isinstance(value, str):
        msg = f"Expected ISO-8601 instant, got {value!r}"
        raise ValidationError(msg)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        msg = f"Invalid instant {value!r}"
        raise ValidationError(msg) from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


# -- Encoding ------------------------------------------------------------------


def _fields(payload: Payload) -> list[Any]:
    if isinstance(payload, (OkResponse, Ping, Pong)):
        return []
    if isinstance(payload, ErrorResponse):
        return [payload.reason, payload.code]
    if isinstance(payload, MessageAck):
        return [
            payload.message_id,
            payload.destination_message_id,
            format_instant(payload.delivered),
        ]
    if isinstance(payload, PlaintextMessage):
        fields = [payload.message_id, payload.text, format_instant(payload.created)]
        if payload.status:
            fields.append(payload.status)
        return fields
    if isinstance(payload, BinaryPayload):
        if payload.uri is None:
            msg = f"Binary message {payload.message_id} must be resolved before encoding"
            raise ValidationError(msg)
        fields = [
            payload.message_id,
            payload.uri,
            payload.file_name,
            payload.file_type,
            payload.file_size,
            format_instant(payload.created),
        ]
        if payload.status:
            fields.append(payload.status)
        return fields
    if isinstance(payload, UploadPayload):
        fields = [payload.message_id, payload.canonical_uri]
        if payload.upload_uri is not None:
            fields.append(payload.upload_uri)
        return fields
    msg = f"No encoder for {type(payload).__name__}"
    raise ValidationError(msg)


def to_array(payload: Payload) -> list[Any]:
    """Encode a payload to its JSON array form."""
    return [payload.type.value, *_fields(payload)]


def encode(payload: Payload) -> str:
    """Encode a payload to a compact JSON string."""
    return json.dumps(to_array(payload), ensure_ascii=False, separators=(",", ":"))


# -- Decoding ------------------------------------------------------------------


def _str(fields: list[Any], index: int, name: str) -> str:
    value = fields[index] if index < len(fields) else None
    if not isinstance(value, str):
        msg = f"Field '{name}' must be a string"
        raise ValidationError(msg)
    return value


def _int(fields: list[Any], index: int, name: str, default: int | None = None) -> int:
    if index >= len(fields) and default is not None:
        return default
    value = fields[index] if index < len(fields) else None
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"Field '{name}' must be an integer"
        raise ValidationError(msg)
    return value


def from_array(data: Any) -> Payload:
    """Decode a payload from its JSON array form."""
    if not isinstance(data, list) or not data:
        msg = "Payload must be a non-empty JSON array"
        raise ValidationError(msg)
    tag, fields = data[0], data[1:]
    try:
        payload_type = PayloadType(tag)
    except ValueError as exc:
        msg = f"Unknown payload type {tag!r}"
        raise ValidationError(msg) from exc

    if payload_type is PayloadType.OK:
        return OkResponse()
    if payload_type is PayloadType.PING:
        return Ping()
    if payload_type is PayloadType.PONG:
        return Pong()
    if payload_type is PayloadType.ERR:
        return ErrorResponse(_str(fields, 0, "reason"), _int(fields, 1, "code"))
    if payload_type is PayloadType.ACK:
        return MessageAck(
            message_id=_str(fields, 0, "messageId"),
            destination_message_id=_str(fields, 1, "destinationMessageId"),
            delivered=parse_instant(_str(fields, 2, "delivered")),
        )
    if payload_type is PayloadType.TXT:
        return PlaintextMessage(
            message_id=_str(fields, 0, "messageId"),
            text=_str(fields, 1, "text"),
            created=parse_instant(_str(fields, 2, "created")),
            status=_int(fields, 3, "status", default=0),
        )
    if payload_type is PayloadType.BIN:
        return BinaryMessage(
            message_id=_str(fields, 0, "messageId"),
            uri=_str(fields, 1, "uri"),
            file_name=_str(fields, 2, "fileName"),
            file_type=_str(fields, 3, "fileType"),
            file_size=_int(fields, 4, "fileSize"),
            created=parse_instant(_str(fields, 5, "created")),
            status=_int(fields, 6, "status", default=0),
        )
    upload_uri = _str(fields, 2, "uploadUri") if len(fields) > 2 else None
    return UploadPayload(
        message_id=_str(fields, 0, "messageId"),
        canonical_uri=_str(fields, 1, "canonicalUri"),
        upload_uri=upload_uri,
    )


def decode(text: str | bytes) -> Payload:
    """Decode a payload from a JSON string."""
    try:
        data = json.loads(text)
    except ValueError as exc:
        msg = "Payload is not valid JSON"
        raise ValidationError(msg) from exc
    return from_array(data)
