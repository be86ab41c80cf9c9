"""Telegram chat id <-> member id encoding.

Chat ids are signed 64-bit integers. Member ids carry them as the unsigned
two's-complement value written in base 36 (digits then lowercase letters),
so negative group ids stay short and free of a sign character.
"""

from __future__ import annotations

import re
import string

from kite.errors import ValidationError

_DIGITS = string.digits + string.ascii_lowercase
_BASE = len(_DIGITS)
_UINT64 = 1 << 64
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_ID_RE = re.compile(r"^[0-9A-Za-z]+$")


def from_long(raw: int) -> str:
    """Encode a signed 64-bit chat id as an unsigned base-36 string."""
    if not _INT64_MIN <= raw <= _INT64_MAX:
        msg = f"Chat id {raw} is out of the 64-bit range"
        raise ValidationError(msg)
    value = raw % _UINT64
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, _BASE)
        digits.append(_DIGITS[rem])
    return "".join(reversed(digits))


def to_long(member_id: str) -> int:
    """Decode a member id produced by :func:`from_long`."""
    if not member_id or not _ID_RE.match(member_id):
        msg = f"Invalid member id {member_id!r}"
        raise ValidationError(msg)
    value = int(member_id, _BASE)
    if value >= _UINT64:
        msg = f"Member id {member_id!r} is out of the 64-bit range"
        raise ValidationError(msg)
    return value - _UINT64 if value > _INT64_MAX else value
