"""Error taxonomy shared by the router, the stores and the connectors."""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Error categories and the HTTP-like code reported to clients."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    ROUTING = "routing"
    KITE = "kite"

    @property
    def code(self) -> int:
        return _CODES[self]


_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.ROUTING: 500,
    ErrorKind.KITE: 500,
}


class KiteError(Exception):
    """Base error. Also used to wrap infrastructure failures."""

    kind = ErrorKind.KITE

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> int:
        return self.kind.code


class ValidationError(KiteError):
    kind = ErrorKind.VALIDATION


class NotFoundError(KiteError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(KiteError):
    kind = ErrorKind.CONFLICT


class RoutingError(KiteError):
    kind = ErrorKind.ROUTING

    def __init__(self, message: str = "Unable to route message") -> None:
        super().__init__(message)
