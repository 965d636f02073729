from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UPSTREAM = "AI_UPSTREAM_ERROR"
    INTERNAL = "INTERNAL_ERROR"


HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.INTERNAL: 500,
}


class TinyWordsError(Exception):
    """Base error carrying a stable kind that the API layer renders as-is."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_payload(self) -> dict:
        payload: dict = {"code": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(TinyWordsError):
    kind = ErrorKind.VALIDATION


class NotFoundError(TinyWordsError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(TinyWordsError):
    kind = ErrorKind.CONFLICT


class UpstreamError(TinyWordsError):
    kind = ErrorKind.UPSTREAM


class InternalError(TinyWordsError):
    kind = ErrorKind.INTERNAL


def field_error(field: str, reason: str) -> list[dict]:
    return [{"field": field, "reason": reason}]
