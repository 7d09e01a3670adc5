"""Error types raised by the booking services and rendered by the app."""
from __future__ import annotations

from typing import Any


class StudioError(Exception):
    status_code = 500
    code = "server_error"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationError(StudioError):
    status_code = 400
    code = "invalid_payload"


class AuthenticationError(StudioError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(StudioError):
    status_code = 403
    code = "forbidden"


class NotFoundError(StudioError):
    status_code = 404
    code = "not_found"


class InvalidTransitionError(StudioError):
    status_code = 409
    code = "invalid_transition"


class TransactionFailedError(StudioError):
    """A database transaction or collaborator failed; ``detail`` keeps the cause."""

    status_code = 500
    code = "transaction_failed"


class BlobStorageError(StudioError):
    status_code = 502
    code = "upload_failed"
