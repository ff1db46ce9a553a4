from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base error for remote collection operations."""

    default_message = "Something went wrong"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NetworkError(SyncError):
    """Raised when no response reached the client."""

    default_message = "Network error: the server could not be reached"


class ValidationError(SyncError):
    """Raised when the backend rejects the submitted input."""

    default_message = "Validation failed"

    def __init__(self, message: str | None = None, field_errors: dict[str, str] | None = None) -> None:
        self.field_errors = dict(field_errors or {})
        super().__init__(message)


class AuthError(SyncError):
    """Raised when the session has expired or was never established."""

    default_message = "Your session has expired"


class ServerError(SyncError):
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, status_code: int = 500) -> None:
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(ServerError):
    default_message = "Record not found"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message, status_code=404)


class InvalidQueryError(ValueError):
    pass


class EntityNotFoundError(KeyError):
    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(entity_id)


def _field_errors_from_details(details: Any) -> dict[str, str]:
    if isinstance(details, dict):
        return {str(key): str(value) for key, value in details.items()}
    if isinstance(details, list):
        field_errors: dict[str, str] = {}
        for item in details:
            if not isinstance(item, dict):
                continue
            path = item.get("path") or item.get("field") or item.get("loc")
            if isinstance(path, (list, tuple)):
                path = ".".join(str(part) for part in path)
            if path:
                field_errors[str(path)] = str(item.get("message") or item.get("msg") or "invalid")
        return field_errors
    return {}


def error_from_status(status_code: int, payload: Any = None) -> SyncError:
    message: str | None = None
    details: Any = None
    if isinstance(payload, dict):
        raw_message = payload.get("message") or payload.get("detail")
        if isinstance(raw_message, str) and raw_message.strip():
            message = raw_message.strip()
        details = payload.get("details")
        if details is None and isinstance(payload.get("detail"), list):
            details = payload.get("detail")

    if status_code == 401:
        return AuthError(message)
    if status_code in {400, 422}:
        return ValidationError(message, _field_errors_from_details(details))
    if status_code == 404:
        return NotFoundError(message)
    return ServerError(message, status_code=status_code)


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, ValidationError) and exc.field_errors:
        details = "; ".join(f"{field}: {reason}" for field, reason in sorted(exc.field_errors.items()))
        return f"{exc.message} ({details})"
    if isinstance(exc, SyncError):
        return exc.message
    return ServerError.default_message
