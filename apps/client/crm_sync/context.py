from __future__ import annotations

import uuid
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
view_id_var: ContextVar[str | None] = ContextVar("view_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def ensure_correlation_id() -> Token[str | None]:
    """Keep the caller's correlation id, or start a new one for this unit of work."""
    return correlation_id_var.set(correlation_id_var.get() or str(uuid.uuid4()))


def set_view_id(value: str | None) -> Token[str | None]:
    return view_id_var.set(value)


def reset_view_id(token: Token[str | None]) -> None:
    view_id_var.reset(token)


def get_view_id() -> str | None:
    return view_id_var.get()


def get_log_context() -> dict[str, str | None]:
    return {"correlation_id": get_correlation_id(), "view_id": get_view_id()}
