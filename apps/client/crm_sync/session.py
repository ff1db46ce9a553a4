from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from crm_sync.errors import AuthError


logger = logging.getLogger("crm_sync.session")

T = TypeVar("T")


class SessionGuard(Protocol):
    async def refresh(self) -> bool: ...

    def redirect_to_login(self) -> None: ...


class NullSessionGuard:
    def __init__(self) -> None:
        self.redirected = False

    async def refresh(self) -> bool:
        return False

    def redirect_to_login(self) -> None:
        self.redirected = True


async def call_with_session(call: Callable[[], Awaitable[T]], guard: SessionGuard) -> T:
    """Run ``call``; on an expired session refresh once and retry once."""
    try:
        return await call()
    except AuthError as exc:
        refreshed = await guard.refresh()
        if not refreshed:
            logger.warning("session.refresh_failed", extra={"error": exc.message})
            guard.redirect_to_login()
            raise

    try:
        return await call()
    except AuthError as exc:
        logger.warning("session.refresh_failed", extra={"error": exc.message})
        guard.redirect_to_login()
        raise
