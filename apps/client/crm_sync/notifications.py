from __future__ import annotations

import logging
from typing import Protocol


logger = logging.getLogger("crm_sync.notifications")


class Notifier(Protocol):
    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...


class ConfirmationDialog(Protocol):
    async def confirm(self, title: str, message: str) -> bool: ...

    def close(self) -> None: ...


class LoggingNotifier:
    def success(self, message: str) -> None:
        logger.info("notify.success", extra={"outcome": "success", "status": message})

    def error(self, message: str) -> None:
        logger.warning("notify.error", extra={"outcome": "error", "status": message})

    def warning(self, message: str) -> None:
        logger.warning("notify.warning", extra={"outcome": "warning", "status": message})


class AutoConfirmDialog:
    def __init__(self) -> None:
        self.is_open = False

    async def confirm(self, title: str, message: str) -> bool:
        self.is_open = True
        return True

    def close(self) -> None:
        self.is_open = False
