from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from crm_sync import metrics
from crm_sync.cache import CollectionCache
from crm_sync.context import ensure_correlation_id, get_correlation_id, reset_correlation_id
from crm_sync.errors import SyncError, describe_error
from crm_sync.mutations import MutationCoordinator
from crm_sync.notifications import ConfirmationDialog, Notifier
from crm_sync.otel import get_tracer
from crm_sync.resources import ResourceDescriptor
from crm_sync.schemas import BulkOperationResult, BulkSummary
from crm_sync.selection import SelectionTracker
from crm_sync.service import CollectionService
from crm_sync.session import NullSessionGuard, SessionGuard, call_with_session


logger = logging.getLogger("crm_sync.bulk")
tracer = get_tracer("crm_sync.bulk")

BulkOperation = Callable[[str], Awaitable[Any]]

_PAST_TENSE = {"delete": "deleted", "update": "updated", "archive": "archived"}


class BulkItemError(SyncError):
    default_message = "Operation failed"


def delete_operation(service: CollectionService, resource: ResourceDescriptor) -> BulkOperation:
    async def operation(entity_id: str) -> None:
        await service.delete_entity(resource, entity_id)

    return operation


def field_update_operation(coordinator: MutationCoordinator, field: str, value: Any) -> BulkOperation:
    async def operation(entity_id: str) -> Any:
        outcome = await coordinator.apply(entity_id, field, value, notify=False)
        if not outcome.succeeded:
            raise BulkItemError(outcome.error)
        return outcome.entity

    return operation


class BulkOperationExecutor:
    def __init__(
        self,
        resource: ResourceDescriptor,
        cache: CollectionCache,
        selection: SelectionTracker,
        notifier: Notifier,
        dialog: ConfirmationDialog,
        session: SessionGuard | None = None,
    ) -> None:
        self.resource = resource
        self._cache = cache
        self._selection = selection
        self._notifier = notifier
        self._dialog = dialog
        self._session = session or NullSessionGuard()

    async def run(self, operation: BulkOperation, *, action: str = "delete") -> BulkSummary | None:
        ids = [entity_id for entity_id in self._cache.ids() if self._selection.is_selected(entity_id)]
        if not ids:
            return None

        confirmed = await self._dialog.confirm(
            f"{action.capitalize()} {self.resource.name}",
            f"{action.capitalize()} {len(ids)} selected {self.resource.name}?",
        )
        if not confirmed:
            return None
        return await self.execute(ids, operation, action=action)

    async def execute(self, ids: Iterable[str], operation: BulkOperation, *, action: str = "delete") -> BulkSummary:
        requested = list(dict.fromkeys(ids))
        targets = [entity_id for entity_id in requested if self._cache.contains(entity_id)]
        if not targets:
            self._selection.clear()
            self._dialog.close()
            self._notifier.warning("The selected records are no longer available")
            logger.info(
                "bulk.aborted",
                extra={"resource": self.resource.name, "status": action, "failed_count": len(requested)},
            )
            return BulkSummary(operation=action, aborted=True)

        correlation_token = ensure_correlation_id()
        try:
            with tracer.start_as_current_span("collection.bulk") as span:
                span.set_attribute("correlation_id", get_correlation_id() or "")
                span.set_attribute("resource", self.resource.name)
                span.set_attribute("operation", action)
                span.set_attribute("item_count", len(targets))

                settled = await asyncio.gather(
                    *(call_with_session(self._bind(operation, entity_id), self._session) for entity_id in targets),
                    return_exceptions=True,
                )
                results = tuple(self._to_result(entity_id, value, action) for entity_id, value in zip(targets, settled))
                summary = BulkSummary(operation=action, results=results)
                span.set_attribute("success_count", summary.success_count)
                span.set_attribute("failed_count", summary.failed_count)
        finally:
            reset_correlation_id(correlation_token)

        logger.info(
            "bulk.finished",
            extra={
                "resource": self.resource.name,
                "status": action,
                "success_count": summary.success_count,
                "failed_count": summary.failed_count,
            },
        )
        self._apply_policy(summary, action)
        return summary

    def _apply_policy(self, summary: BulkSummary, action: str) -> None:
        past = _PAST_TENSE.get(action, f"{action}d")
        if not summary.failed_ids:
            self._selection.clear()
            self._dialog.close()
            self._notifier.success(f"{summary.success_count} {self.resource.name} {past}")
            return

        self._selection.select_only(summary.failed_ids)
        if summary.success_count:
            self._notifier.success(f"{summary.success_count} {self.resource.name} {past}")
        self._notifier.error(
            f"Failed to {action} {summary.failed_count} of {len(summary.results)} {self.resource.name}"
        )

    def _bind(self, operation: BulkOperation, entity_id: str) -> Callable[[], Awaitable[Any]]:
        async def call() -> Any:
            return await operation(entity_id)

        return call

    def _to_result(self, entity_id: str, value: Any, action: str) -> BulkOperationResult:
        if isinstance(value, BaseException):
            if not isinstance(value, SyncError):
                logger.error(
                    "bulk.item_unexpected_error",
                    exc_info=(type(value), value, value.__traceback__),
                    extra={"resource": self.resource.name, "entity_id": entity_id, "status": action},
                )
            metrics.record_bulk_item(self.resource.name, action, "failure")
            return BulkOperationResult(id=entity_id, outcome="failure", error_detail=describe_error(value))

        metrics.record_bulk_item(self.resource.name, action, "success")
        return BulkOperationResult(id=entity_id, outcome="success")
