from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable

from opentelemetry.trace import Status, StatusCode

from crm_sync import metrics
from crm_sync.bulk import BulkOperationExecutor, delete_operation, field_update_operation
from crm_sync.cache import CollectionCache
from crm_sync.context import ensure_correlation_id, get_correlation_id, reset_correlation_id, reset_view_id, set_view_id
from crm_sync.core.events import EventHandler, InProcessEventBus
from crm_sync.drag import DragTransitionController
from crm_sync.errors import SyncError, describe_error
from crm_sync.mutations import MutationCoordinator, MutationOutcome
from crm_sync.notifications import AutoConfirmDialog, ConfirmationDialog, LoggingNotifier, Notifier
from crm_sync.otel import get_tracer
from crm_sync.query import QueryStateManager
from crm_sync.resources import ResourceDescriptor
from crm_sync.schemas import BulkSummary, Page, QueryState
from crm_sync.selection import SelectionTracker
from crm_sync.service import CollectionService
from crm_sync.session import NullSessionGuard, SessionGuard, call_with_session


logger = logging.getLogger("crm_sync.view")
tracer = get_tracer("crm_sync.view")

FETCH_FAILED = "fetch.failed"


class CollectionView:
    """State container for one list screen, created on mount and closed on unmount."""

    def __init__(
        self,
        resource: ResourceDescriptor,
        service: CollectionService,
        *,
        notifier: Notifier | None = None,
        dialog: ConfirmationDialog | None = None,
        session: SessionGuard | None = None,
        initial_query: QueryState | None = None,
        view_id: str | None = None,
    ) -> None:
        self.view_id = view_id or uuid.uuid4().hex
        self.resource = resource
        self._service = service
        self._notifier = notifier or LoggingNotifier()
        self._session = session or NullSessionGuard()

        self.bus = InProcessEventBus()
        self.query = QueryStateManager(resource, initial_query)
        self.cache = CollectionCache(self.bus)
        self.selection = SelectionTracker(self.cache, self.bus)
        self.coordinator = MutationCoordinator(resource, self.cache, service, self._notifier, self.bus, self._session)
        self.drag = DragTransitionController(self.cache, self.coordinator)
        self.bulk = BulkOperationExecutor(
            resource, self.cache, self.selection, self._notifier, dialog or AutoConfirmDialog(), self._session
        )

        self.last_error: str | None = None
        self._issued_seq = 0
        self._applied_seq = 0
        self._fetches: set[asyncio.Task[Page | None]] = set()
        self._closed = False
        self._unsubscribe_query = self.query.subscribe(self._on_query_changed)

    @property
    def page(self) -> Page:
        return self.cache.page

    @property
    def loading(self) -> bool:
        return not self._closed and self._applied_seq < self._issued_seq

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        return self.bus.subscribe(event_name, handler)

    async def refresh(self) -> Page | None:
        if self._closed:
            return None
        return await self._schedule_fetch(self.query.state)

    def update_field(self, entity_id: str, field: str, value: object) -> asyncio.Task[MutationOutcome] | None:
        return self.coordinator.begin(entity_id, field, value)

    async def bulk_delete(self) -> BulkSummary | None:
        summary = await self.bulk.run(delete_operation(self._service, self.resource), action="delete")
        await self._refresh_after(summary)
        return summary

    async def bulk_set_status(self, value: str) -> BulkSummary | None:
        operation = field_update_operation(self.coordinator, self.resource.bucket_field, value)
        summary = await self.bulk.run(operation, action="update")
        await self._refresh_after(summary)
        return summary

    async def wait_idle(self) -> None:
        while self._fetches:
            await asyncio.gather(*list(self._fetches), return_exceptions=True)
        await self.coordinator.wait_idle()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._unsubscribe_query()
        self.selection.detach()
        self.bus.clear()

    async def _refresh_after(self, summary: BulkSummary | None) -> None:
        if summary is not None and summary.success_count and not self._closed:
            await self.refresh()

    def _on_query_changed(self, state: QueryState) -> None:
        self._schedule_fetch(state)

    def _schedule_fetch(self, state: QueryState) -> asyncio.Task[Page | None]:
        loop = asyncio.get_running_loop()
        self._issued_seq += 1
        task = loop.create_task(self._fetch(state, self._issued_seq))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)
        return task

    def _is_stale(self, seq: int) -> bool:
        return self._closed or seq <= self._applied_seq

    def _drop_stale(self, seq: int) -> None:
        logger.debug("fetch.stale_dropped", extra={"resource": self.resource.name, "request_seq": seq})
        metrics.record_fetch(self.resource.name, "stale")

    async def _fetch(self, state: QueryState, seq: int) -> Page | None:
        token = set_view_id(self.view_id)
        correlation_token = ensure_correlation_id()
        started = time.perf_counter()
        try:
            with tracer.start_as_current_span("collection.fetch") as span:
                span.set_attribute("correlation_id", get_correlation_id() or "")
                span.set_attribute("resource", self.resource.name)
                span.set_attribute("request_seq", seq)
                span.set_attribute("page", state.page)
                try:
                    page = await call_with_session(lambda: self._service.fetch_page(self.resource, state), self._session)
                except Exception as exc:
                    if self._is_stale(seq):
                        span.set_attribute("outcome", "stale")
                        self._drop_stale(seq)
                        return None
                    if not isinstance(exc, SyncError):
                        logger.exception("fetch.unexpected_error", extra={"resource": self.resource.name, "request_seq": seq})
                    self._applied_seq = seq
                    self.last_error = describe_error(exc)
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, self.last_error))
                    duration = time.perf_counter() - started
                    logger.warning(
                        "fetch.failed",
                        extra={
                            "resource": self.resource.name,
                            "request_seq": seq,
                            "duration_ms": round(duration * 1000, 2),
                            "error": self.last_error,
                        },
                    )
                    metrics.record_fetch(self.resource.name, "failed", duration)
                    self.bus.publish(FETCH_FAILED, {"request_seq": seq, "error": self.last_error})
                    return None

                if self._is_stale(seq):
                    span.set_attribute("outcome", "stale")
                    self._drop_stale(seq)
                    return None

                self._applied_seq = seq
                self.last_error = None
                self.cache.replace(page)
                duration = time.perf_counter() - started
                span.set_attribute("outcome", "applied")
                logger.info(
                    "fetch.applied",
                    extra={
                        "resource": self.resource.name,
                        "request_seq": seq,
                        "duration_ms": round(duration * 1000, 2),
                        "status": f"{len(page.entities)}/{page.total}",
                    },
                )
                metrics.record_fetch(self.resource.name, "applied", duration)
                return page
        finally:
            reset_correlation_id(correlation_token)
            reset_view_id(token)
