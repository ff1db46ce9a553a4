from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from opentelemetry.trace import Status, StatusCode

from crm_sync import metrics
from crm_sync.cache import CollectionCache
from crm_sync.context import ensure_correlation_id, get_correlation_id, reset_correlation_id
from crm_sync.core.config import get_settings
from crm_sync.core.events import InProcessEventBus
from crm_sync.errors import SyncError, describe_error
from crm_sync.notifications import Notifier
from crm_sync.otel import get_tracer
from crm_sync.resources import ResourceDescriptor
from crm_sync.schemas import Entity, PendingMutation
from crm_sync.service import CollectionService
from crm_sync.session import NullSessionGuard, SessionGuard, call_with_session


logger = logging.getLogger("crm_sync.mutations")
tracer = get_tracer("crm_sync.mutations")

MUTATION_SETTLED = "mutation.settled"


class MutationState(str, Enum):
    IDLE = "IDLE"
    OPTIMISTIC_APPLIED = "OPTIMISTIC_APPLIED"
    CONFIRMED = "CONFIRMED"
    ROLLED_BACK = "ROLLED_BACK"
    REJECTED = "REJECTED"


@dataclass
class MutationOutcome:
    state: MutationState
    mutation: PendingMutation | None = None
    entity: Entity | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is MutationState.CONFIRMED


class MutationCoordinator:
    """Optimistic single-field writes with rollback, one in flight per entity."""

    def __init__(
        self,
        resource: ResourceDescriptor,
        cache: CollectionCache,
        service: CollectionService,
        notifier: Notifier,
        bus: InProcessEventBus,
        session: SessionGuard | None = None,
        notify_success: bool | None = None,
    ) -> None:
        self.resource = resource
        self._cache = cache
        self._service = service
        self._notifier = notifier
        self._bus = bus
        self._session = session or NullSessionGuard()
        self._notify_success = get_settings().notify_mutation_success if notify_success is None else notify_success
        self._inflight: dict[str, PendingMutation] = {}
        self._tasks: set[asyncio.Task[MutationOutcome]] = set()

    @property
    def has_pending(self) -> bool:
        return bool(self._inflight)

    @property
    def pending_ids(self) -> frozenset[str]:
        return frozenset(self._inflight)

    def is_locked(self, entity_id: str) -> bool:
        return entity_id in self._inflight

    def state_of(self, entity_id: str) -> MutationState:
        if entity_id in self._inflight:
            return MutationState.OPTIMISTIC_APPLIED
        return MutationState.IDLE

    def pending(self, entity_id: str) -> PendingMutation | None:
        return self._inflight.get(entity_id)

    def begin(
        self, entity_id: str, field: str, new_value: Any, *, notify: bool = True
    ) -> asyncio.Task[MutationOutcome] | None:
        started = self._start(entity_id, field, new_value, notify)
        if isinstance(started, str):
            return None
        return started

    async def apply(self, entity_id: str, field: str, new_value: Any, *, notify: bool = True) -> MutationOutcome:
        started = self._start(entity_id, field, new_value, notify)
        if isinstance(started, str):
            return MutationOutcome(state=MutationState.REJECTED, error=started)
        return await started

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _start(self, entity_id: str, field: str, new_value: Any, notify: bool) -> asyncio.Task[MutationOutcome] | str:
        loop = asyncio.get_running_loop()

        if entity_id in self._inflight:
            return self._reject(entity_id, field, "Another change to this record is still being saved")
        entity = self._cache.get(entity_id)
        if entity is None:
            return self._reject(entity_id, field, "This record is no longer on the page")

        mutation = PendingMutation(
            entity_id=entity_id,
            field=field,
            previous_value=entity.field_value(field),
            new_value=new_value,
            previous_unset=not entity.has_field(field),
        )
        self._cache.apply_patch(entity_id, field, new_value)
        self._inflight[entity_id] = mutation
        generation = self._cache.generation

        task = loop.create_task(self._write(mutation, generation, notify))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _reject(self, entity_id: str, field: str, reason: str) -> str:
        logger.info(
            "mutation.rejected",
            extra={"resource": self.resource.name, "entity_id": entity_id, "field": field, "error": reason},
        )
        metrics.record_mutation(self.resource.name, field, "rejected")
        return reason

    async def _write(self, mutation: PendingMutation, generation: int, notify: bool) -> MutationOutcome:
        correlation_token = ensure_correlation_id()
        try:
            return await self._write_traced(mutation, generation, notify)
        finally:
            reset_correlation_id(correlation_token)

    async def _write_traced(self, mutation: PendingMutation, generation: int, notify: bool) -> MutationOutcome:
        with tracer.start_as_current_span("collection.mutation") as span:
            span.set_attribute("correlation_id", get_correlation_id() or "")
            span.set_attribute("resource", self.resource.name)
            span.set_attribute("entity_id", mutation.entity_id)
            span.set_attribute("field", mutation.field)
            try:
                entity = await call_with_session(
                    lambda: self._service.update_field(
                        self.resource, mutation.entity_id, mutation.field, mutation.new_value
                    ),
                    self._session,
                )
            except Exception as exc:
                if not isinstance(exc, SyncError):
                    logger.exception(
                        "mutation.unexpected_error",
                        extra={"resource": self.resource.name, "entity_id": mutation.entity_id, "field": mutation.field},
                    )
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, describe_error(exc)))
                outcome = self._roll_back(mutation, generation, exc, notify)
            else:
                outcome = self._confirm(mutation, entity, notify)
            finally:
                self._inflight.pop(mutation.entity_id, None)

            span.set_attribute("outcome", outcome.state.value)

        self._bus.publish(
            MUTATION_SETTLED,
            {"entity_id": mutation.entity_id, "field": mutation.field, "state": outcome.state},
        )
        return outcome

    def _confirm(self, mutation: PendingMutation, entity: Entity | None, notify: bool) -> MutationOutcome:
        logger.info(
            "mutation.confirmed",
            extra={
                "resource": self.resource.name,
                "entity_id": mutation.entity_id,
                "field": mutation.field,
                "outcome": MutationState.CONFIRMED.value,
            },
        )
        metrics.record_mutation(self.resource.name, mutation.field, "confirmed")
        if notify and self._notify_success:
            self._notifier.success(f"{self._label(mutation.field)} updated")
        return MutationOutcome(state=MutationState.CONFIRMED, mutation=mutation, entity=entity)

    def _roll_back(self, mutation: PendingMutation, generation: int, exc: BaseException, notify: bool) -> MutationOutcome:
        inverse = mutation.invert()
        if self._cache.generation == generation and self._cache.contains(mutation.entity_id):
            if inverse.new_unset:
                self._cache.unset_field(inverse.entity_id, inverse.field)
            else:
                self._cache.apply_patch(inverse.entity_id, inverse.field, inverse.new_value)
        else:
            logger.debug(
                "mutation.rollback_skipped",
                extra={"resource": self.resource.name, "entity_id": mutation.entity_id, "field": mutation.field},
            )

        reason = describe_error(exc)
        logger.info(
            "mutation.rolled_back",
            extra={
                "resource": self.resource.name,
                "entity_id": mutation.entity_id,
                "field": mutation.field,
                "outcome": MutationState.ROLLED_BACK.value,
                "error": reason,
            },
        )
        metrics.record_mutation(self.resource.name, mutation.field, "rolled_back")
        if notify:
            self._notifier.error(f"Failed to update {self._label(mutation.field).lower()}: {reason}")
        return MutationOutcome(state=MutationState.ROLLED_BACK, mutation=mutation, error=reason)

    def _label(self, field: str) -> str:
        return f"{self.resource.model.__name__} {field.replace('_', ' ')}"
