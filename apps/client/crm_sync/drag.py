from __future__ import annotations

import asyncio
import logging
from enum import Enum

from crm_sync import metrics
from crm_sync.cache import CollectionCache
from crm_sync.mutations import MutationCoordinator, MutationOutcome
from crm_sync.schemas import Entity


logger = logging.getLogger("crm_sync.drag")


class DragState(str, Enum):
    IDLE = "IDLE"
    DRAGGING = "DRAGGING"
    DROP_PENDING = "DROP_PENDING"


class DragTransitionController:
    """Turns kanban drag gestures into status writes.

    While any write of the view is pending, new drags are ignored for every card,
    not only for the card being saved.
    """

    def __init__(self, cache: CollectionCache, coordinator: MutationCoordinator) -> None:
        self._cache = cache
        self._coordinator = coordinator
        self.resource = coordinator.resource
        self._state = DragState.IDLE
        self._source_id: str | None = None

    @property
    def state(self) -> DragState:
        return self._state

    @property
    def source_id(self) -> str | None:
        return self._source_id

    def columns(self) -> dict[str, list[Entity]]:
        board: dict[str, list[Entity]] = {bucket: [] for bucket in self.resource.buckets}
        for entity in self._cache.entities:
            bucket = entity.field_value(self.resource.bucket_field)
            if bucket in board:
                board[bucket].append(entity)
        return board

    def on_drag_start(self, entity_id: str) -> bool:
        if self._state is not DragState.IDLE:
            return self._ignore(entity_id, "busy")
        if self._coordinator.has_pending:
            return self._ignore(entity_id, "mutation_pending")
        if not self._cache.contains(entity_id):
            return self._ignore(entity_id, "not_on_page")

        self._state = DragState.DRAGGING
        self._source_id = entity_id
        metrics.record_drag(self.resource.name, "started")
        return True

    def on_drag_cancel(self) -> None:
        if self._state is DragState.DRAGGING:
            metrics.record_drag(self.resource.name, "cancelled")
            self._reset()

    def on_drop(self, target_bucket: str) -> asyncio.Task[MutationOutcome] | None:
        if self._state is not DragState.DRAGGING or self._source_id is None:
            return None

        source_id = self._source_id
        entity = self._cache.get(source_id)
        if entity is None:
            self._ignore(source_id, "not_on_page")
            self._reset()
            return None
        if target_bucket not in self.resource.buckets:
            self._ignore(source_id, "unknown_bucket", target_bucket)
            self._reset()
            return None
        if entity.field_value(self.resource.bucket_field) == target_bucket:
            metrics.record_drag(self.resource.name, "same_bucket")
            self._reset()
            return None

        mutation = self._coordinator.begin(source_id, self.resource.bucket_field, target_bucket)
        if mutation is None:
            metrics.record_drag(self.resource.name, "rejected")
            self._reset()
            return None

        self._state = DragState.DROP_PENDING
        metrics.record_drag(self.resource.name, "dropped")
        return asyncio.get_running_loop().create_task(self._settle(mutation))

    async def _settle(self, mutation: asyncio.Task[MutationOutcome]) -> MutationOutcome:
        try:
            return await mutation
        finally:
            self._reset()

    def _ignore(self, entity_id: str, reason: str, target_bucket: str | None = None) -> bool:
        logger.debug(
            "drag.ignored",
            extra={"resource": self.resource.name, "entity_id": entity_id, "status": reason, "target_bucket": target_bucket},
        )
        metrics.record_drag(self.resource.name, "ignored")
        return False

    def _reset(self) -> None:
        self._state = DragState.IDLE
        self._source_id = None
