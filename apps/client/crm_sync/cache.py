from __future__ import annotations

from collections.abc import Callable
from typing import Any

from crm_sync.core.events import InProcessEventBus
from crm_sync.errors import EntityNotFoundError
from crm_sync.schemas import Entity, Page


PAGE_REPLACED = "page.replaced"
PAGE_PATCHED = "page.patched"


class CollectionCache:
    """Holds the page currently on screen.

    ``replace`` swaps the page wholesale and opens a new generation; the mutation
    coordinator compares generations so a write resolving after a refetch never
    lands on the newer page. ``apply_patch`` rebuilds the page with a single entity
    changed and every other entity object reused as-is.
    """

    def __init__(self, bus: InProcessEventBus | None = None, page: Page | None = None) -> None:
        self._bus = bus or InProcessEventBus()
        self._page = page or Page()
        self._generation = 0

    @property
    def page(self) -> Page:
        return self._page

    @property
    def entities(self) -> tuple[Entity, ...]:
        return self._page.entities

    @property
    def generation(self) -> int:
        return self._generation

    def ids(self) -> list[str]:
        return self._page.ids()

    def contains(self, entity_id: str) -> bool:
        return self._page.get(entity_id) is not None

    def get(self, entity_id: str) -> Entity | None:
        return self._page.get(entity_id)

    def value_of(self, entity_id: str, field: str) -> Any:
        entity = self._page.get(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity.field_value(field)

    def replace(self, page: Page) -> Page:
        previous = self._page
        self._page = page
        self._generation += 1
        self._bus.publish(
            PAGE_REPLACED,
            {"page": page, "previous_ids": previous.ids(), "generation": self._generation},
        )
        return page

    def apply_patch(self, entity_id: str, field: str, value: Any) -> Page:
        return self._rebuild(entity_id, field, lambda entity: entity.with_field(field, value))

    def unset_field(self, entity_id: str, field: str) -> Page:
        """Drop an extension key from one entity, restoring a record that never had it."""
        return self._rebuild(entity_id, field, lambda entity: entity.without_field(field))

    def _rebuild(self, entity_id: str, field: str, change: Callable[[Entity], Entity]) -> Page:
        index = self._page.index_of(entity_id)
        if index < 0:
            raise EntityNotFoundError(entity_id)

        entities = list(self._page.entities)
        entities[index] = change(entities[index])
        self._page = self._page.model_copy(update={"entities": tuple(entities)})
        self._bus.publish(PAGE_PATCHED, {"page": self._page, "entity_id": entity_id, "field": field})
        return self._page
