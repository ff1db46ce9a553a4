from __future__ import annotations

from collections.abc import Callable, Iterable

from crm_sync.cache import PAGE_REPLACED, CollectionCache
from crm_sync.core.events import InProcessEventBus, InternalEvent


SELECTION_CHANGED = "selection.changed"


class SelectionTracker:
    def __init__(self, cache: CollectionCache, bus: InProcessEventBus) -> None:
        self._cache = cache
        self._bus = bus
        self._selected: frozenset[str] = frozenset()
        self._unsubscribe: Callable[[], None] | None = bus.subscribe(PAGE_REPLACED, self._on_page_replaced)

    @property
    def selected(self) -> frozenset[str]:
        return self._selected

    def __len__(self) -> int:
        return len(self._selected)

    def is_selected(self, entity_id: str) -> bool:
        return entity_id in self._selected

    @property
    def all_selected(self) -> bool:
        page_ids = self._cache.page.id_set()
        return bool(page_ids) and page_ids <= self._selected

    def toggle(self, entity_id: str) -> frozenset[str]:
        if entity_id in self._selected:
            return self._set(self._selected - {entity_id})
        if not self._cache.contains(entity_id):
            return self._selected
        return self._set(self._selected | {entity_id})

    def toggle_select_all(self) -> frozenset[str]:
        page_ids = self._cache.page.id_set()
        if page_ids and page_ids <= self._selected:
            return self._set(self._selected - page_ids)
        return self._set(page_ids)

    def select_only(self, entity_ids: Iterable[str]) -> frozenset[str]:
        page_ids = self._cache.page.id_set()
        return self._set(frozenset(entity_ids) & page_ids)

    def clear(self) -> frozenset[str]:
        return self._set(frozenset())

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_page_replaced(self, event: InternalEvent) -> None:
        page_ids = event.payload["page"].id_set()
        self._set(self._selected & page_ids)

    def _set(self, selected: frozenset[str]) -> frozenset[str]:
        if selected == self._selected:
            return self._selected
        self._selected = selected
        self._bus.publish(SELECTION_CHANGED, {"selected": selected})
        return selected
