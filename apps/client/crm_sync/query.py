from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from crm_sync.core.config import get_settings
from crm_sync.errors import InvalidQueryError
from crm_sync.resources import ResourceDescriptor
from crm_sync.schemas import QueryState, SortSpec


logger = logging.getLogger("crm_sync.query")

QueryListener = Callable[[QueryState], None]


class QueryStateManager:
    def __init__(
        self,
        resource: ResourceDescriptor,
        initial: QueryState | None = None,
        page_size_options: Sequence[int] | None = None,
    ) -> None:
        settings = get_settings()
        self.resource = resource
        self.page_size_options = tuple(
            size for size in (page_size_options or settings.page_size_options) if size <= settings.max_page_size
        )
        state = initial or resource.default_query(settings.default_page_size)
        self._ensure_page_size(state.page_size)
        resource.ensure_sort_column(state.sort.column)
        self._state = state
        self._listeners: list[QueryListener] = []

    @property
    def state(self) -> QueryState:
        return self._state

    def subscribe(self, listener: QueryListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_filter(self, key: str, value: Any) -> QueryState:
        filters = dict(self._state.filters)
        if value is None or value == "":
            filters.pop(key, None)
        else:
            filters[key] = value
        return self._commit(self._state.model_copy(update={"filters": filters, "page": 1}))

    def reset_filters(self) -> QueryState:
        return self._commit(self._state.model_copy(update={"filters": {}, "page": 1}))

    def set_sort(self, column: str) -> QueryState:
        self.resource.ensure_sort_column(column)
        current = self._state.sort
        if column == current.column:
            flipped = "asc" if current.direction == "desc" else "desc"
            return self._commit(self._state.model_copy(update={"sort": SortSpec(column=column, direction=flipped)}))

        sort = SortSpec(column=column, direction=self.resource.default_direction(column))
        return self._commit(self._state.model_copy(update={"sort": sort, "page": 1}))

    def set_page_size(self, page_size: int) -> QueryState:
        self._ensure_page_size(page_size)
        return self._commit(self._state.model_copy(update={"page_size": page_size, "page": 1}))

    def set_page(self, page: int) -> QueryState:
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidQueryError(f"page must be an integer >= 1, got {page!r}")
        return self._commit(self._state.model_copy(update={"page": page}))

    def _ensure_page_size(self, page_size: int) -> None:
        if page_size not in self.page_size_options:
            options = ", ".join(str(item) for item in self.page_size_options)
            raise InvalidQueryError(f"page size must be one of {options}, got {page_size!r}")

    def _commit(self, state: QueryState) -> QueryState:
        if state == self._state:
            return self._state

        self._state = state
        logger.debug(
            "query.changed",
            extra={"resource": self.resource.name, "status": f"page={state.page} sort={state.sort.column}:{state.sort.direction}"},
        )
        for listener in list(self._listeners):
            listener(state)
        return state
