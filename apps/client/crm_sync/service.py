from __future__ import annotations

import asyncio
import math
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Protocol

from crm_sync.context import get_correlation_id
from crm_sync.errors import NotFoundError, ValidationError
from crm_sync.otel import get_tracer
from crm_sync.resources import ResourceDescriptor
from crm_sync.schemas import Entity, Page, QueryState


tracer = get_tracer("crm_sync.service")

_SEARCH_FIELDS = ("name", "first_name", "last_name", "email", "phone")


class CollectionService(Protocol):
    async def fetch_page(self, resource: ResourceDescriptor, query: QueryState) -> Page: ...

    async def update_field(self, resource: ResourceDescriptor, entity_id: str, field: str, value: Any) -> Entity: ...

    async def delete_entity(self, resource: ResourceDescriptor, entity_id: str) -> None: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCollectionService:
    def __init__(self, records: dict[str, Iterable[Entity]] | None = None) -> None:
        self._records: dict[str, dict[str, Entity]] = {}
        for resource_name, entities in (records or {}).items():
            self._records[resource_name] = {entity.id: entity for entity in entities}

    def add(self, resource: ResourceDescriptor, entity: Entity) -> None:
        self._records.setdefault(resource.name, {})[entity.id] = entity

    def all(self, resource: ResourceDescriptor) -> list[Entity]:
        return list(self._records.get(resource.name, {}).values())

    async def fetch_page(self, resource: ResourceDescriptor, query: QueryState) -> Page:
        with tracer.start_as_current_span("collection_service.fetch_page") as span:
            span.set_attribute("resource", resource.name)
            span.set_attribute("page", query.page)
            span.set_attribute("correlation_id", get_correlation_id() or "")
            await asyncio.sleep(0)

            matched = [entity for entity in self.all(resource) if self._matches(entity, query.filters)]
            ordered = self._sorted(matched, query.sort.column, query.sort.direction == "desc")
            total = len(ordered)
            offset = (query.page - 1) * query.page_size
            window = ordered[offset : offset + query.page_size]
            span.set_attribute("total", total)
            return Page(
                entities=tuple(window),
                total=total,
                page_count=math.ceil(total / query.page_size) if total else 0,
            )

    async def update_field(self, resource: ResourceDescriptor, entity_id: str, field: str, value: Any) -> Entity:
        with tracer.start_as_current_span("collection_service.update_field") as span:
            span.set_attribute("resource", resource.name)
            span.set_attribute("entity_id", entity_id)
            span.set_attribute("field", field)
            await asyncio.sleep(0)

            entity = self._require(resource, entity_id)
            if field == "id":
                raise ValidationError("Validation failed", {"id": "id is read-only"})
            if field == resource.bucket_field and value not in resource.buckets:
                raise ValidationError("Validation failed", {field: f"invalid {field} '{value}'"})

            updated = entity.with_field(field, value).model_copy(update={"updated_at": utcnow()})
            self._records[resource.name][entity_id] = updated
            return updated

    async def delete_entity(self, resource: ResourceDescriptor, entity_id: str) -> None:
        with tracer.start_as_current_span("collection_service.delete_entity") as span:
            span.set_attribute("resource", resource.name)
            span.set_attribute("entity_id", entity_id)
            await asyncio.sleep(0)

            self._require(resource, entity_id)
            del self._records[resource.name][entity_id]

    def _require(self, resource: ResourceDescriptor, entity_id: str) -> Entity:
        entity = self._records.get(resource.name, {}).get(entity_id)
        if entity is None:
            raise NotFoundError(f"{resource.model.__name__} not found")
        return entity

    def _matches(self, entity: Entity, filters: dict[str, Any]) -> bool:
        for key, value in filters.items():
            if value is None or value == "":
                continue
            if key == "search":
                needle = str(value).lower()
                haystack = [entity.field_value(name) for name in _SEARCH_FIELDS if entity.declares(name)]
                if not any(needle in str(item).lower() for item in haystack if item is not None):
                    return False
                continue
            if str(entity.field_value(key)) != str(value):
                return False
        return True

    def _sorted(self, entities: list[Entity], column: str, descending: bool) -> list[Entity]:
        present = [entity for entity in entities if entity.field_value(column) is not None]
        missing = [entity for entity in entities if entity.field_value(column) is None]
        present.sort(key=lambda entity: entity.field_value(column), reverse=descending)
        return present + missing
