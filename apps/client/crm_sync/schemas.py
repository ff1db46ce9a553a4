from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


SortDirection = Literal["asc", "desc"]
BulkOutcome = Literal["success", "failure"]


class Entity(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def declares(cls, field: str) -> bool:
        return field in cls.model_fields

    def has_field(self, field: str) -> bool:
        return self.declares(field) or field in self.custom_fields

    def field_value(self, field: str) -> Any:
        if self.declares(field):
            return getattr(self, field)
        return self.custom_fields.get(field)

    def with_field(self, field: str, value: Any) -> Entity:
        if field == "id":
            raise ValueError("entity id is immutable")
        if self.declares(field):
            return self.model_copy(update={field: value})
        custom_fields = dict(self.custom_fields)
        custom_fields[field] = value
        return self.model_copy(update={"custom_fields": custom_fields})

    def without_field(self, field: str) -> Entity:
        if self.declares(field):
            raise ValueError(f"fixed field {field!r} cannot be removed")
        custom_fields = {key: value for key, value in self.custom_fields.items() if key != field}
        return self.model_copy(update={"custom_fields": custom_fields})


class Lead(Entity):
    status: str = "new"
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    source: str | None = None
    product_id: str | None = None
    group_id: str | None = None
    assigned_to: str | None = None


class Product(Entity):
    status: str = "active"
    name: str
    type: str | None = None
    price: Decimal | None = None
    description: str | None = None


class Group(Entity):
    status: str = "open"
    name: str
    product_id: str | None = None
    start_date: date | None = None
    capacity: int | None = None


class SortSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str = Field(min_length=1)
    direction: SortDirection


class QueryState(BaseModel):
    model_config = ConfigDict(frozen=True)

    filters: dict[str, Any] = Field(default_factory=dict)
    sort: SortSpec
    page: int = Field(default=1, ge=1)
    page_size: int = Field(ge=1)

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        for key, value in sorted(self.filters.items()):
            if value is None or value == "":
                continue
            params[key] = str(value)
        params["sort_by"] = self.sort.column
        params["sort_direction"] = self.sort.direction
        params["page"] = str(self.page)
        params["page_size"] = str(self.page_size)
        return params


class Page(BaseModel):
    model_config = ConfigDict(frozen=True)

    entities: tuple[Entity, ...] = ()
    total: int = Field(default=0, ge=0)
    page_count: int = Field(default=0, ge=0)

    def ids(self) -> list[str]:
        return [entity.id for entity in self.entities]

    def id_set(self) -> frozenset[str]:
        return frozenset(entity.id for entity in self.entities)

    def get(self, entity_id: str) -> Entity | None:
        for entity in self.entities:
            if entity.id == entity_id:
                return entity
        return None

    def index_of(self, entity_id: str) -> int:
        for index, entity in enumerate(self.entities):
            if entity.id == entity_id:
                return index
        return -1


class PendingMutation(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    field: str
    previous_value: Any = None
    new_value: Any = None
    # an unset side means the extension key is absent rather than None
    previous_unset: bool = False
    new_unset: bool = False

    def invert(self) -> PendingMutation:
        return PendingMutation(
            entity_id=self.entity_id,
            field=self.field,
            previous_value=self.new_value,
            new_value=self.previous_value,
            previous_unset=self.new_unset,
            new_unset=self.previous_unset,
        )


class BulkOperationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    outcome: BulkOutcome
    error_detail: str | None = None


class BulkSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation: str
    results: tuple[BulkOperationResult, ...] = ()
    aborted: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.outcome == "success")

    @property
    def failed_ids(self) -> list[str]:
        return [result.id for result in self.results if result.outcome == "failure"]

    @property
    def failed_count(self) -> int:
        return len(self.failed_ids)
