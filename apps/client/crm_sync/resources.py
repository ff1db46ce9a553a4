from __future__ import annotations

from dataclasses import dataclass

from crm_sync.core.config import get_settings
from crm_sync.errors import InvalidQueryError
from crm_sync.schemas import Entity, Group, Lead, Product, QueryState, SortDirection, SortSpec


@dataclass(frozen=True)
class ResourceDescriptor:
    name: str
    model: type[Entity]
    list_key: str
    list_path: str
    item_path: str
    update_method: str
    sort_columns: tuple[str, ...]
    temporal_columns: frozenset[str]
    buckets: tuple[str, ...]
    status_path: str | None = None
    bucket_field: str = "status"
    default_sort_column: str = "created_at"

    def default_direction(self, column: str) -> SortDirection:
        return "desc" if column in self.temporal_columns else "asc"

    def ensure_sort_column(self, column: str) -> str:
        if column not in self.sort_columns:
            raise InvalidQueryError(f"unsupported sort column for {self.name}: {column}")
        return column

    def default_query(self, page_size: int | None = None) -> QueryState:
        resolved_page_size = page_size or get_settings().default_page_size
        return QueryState(
            sort=SortSpec(column=self.default_sort_column, direction=self.default_direction(self.default_sort_column)),
            page=1,
            page_size=resolved_page_size,
        )


LEADS = ResourceDescriptor(
    name="leads",
    model=Lead,
    list_key="leads",
    list_path="/leads",
    item_path="/leads/{id}",
    update_method="PATCH",
    status_path="/leads/{id}/status",
    sort_columns=("created_at", "updated_at", "status", "first_name", "last_name"),
    temporal_columns=frozenset({"created_at", "updated_at"}),
    buckets=("new", "contacted", "qualified", "proposal_sent", "negotiation", "won", "lost", "on_hold"),
)

PRODUCTS = ResourceDescriptor(
    name="products",
    model=Product,
    list_key="products",
    list_path="/products",
    item_path="/products/{id}",
    update_method="PUT",
    status_path="/products/{id}/status",
    sort_columns=("created_at", "updated_at", "name", "price"),
    temporal_columns=frozenset({"created_at", "updated_at"}),
    buckets=("active", "archived"),
)

GROUPS = ResourceDescriptor(
    name="groups",
    model=Group,
    list_key="groups",
    list_path="/groups",
    item_path="/product-groups/{id}",
    update_method="PUT",
    sort_columns=("created_at", "updated_at", "name", "start_date", "status"),
    temporal_columns=frozenset({"created_at", "updated_at", "start_date"}),
    buckets=("open", "full", "closed", "cancelled"),
)

RESOURCES: dict[str, ResourceDescriptor] = {item.name: item for item in (LEADS, PRODUCTS, GROUPS)}


def get_resource(name: str) -> ResourceDescriptor:
    try:
        return RESOURCES[name]
    except KeyError:
        raise InvalidQueryError(f"unknown resource: {name}") from None
