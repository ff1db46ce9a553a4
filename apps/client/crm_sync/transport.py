from __future__ import annotations

import math
from typing import Any

import httpx
from opentelemetry.trace import Status, StatusCode
from pydantic_core import to_jsonable_python

from crm_sync.context import get_correlation_id
from crm_sync.core.config import Settings, get_settings
from crm_sync.errors import NetworkError, ServerError, error_from_status
from crm_sync.otel import get_tracer
from crm_sync.resources import ResourceDescriptor
from crm_sync.schemas import Entity, Page, QueryState


tracer = get_tracer("crm_sync.transport")


class HttpCollectionService:
    """Collection service backed by the CRM REST API (``{"status", "data"}`` envelopes)."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
        tenant_id: str | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.api_base_url,
            timeout=self.settings.request_timeout_seconds,
        )
        self.tenant_id = tenant_id or self.settings.tenant_id

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpCollectionService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def fetch_page(self, resource: ResourceDescriptor, query: QueryState) -> Page:
        data = await self._request("GET", resource.list_path, operation="fetch_page", params=query.to_params())
        if not isinstance(data, dict):
            raise ServerError("Unexpected response from server", status_code=502)

        rows = data.get(resource.list_key) or []
        entities = tuple(resource.model.model_validate(row) for row in rows)
        total = int(data.get("total", len(entities)))
        page_size = int(data.get("page_size") or query.page_size)
        page_count = data.get("total_pages")
        if page_count is None:
            page_count = math.ceil(total / page_size) if total else 0
        return Page(entities=entities, total=total, page_count=int(page_count))

    async def update_field(self, resource: ResourceDescriptor, entity_id: str, field: str, value: Any) -> Entity:
        if field == resource.bucket_field and resource.status_path is not None:
            method, path = "PATCH", resource.status_path.format(id=entity_id)
        else:
            method, path = resource.update_method, resource.item_path.format(id=entity_id)

        data = await self._request(method, path, operation="update_field", json={field: to_jsonable_python(value)})
        return resource.model.model_validate(data)

    async def delete_entity(self, resource: ResourceDescriptor, entity_id: str) -> None:
        await self._request("DELETE", resource.item_path.format(id=entity_id), operation="delete_entity")

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Accept": "application/json"}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-Id"] = correlation_id
        if self.tenant_id:
            headers["X-Tenant-ID"] = self.tenant_id
        return headers

    async def _request(self, method: str, path: str, *, operation: str, **kwargs: Any) -> Any:
        url = f"{self.settings.api_prefix}{path}"
        with tracer.start_as_current_span(f"crm_api.{operation}") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.url", url)
            try:
                response = await self._client.request(method, url, headers=self._headers(), **kwargs)
            except httpx.TransportError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, "network error"))
                raise NetworkError() from exc

            span.set_attribute("http.status_code", response.status_code)
            request_id = response.headers.get("x-request-id")
            if request_id:
                span.set_attribute("request_id", request_id)

            if response.status_code == 204 or not response.content:
                payload: Any = None
            else:
                try:
                    payload = response.json()
                except ValueError:
                    payload = None

            if response.is_error:
                error = error_from_status(response.status_code, payload)
                span.set_status(Status(StatusCode.ERROR, error.message))
                raise error

            if isinstance(payload, dict) and "data" in payload:
                return payload["data"]
            return payload
