from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from crm_sync.resources import ResourceDescriptor
from crm_sync.schemas import Entity, Lead, Page, QueryState
from crm_sync.service import InMemoryCollectionService


LEAD_STATUSES = ["new", "contacted", "qualified", "won", "lost"]


class FakeCollectionService(InMemoryCollectionService):
    def __init__(self, records: dict[str, list[Entity]] | None = None) -> None:
        super().__init__(records)
        self.hold_fetches = False
        self.fetch_gates: list[asyncio.Event] = []
        self.fetch_calls: list[QueryState] = []
        self.fetch_failures: list[Exception] = []
        self.update_gate: asyncio.Event | None = None
        self.update_calls: list[tuple[str, str, Any]] = []
        self.update_failures: dict[str, Exception] = {}
        self.delete_gate: asyncio.Event | None = None
        self.delete_calls: list[str] = []
        self.delete_failures: dict[str, Exception] = {}
        self.active_deletes = 0
        self.max_active_deletes = 0

    async def fetch_page(self, resource: ResourceDescriptor, query: QueryState) -> Page:
        self.fetch_calls.append(query)
        failure = self.fetch_failures.pop(0) if self.fetch_failures else None
        if self.hold_fetches:
            gate = asyncio.Event()
            self.fetch_gates.append(gate)
            await gate.wait()
        if failure is not None:
            raise failure
        return await super().fetch_page(resource, query)

    async def update_field(self, resource: ResourceDescriptor, entity_id: str, field: str, value: Any) -> Entity:
        self.update_calls.append((entity_id, field, value))
        if self.update_gate is not None:
            await self.update_gate.wait()
        failure = self.update_failures.get(entity_id)
        if failure is not None:
            raise failure
        return await super().update_field(resource, entity_id, field, value)

    async def delete_entity(self, resource: ResourceDescriptor, entity_id: str) -> None:
        self.delete_calls.append(entity_id)
        self.active_deletes += 1
        self.max_active_deletes = max(self.max_active_deletes, self.active_deletes)
        try:
            if self.delete_gate is not None:
                await self.delete_gate.wait()
            else:
                await asyncio.sleep(0)
            failure = self.delete_failures.get(entity_id)
            if failure is not None:
                raise failure
            await super().delete_entity(resource, entity_id)
        finally:
            self.active_deletes -= 1


class RecordingNotifier:
    def __init__(self) -> None:
        self.successes: list[str] = []
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def success(self, message: str) -> None:
        self.successes.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warning(self, message: str) -> None:
        self.warnings.append(message)


class RecordingDialog:
    def __init__(self, answer: bool = True) -> None:
        self.answer = answer
        self.is_open = False
        self.prompts: list[tuple[str, str]] = []
        self.close_calls = 0

    async def confirm(self, title: str, message: str) -> bool:
        self.prompts.append((title, message))
        self.is_open = self.answer
        return self.answer

    def close(self) -> None:
        self.close_calls += 1
        self.is_open = False


class ScriptedSessionGuard:
    def __init__(self, refresh_result: bool = True, on_refresh: Any = None) -> None:
        self.refresh_result = refresh_result
        self.on_refresh = on_refresh
        self.refresh_calls = 0
        self.redirected = False

    async def refresh(self) -> bool:
        self.refresh_calls += 1
        if self.on_refresh is not None:
            self.on_refresh()
        return self.refresh_result

    def redirect_to_login(self) -> None:
        self.redirected = True


def make_lead(index: int, status: str | None = None, **extra: Any) -> Lead:
    created = datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(days=index)
    return Lead(
        id=f"lead-{index}",
        status=status or LEAD_STATUSES[index % len(LEAD_STATUSES)],
        first_name=f"First{index:02d}",
        last_name=f"Last{index:02d}",
        email=f"lead{index}@example.com",
        created_at=created,
        updated_at=created,
        custom_fields={"score": index},
        **extra,
    )


def make_page(entities: list[Entity], total: int | None = None, page_count: int = 1) -> Page:
    return Page(entities=tuple(entities), total=len(entities) if total is None else total, page_count=page_count)
