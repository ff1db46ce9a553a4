from __future__ import annotations

import asyncio

import pytest

from crm_sync.bulk import BulkOperationExecutor, delete_operation, field_update_operation
from crm_sync.cache import CollectionCache
from crm_sync.core.events import InProcessEventBus
from crm_sync.errors import NetworkError, ServerError
from crm_sync.mutations import MutationCoordinator
from crm_sync.resources import LEADS
from crm_sync.schemas import Lead
from crm_sync.selection import SelectionTracker
from support import FakeCollectionService, RecordingDialog, RecordingNotifier, make_page


def _executor(
    service: FakeCollectionService,
    notifier: RecordingNotifier,
    dialog: RecordingDialog,
    entities: list[Lead],
) -> tuple[CollectionCache, SelectionTracker, MutationCoordinator, BulkOperationExecutor]:
    bus = InProcessEventBus()
    cache = CollectionCache(bus)
    cache.replace(make_page(entities))
    selection = SelectionTracker(cache, bus)
    coordinator = MutationCoordinator(LEADS, cache, service, notifier, bus)
    executor = BulkOperationExecutor(LEADS, cache, selection, notifier, dialog)
    return cache, selection, coordinator, executor


@pytest.mark.asyncio
async def test_partial_failure_keeps_only_failed_ids_selected(
    service: FakeCollectionService, notifier: RecordingNotifier, dialog: RecordingDialog, leads: list[Lead]
) -> None:
    _, selection, _, executor = _executor(service, notifier, dialog, leads)
    for entity_id in ("lead-1", "lead-2", "lead-3"):
        selection.toggle(entity_id)
    service.delete_failures["lead-2"] = ServerError("Lead has open tasks", status_code=409)

    summary = await executor.run(delete_operation(service, LEADS))

    assert summary is not None
    assert summary.success_count == 2
    assert summary.failed_ids == ["lead-2"]
    assert summary.results[1].error_detail == "Lead has open tasks"
    assert selection.selected == {"lead-2"}
    assert notifier.successes == ["2 leads deleted"]
    assert notifier.errors == ["Failed to delete 1 of 3 leads"]
    assert dialog.is_open
    assert dialog.close_calls == 0


@pytest.mark.asyncio
async def test_full_success_clears_selection_and_closes_dialog(
    service: FakeCollectionService, notifier: RecordingNotifier, dialog: RecordingDialog, leads: list[Lead]
) -> None:
    _, selection, _, executor = _executor(service, notifier, dialog, leads)
    selection.toggle_select_all()

    summary = await executor.run(delete_operation(service, LEADS))

    assert summary is not None
    assert summary.success_count == 10
    assert summary.failed_ids == []
    assert selection.selected == frozenset()
    assert not dialog.is_open
    assert dialog.close_calls == 1
    assert notifier.successes == ["10 leads deleted"]
    assert notifier.errors == []
    assert dialog.prompts == [("Delete leads", "Delete 10 selected leads?")]


@pytest.mark.asyncio
async def test_items_run_concurrently_and_failures_do_not_stop_siblings(
    service: FakeCollectionService, notifier: RecordingNotifier, dialog: RecordingDialog, leads: list[Lead]
) -> None:
    _, _, _, executor = _executor(service, notifier, dialog, leads)
    service.delete_gate = asyncio.Event()
    service.delete_failures["lead-1"] = NetworkError()

    run = asyncio.ensure_future(executor.execute(["lead-1", "lead-2", "lead-3", "lead-4"], delete_operation(service, LEADS)))
    for _ in range(5):
        await asyncio.sleep(0)

    assert service.active_deletes == 4
    service.delete_gate.set()
    summary = await run

    assert service.max_active_deletes == 4
    assert summary.success_count == 3
    assert summary.failed_ids == ["lead-1"]
    assert sorted(service.delete_calls) == ["lead-1", "lead-2", "lead-3", "lead-4"]


@pytest.mark.asyncio
async def test_selection_gone_from_page_aborts_without_network_calls(
    service: FakeCollectionService, notifier: RecordingNotifier, dialog: RecordingDialog, leads: list[Lead]
) -> None:
    cache, selection, _, executor = _executor(service, notifier, dialog, leads)
    dialog.is_open = True
    cache.replace(make_page(leads[5:]))

    summary = await executor.execute(["lead-1", "lead-2"], delete_operation(service, LEADS))

    assert summary.aborted
    assert summary.results == ()
    assert service.delete_calls == []
    assert selection.selected == frozenset()
    assert not dialog.is_open
    assert notifier.warnings == ["The selected records are no longer available"]
    assert notifier.successes == [] and notifier.errors == []


@pytest.mark.asyncio
async def test_ids_that_left_the_page_are_skipped(
    service: FakeCollectionService, notifier: RecordingNotifier, dialog: RecordingDialog, leads: list[Lead]
) -> None:
    cache, _, _, executor = _executor(service, notifier, dialog, leads)
    cache.replace(make_page(leads[1:]))

    summary = await executor.execute(["lead-1", "lead-2", "lead-2"], delete_operation(service, LEADS))

    assert service.delete_calls == ["lead-2"]
    assert [result.id for result in summary.results] == ["lead-2"]


@pytest.mark.asyncio
async def test_cancelled_confirmation_runs_nothing(
    service: FakeCollectionService, notifier: RecordingNotifier, leads: list[Lead]
) -> None:
    dialog = RecordingDialog(answer=False)
    _, selection, _, executor = _executor(service, notifier, dialog, leads)
    selection.toggle("lead-1")

    summary = await executor.run(delete_operation(service, LEADS))

    assert summary is None
    assert service.delete_calls == []
    assert selection.selected == {"lead-1"}


@pytest.mark.asyncio
async def test_run_without_selection_does_not_prompt(
    service: FakeCollectionService, notifier: RecordingNotifier, dialog: RecordingDialog, leads: list[Lead]
) -> None:
    _, _, _, executor = _executor(service, notifier, dialog, leads)

    assert await executor.run(delete_operation(service, LEADS)) is None
    assert dialog.prompts == []


@pytest.mark.asyncio
async def test_bulk_status_update_goes_through_coordinator(
    service: FakeCollectionService, notifier: RecordingNotifier, dialog: RecordingDialog, leads: list[Lead]
) -> None:
    cache, selection, coordinator, executor = _executor(service, notifier, dialog, leads)
    for entity_id in ("lead-1", "lead-2", "lead-3"):
        selection.toggle(entity_id)
    service.update_failures["lead-3"] = ServerError("Status transition not allowed", status_code=409)

    summary = await executor.run(field_update_operation(coordinator, "status", "on_hold"), action="update")

    assert summary is not None
    assert summary.success_count == 2
    assert summary.failed_ids == ["lead-3"]
    assert summary.results[2].error_detail == "Status transition not allowed"
    assert cache.value_of("lead-1", "status") == "on_hold"
    assert cache.value_of("lead-2", "status") == "on_hold"
    assert cache.value_of("lead-3", "status") == "won"
    assert selection.selected == {"lead-3"}
    assert notifier.successes == ["2 leads updated"]
    assert notifier.errors == ["Failed to update 1 of 3 leads"]


@pytest.mark.asyncio
async def test_bulk_update_on_locked_entity_fails_that_item(
    service: FakeCollectionService, notifier: RecordingNotifier, dialog: RecordingDialog, leads: list[Lead]
) -> None:
    _, _, coordinator, executor = _executor(service, notifier, dialog, leads)
    service.update_gate = asyncio.Event()
    in_flight = coordinator.begin("lead-1", "status", "won")

    run = asyncio.ensure_future(executor.execute(["lead-1", "lead-2"], field_update_operation(coordinator, "status", "lost")))
    await asyncio.sleep(0)
    service.update_gate.set()
    summary = await run
    await in_flight

    assert summary.failed_ids == ["lead-1"]
    assert summary.results[0].error_detail == "Another change to this record is still being saved"
    assert [call[0] for call in service.update_calls] == ["lead-1", "lead-2"]
