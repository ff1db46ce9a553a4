from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from crm_sync.errors import ServerError
from crm_sync.metrics import render_metrics
from crm_sync.resources import LEADS
from crm_sync.view import CollectionView
from support import FakeCollectionService, RecordingDialog, RecordingNotifier


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.asyncio
async def test_view_activity_updates_counters(service: FakeCollectionService) -> None:
    fetch_labels = {"resource": "leads", "outcome": "applied"}
    confirmed_labels = {"resource": "leads", "field": "status", "outcome": "confirmed"}
    rolled_back_labels = {"resource": "leads", "field": "status", "outcome": "rolled_back"}
    dropped_labels = {"resource": "leads", "result": "dropped"}
    bulk_labels = {"resource": "leads", "operation": "delete", "outcome": "failure"}
    before = {
        "fetch": _sample("collection_fetch_total", fetch_labels),
        "confirmed": _sample("collection_mutations_total", confirmed_labels),
        "rolled_back": _sample("collection_mutations_total", rolled_back_labels),
        "dropped": _sample("collection_drag_events_total", dropped_labels),
        "bulk": _sample("collection_bulk_items_total", bulk_labels),
    }

    view = CollectionView(LEADS, service, notifier=RecordingNotifier(), dialog=RecordingDialog())
    await view.refresh()

    assert view.drag.on_drag_start("lead-1")
    drop = view.drag.on_drop("won")
    assert drop is not None
    await drop

    service.update_failures["lead-2"] = ServerError()
    failed_update = view.update_field("lead-2", "status", "lost")
    assert failed_update is not None
    await failed_update

    service.delete_failures["lead-3"] = ServerError()
    view.selection.select_only(["lead-3"])
    await view.bulk_delete()

    assert _sample("collection_fetch_total", fetch_labels) - before["fetch"] == 1
    assert _sample("collection_mutations_total", confirmed_labels) - before["confirmed"] == 1
    assert _sample("collection_mutations_total", rolled_back_labels) - before["rolled_back"] == 1
    assert _sample("collection_drag_events_total", dropped_labels) - before["dropped"] == 1
    assert _sample("collection_bulk_items_total", bulk_labels) - before["bulk"] == 1
    view.close()


def test_render_metrics_exposes_collection_series() -> None:
    body, content_type = render_metrics()

    assert content_type.startswith("text/plain")
    assert b"collection_fetch_total" in body
    assert b"collection_mutations_total" in body
