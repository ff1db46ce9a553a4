from __future__ import annotations

from collections.abc import Generator

import pytest

from crm_sync.core.config import get_settings
from crm_sync.schemas import Lead
from support import FakeCollectionService, RecordingDialog, RecordingNotifier, make_lead


@pytest.fixture(autouse=True)
def reset_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def leads() -> list[Lead]:
    return [make_lead(index) for index in range(1, 11)]


@pytest.fixture()
def service(leads: list[Lead]) -> FakeCollectionService:
    return FakeCollectionService({"leads": leads})


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def dialog() -> RecordingDialog:
    return RecordingDialog()
