"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from parley.events import EventBus
from parley.services.settings import EngineSettings

from tests.helpers import InMemoryStorage, ManualTimer


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(api_key="test-key", model="test-model", finalize_wait_seconds=0.2)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("PARLEY_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PARLEY_LOG_DIR", str(tmp_path / "logs"))
