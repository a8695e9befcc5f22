"""Tests for :mod:`parley.utils.logging`."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from parley.ai.orchestration import RequestOrchestrator
from parley.services.settings import EngineSettings, SettingsStore
from parley.utils import logging as logging_utils

from tests.helpers import ScriptedStreamer


@pytest.fixture
def restore_engine_logger():
    engine = logging.getLogger(logging_utils.ENGINE_LOGGER)
    transport = {name: logging.getLogger(name).level for name in ("httpx", "httpcore", "openai")}
    level = engine.level
    root_handlers = list(logging.getLogger().handlers)
    yield
    logging_utils.shutdown_logging()
    engine.setLevel(level)
    for name, previous in transport.items():
        logging.getLogger(name).setLevel(previous)
    assert logging.getLogger().handlers == root_handlers


def _read(path: Path) -> str:
    for handler in logging.getLogger(logging_utils.ENGINE_LOGGER).handlers:
        handler.flush()
    return path.read_text(encoding="utf-8")


class TestSetupLogging:
    def test_writes_engine_records_without_touching_root(self, tmp_path: Path, restore_engine_logger: None) -> None:
        log_path = logging_utils.setup_logging(level="DEBUG", log_dir=tmp_path)

        logging.getLogger("parley.chat.test").debug("hello from the engine")
        logging.getLogger("host.widget").warning("host record")

        assert log_path == tmp_path / "parley.log"
        assert logging_utils.get_log_path() == log_path
        content = _read(log_path)
        assert "hello from the engine" in content
        assert "host record" not in content
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_is_idempotent_unless_forced(self, tmp_path: Path, restore_engine_logger: None) -> None:
        first = logging_utils.setup_logging(log_dir=tmp_path / "a")

        second = logging_utils.setup_logging(log_dir=tmp_path / "b")
        forced = logging_utils.setup_logging(log_dir=tmp_path / "b", force=True)

        assert second == first
        assert forced == tmp_path / "b" / "parley.log"
        assert len(logging.getLogger(logging_utils.ENGINE_LOGGER).handlers) == 1

    def test_log_dir_defaults_to_environment(self, tmp_path: Path, restore_engine_logger: None) -> None:
        log_path = logging_utils.setup_logging()

        assert log_path == tmp_path / "logs" / "parley.log"

    def test_settings_log_dir_wins_over_environment(self, tmp_path: Path, restore_engine_logger: None) -> None:
        settings = EngineSettings(log_dir=str(tmp_path / "custom"))

        assert logging_utils.setup_logging(settings) == tmp_path / "custom" / "parley.log"

    def test_shutdown_detaches_handlers(self, tmp_path: Path, restore_engine_logger: None) -> None:
        logging_utils.setup_logging(log_dir=tmp_path)

        logging_utils.shutdown_logging()

        assert logging.getLogger(logging_utils.ENGINE_LOGGER).handlers == []
        assert logging_utils.get_log_path() is None


class TestResolveLevel:
    def test_debug_logging_forces_debug(self) -> None:
        settings = EngineSettings(debug_logging=True, log_level="ERROR")

        assert logging_utils.resolve_level(settings) == logging.DEBUG

    def test_settings_level_name(self) -> None:
        assert logging_utils.resolve_level(EngineSettings(log_level="warning")) == logging.WARNING

    def test_unknown_name_falls_back_to_info(self) -> None:
        assert logging_utils.resolve_level(EngineSettings(log_level="chatty")) == logging.INFO

    def test_explicit_level_wins(self) -> None:
        assert logging_utils.resolve_level(EngineSettings(log_level="ERROR"), "DEBUG") == logging.DEBUG

    def test_environment_without_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARLEY_LOG_LEVEL", "ERROR")

        assert logging_utils.resolve_level() == logging.ERROR

    def test_environment_flows_through_loaded_settings(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARLEY_LOG_LEVEL", "WARNING")

        settings = SettingsStore(tmp_path / "settings.json").load()

        assert settings.log_level == "WARNING"
        assert logging_utils.resolve_level(settings) == logging.WARNING


class TestOrchestratorFromSettings:
    def test_configures_engine_logging(self, tmp_path: Path, restore_engine_logger: None) -> None:
        settings = EngineSettings(api_key="test-key", model="test-model", debug_logging=True)

        orchestrator = RequestOrchestrator.from_settings(settings, streamer=ScriptedStreamer())

        assert orchestrator.settings is settings
        assert logging.getLogger(logging_utils.ENGINE_LOGGER).level == logging.DEBUG
        log_path = logging_utils.get_log_path()
        assert log_path == tmp_path / "logs" / "parley.log"
        assert "Orchestrator created for model test-model" in _read(log_path)

    def test_host_can_keep_its_own_logging(self, restore_engine_logger: None) -> None:
        RequestOrchestrator.from_settings(EngineSettings(), streamer=ScriptedStreamer(), configure_logging=False)

        assert logging_utils.get_log_path() is None
