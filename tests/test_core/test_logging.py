"""Tests for setup_logging — root handler, quiet loggers, decision log sink."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
import structlog

from chainwatch.core.config import LoggingConfig
from chainwatch.core.logging import DECISION_LOGGER, setup_logging


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    decisions = logging.getLogger(DECISION_LOGGER)
    for handler in list(decisions.handlers):
        decisions.removeHandler(handler)
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestSetupLogging:
    def test_level_from_config(self) -> None:
        setup_logging(config=LoggingConfig(level="debug"))
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_override_wins(self) -> None:
        setup_logging(level="ERROR", config=LoggingConfig(level="DEBUG"))
        assert logging.getLogger().level == logging.ERROR

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(config=LoggingConfig(level="chatty"))
        assert logging.getLogger().level == logging.INFO

    def test_http_loggers_quietened(self) -> None:
        setup_logging(config=LoggingConfig(level="DEBUG"))
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_no_decision_file_by_default(self) -> None:
        setup_logging(config=LoggingConfig())
        assert logging.getLogger(DECISION_LOGGER).handlers == []

    def test_decision_file_sink(self, tmp_path) -> None:
        path = tmp_path / "logs" / "decisions.jsonl"
        setup_logging(config=LoggingConfig(decision_log_path=str(path)))
        (handler,) = logging.getLogger(DECISION_LOGGER).handlers
        assert isinstance(handler, logging.FileHandler)
        assert path.parent.is_dir()

    def test_repeat_setup_replaces_decision_handler(self, tmp_path) -> None:
        cfg = LoggingConfig(decision_log_path=str(tmp_path / "d.jsonl"))
        setup_logging(config=cfg)
        setup_logging(config=cfg)
        assert len(logging.getLogger(DECISION_LOGGER).handlers) == 1
