"""Unit tests for the logging abstraction."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from esphome_native.correlation import correlation_context
from esphome_native.logging_abstraction import (
    ApiLogger,
    HumanReadableFormatter,
    JSONFormatter,
    get_logger,
)

# Test constants
CORRELATION_ID = "0123456789abcdef"


def _record(message: str = "→ Sending hello", extra_data: dict[str, object] | None = None) -> logging.LogRecord:
    record = logging.LogRecord("esphome_native.test", logging.INFO, __file__, 10, message, (), None)
    if extra_data is not None:
        record.extra_data = extra_data
    return record


class TestFormatters:
    def test_json_includes_context_and_correlation(self) -> None:
        with correlation_context(CORRELATION_ID):
            output = JSONFormatter().format(_record(extra_data={"device": "garage"}))
        data = json.loads(output)
        assert data["message"] == "→ Sending hello"
        assert data["correlation_id"] == CORRELATION_ID
        assert data["context"] == {"device": "garage"}
        assert data["device"] == "garage"

    def test_json_without_context(self) -> None:
        data = json.loads(JSONFormatter().format(_record()))
        assert "context" not in data
        assert "device" not in data

    def test_human_appends_context(self) -> None:
        with correlation_context(CORRELATION_ID):
            output = HumanReadableFormatter().format(_record(extra_data={"device": "garage", "bytes": 3}))
        assert "[01234567]" in output
        assert output.endswith("| device=garage | bytes=3")

    def test_human_without_correlation(self) -> None:
        with correlation_context(auto_generate=False):
            output = HumanReadableFormatter().format(_record())
        assert "[--------]" in output


class TestApiLogger:
    def test_extra_is_wrapped(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = ApiLogger("esphome_native.tests.extra", human_output="stderr")
        with caplog.at_level(logging.INFO, logger="esphome_native.tests.extra"):
            logger.info("✓ Connected to %s", "garage", extra={"device": "garage"})
        record = caplog.records[-1]
        assert record.getMessage() == "✓ Connected to garage"
        assert record.extra_data == {"device": "garage"}  # type: ignore[attr-defined]

    def test_handlers_attached_once(self) -> None:
        first = ApiLogger("esphome_native.tests.once")
        second = ApiLogger("esphome_native.tests.once")
        assert first.handlers is second.handlers
        assert len(second.handlers) == 1

    def test_set_level(self) -> None:
        logger = get_logger("esphome_native.tests.level")
        logger.set_level(logging.WARNING)
        assert not logger.is_enabled_for(logging.INFO)
        assert all(handler.level == logging.WARNING for handler in logger.handlers)

    def test_json_file_output(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "api.json"
        logger = ApiLogger("esphome_native.tests.json", log_format="json", json_file=log_file)
        logger.warning("✗ Handshake failed", extra={"reason": "timeout"})
        for handler in logger.handlers:
            handler.flush()

        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["context"] == {"reason": "timeout"}
