"""Tests for structured logging: context injection, JSON output, lazy messages."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import pytest

from flag_service.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    clear_log_context,
    get_lazy_logger,
    get_log_context,
    remove_from_log_context,
    set_log_context,
)


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("flag_service.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestLogContext:
    def test_set_and_remove(self):
        set_log_context(schedule_id="s1", flag_id="f1")
        remove_from_log_context("flag_id")

        assert get_log_context() == {"schedule_id": "s1"}

    def test_filter_injects_without_overwriting(self):
        set_log_context(schedule_id="s1", name="ignored")
        record = _record()

        assert ContextInjectingFilter().filter(record) is True
        assert record.schedule_id == "s1"
        assert record.name == "flag_service.test"

    @pytest.mark.asyncio
    async def test_tasks_do_not_share_context(self):
        async def run(schedule_id: str) -> dict:
            set_log_context(schedule_id=schedule_id)
            await asyncio.sleep(0)
            return get_log_context()

        first, second = await asyncio.gather(run("a"), run("b"))

        assert first == {"schedule_id": "a"}
        assert second == {"schedule_id": "b"}
        assert get_log_context() == {}


@pytest.mark.unit
class TestJSONFormatter:
    def test_single_line_with_extras(self):
        formatter = JSONFormatter(static={"service": "flag-service"})
        record = _record("Flag schedule executed", schedule_id="s1", cascaded=2)

        line = formatter.format(record)
        data = json.loads(line)

        assert "\n" not in line
        assert data["message"] == "Flag schedule executed"
        assert data["level"] == "INFO"
        assert data["logger"] == "flag_service.test"
        assert data["service"] == "flag-service"
        assert data["schedule_id"] == "s1"
        assert data["cascaded"] == 2
        assert data["timestamp"].endswith("Z")

    def test_exception_is_kept_on_one_line(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "flag_service.test", logging.ERROR, __file__, 1, "failed", (), None
            )
            record.exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in data["exception"]


@pytest.mark.unit
class TestLazyLogger:
    def test_callable_not_evaluated_when_disabled(self, caplog: pytest.LogCaptureFixture):
        calls: list[int] = []
        logger = get_lazy_logger("flag_service.lazy")

        with caplog.at_level(logging.INFO, logger="flag_service.lazy"):
            logger.debug(lambda: calls.append(1) or "expensive")

        assert calls == []

    def test_callable_evaluated_when_enabled(self, caplog: pytest.LogCaptureFixture):
        logger = get_lazy_logger("flag_service.lazy")

        with caplog.at_level(logging.DEBUG, logger="flag_service.lazy"):
            logger.debug(lambda: "claim_step: won")

        assert "claim_step: won" in caplog.text
