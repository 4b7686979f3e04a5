"""Unit tests for ProgressReporter and JSON logging."""

import asyncio
import json
import logging
from unittest.mock import MagicMock

import pytest

from scripts.enrollment_audit.logging_config import JsonFormatter
from scripts.enrollment_audit.progress import ProgressReporter


class TestProgressReporter:
    """Tests for the periodic progress logger."""

    @pytest.mark.asyncio
    async def test_logs_rendered_message_periodically(self):
        log = MagicMock()
        async with ProgressReporter(lambda elapsed: "42 so far", interval=0.01, log=log) as reporter:
            await asyncio.sleep(0.05)

        assert reporter.ticks >= 1
        log.info.assert_any_call("42 so far")

    @pytest.mark.asyncio
    async def test_stops_on_exit(self):
        log = MagicMock()
        async with ProgressReporter(lambda elapsed: "tick", interval=0.01, log=log) as reporter:
            await asyncio.sleep(0.03)
        ticks = reporter.ticks
        await asyncio.sleep(0.03)
        assert reporter.ticks == ticks

    @pytest.mark.asyncio
    async def test_render_failure_is_not_fatal(self):
        log = MagicMock()

        def render(elapsed):
            raise ZeroDivisionError("elapsed was zero")

        async with ProgressReporter(render, interval=0.01, log=log):
            await asyncio.sleep(0.03)
        assert log.debug.called
        assert not log.info.called

    @pytest.mark.asyncio
    async def test_body_exception_propagates(self):
        with pytest.raises(RuntimeError):
            async with ProgressReporter(lambda elapsed: "", interval=1, log=MagicMock()):
                raise RuntimeError("boom")

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            ProgressReporter(lambda elapsed: "", interval=0)


class TestJsonFormatter:
    def test_includes_extra_fields(self):
        record = logging.LogRecord(
            "enrollment_audit.test", logging.INFO, __file__, 1, "Removed %d", (3,), None
        )
        record.group_id = "group-a"
        record.records = 3

        entry = json.loads(JsonFormatter().format(record))

        assert entry["message"] == "Removed 3"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "enrollment_audit.test"
        assert entry["group_id"] == "group-a"
        assert entry["records"] == 3
        assert "device_id" not in entry
