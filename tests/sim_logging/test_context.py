"""Tests for logging context managers and formatters."""

import asyncio
import json
import logging

import pytest

from sim_logging import ContextFilter, JSONFormatter, LogContext, log_context, log_trip_context


@pytest.fixture
def logger():
    logger = logging.getLogger("test.context")
    logger.setLevel(logging.DEBUG)
    return logger


@pytest.fixture
def captured_records(logger):
    records: list[logging.LogRecord] = []

    class RecordCapture(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record)

    handler = RecordCapture()
    handler.addFilter(ContextFilter())
    logger.addHandler(handler)
    yield records
    logger.removeHandler(handler)


@pytest.mark.unit
class TestLogContext:
    def test_log_context_adds_extra_fields(self, logger, captured_records):
        with log_context(participant_id="p1", phase="meeting"):
            logger.info("Test message")

        record = captured_records[0]
        assert record.participant_id == "p1"
        assert record.phase == "meeting"

    def test_fields_removed_after_block(self, logger, captured_records):
        with log_context(participant_id="p1"):
            pass
        logger.info("Outside")

        assert not hasattr(captured_records[0], "participant_id")
        assert LogContext.get() == {}

    def test_nested_blocks_restore_outer_fields(self):
        with log_context(trip_id="outer"):
            with log_context(trip_id="inner", phase="destination"):
                assert LogContext.get() == {"trip_id": "inner", "phase": "destination"}
            assert LogContext.get() == {"trip_id": "outer"}

    def test_trip_context_defaults_correlation_id(self, logger, captured_records):
        with log_trip_context("abc123"):
            logger.info("Optimizing")

        record = captured_records[0]
        assert record.trip_id == "abc123"
        assert record.correlation_id == "abc123"

    def test_explicit_extra_wins_over_context(self, logger, captured_records):
        with log_context(phase="meeting"):
            logger.info("Explicit", extra={"phase": "destination"})

        assert captured_records[0].phase == "destination"

    async def test_tasks_keep_separate_context(self):
        seen: dict[str, str] = {}

        async def work(trip_id: str) -> None:
            with log_trip_context(trip_id):
                await asyncio.sleep(0)
                seen[trip_id] = LogContext.get()["trip_id"]

        await asyncio.gather(work("first"), work("second"))

        assert seen == {"first": "first", "second": "second"}


@pytest.mark.unit
def test_json_formatter_includes_trip_fields():
    record = logging.LogRecord("engine", logging.INFO, __file__, 1, "tick", None, None)
    record.trip_id = "abc123"
    record.phase = "meeting"

    payload = json.loads(JSONFormatter("test").format(record))

    assert payload["message"] == "tick"
    assert payload["env"] == "test"
    assert payload["trip_id"] == "abc123"
    assert payload["phase"] == "meeting"
    assert "participant_id" not in payload
