"""
Structured logging and timing utility tests.
"""
import json
import logging

from hookgate.utils.logging import (
    StructuredJsonFormatter,
    generate_correlation_id,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from hookgate.utils.metrics import Timer


def _record(message="hello", **extra):
    record = logging.LogRecord(
        name="hookgate.services.webhook_dispatch",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJsonFormatter:
    def test_single_line_json_with_correlation_id(self):
        set_correlation_id("cid-1")
        line = StructuredJsonFormatter().format(_record())
        entry = json.loads(line)
        assert "\n" not in line
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["correlation_id"] == "cid-1"
        assert entry["module"] == "hookgate.services.webhook_dispatch"

    def test_outcome_fields_included(self):
        record = _record(
            source="stripe",
            event_id="evt_1",
            event_type="invoice.paid",
            duration_ms=12,
            outcome="succeeded",
            status_code=200,
        )
        entry = json.loads(StructuredJsonFormatter().format(record))
        assert entry["source"] == "stripe"
        assert entry["event_id"] == "evt_1"
        assert entry["duration_ms"] == 12
        assert entry["outcome"] == "succeeded"
        assert entry["status_code"] == 200

    def test_unset_fields_omitted(self):
        entry = json.loads(StructuredJsonFormatter().format(_record()))
        assert "failure_category" not in entry
        assert "event_id" not in entry

    def test_record_correlation_id_wins_over_context(self):
        set_correlation_id("from-context")
        entry = json.loads(StructuredJsonFormatter().format(_record(correlation_id="from-alert")))
        assert entry["correlation_id"] == "from-alert"

    def test_timestamp_is_record_creation_time(self):
        record = _record()
        record.created = 1_700_000_000.25
        entry = json.loads(StructuredJsonFormatter().format(record))
        assert entry["timestamp"] == "2023-11-14T22:13:20.250000Z"


class TestCorrelationId:
    def test_generate_is_unique_hex(self):
        first, second = generate_correlation_id(), generate_correlation_id()
        assert first != second
        assert len(first) == 32
        int(first, 16)

    def test_set_and_get(self):
        set_correlation_id("abc")
        assert get_correlation_id() == "abc"

    def test_reset_restores_previous_value(self):
        outer = set_correlation_id("outer")
        inner = set_correlation_id("inner")
        reset_correlation_id(inner)
        assert get_correlation_id() == "outer"
        reset_correlation_id(outer)


class TestTimer:
    def test_unstarted_timer_reads_zero(self):
        assert Timer().elapsed_ms == 0

    def test_stop_returns_elapsed(self):
        timer = Timer().start()
        assert timer.stop() >= 0
