"""
Tests for structured logging, redaction and metrics.
"""

import json
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from monitoring.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LoggingContext,
    clear_request_context,
    get_request_context,
    redact_sensitive_data,
    redact_string,
    set_request_context,
)
from monitoring.metrics import MetricsCollector
from monitoring.middleware import _normalize_path

IDENTITY_TOKEN = "ab12cd34" + "0" * 56
UPDATE_TOKEN = "0f8fad5b-d9cb-469f-a165-70867728950e"


def _record(msg, **extra):
    record = logging.LogRecord("prediction_engine", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    def test_redacts_identity_token(self):
        assert redact_string(f"identity {IDENTITY_TOKEN}") == "identity ab12cd34..."

    def test_redacts_update_token(self):
        assert redact_string(f"token for {UPDATE_TOKEN}") == "token for 0f8fad5b..."

    def test_redacts_ipv4(self):
        assert redact_string("client 203.0.113.7 connected") == "client [IP] connected"

    def test_redacts_key_value_secrets(self):
        assert "hunter2" not in redact_string("salt=hunter2")
        assert "abc" not in redact_string("Authorization: Bearer abc")

    def test_redacts_sensitive_fields(self):
        data = {
            "update_token": UPDATE_TOKEN,
            "client_ip": "203.0.113.7",
            "nested": {"identity_salt": "s", "predicted_date": "2027-01-01"},
            "items": [{"secret_key": "k"}],
        }
        redacted = redact_sensitive_data(data)

        assert redacted["update_token"] == "[REDACTED]"
        assert redacted["client_ip"] == "[REDACTED]"
        assert redacted["nested"]["identity_salt"] == "[REDACTED]"
        assert redacted["nested"]["predicted_date"] == "2027-01-01"
        assert redacted["items"][0]["secret_key"] == "[REDACTED]"

    def test_depth_limit(self):
        data = current = {}
        for _ in range(20):
            current["child"] = {}
            current = current["child"]
        assert "[MAX_DEPTH_EXCEEDED]" in json.dumps(redact_sensitive_data(data))


class TestFormatters:
    def setup_method(self):
        clear_request_context()

    def teardown_method(self):
        clear_request_context()

    def test_json_formatter(self):
        set_request_context(request_id="req-1")
        record = _record(
            "Prediction submitted from 203.0.113.7",
            identity_token=IDENTITY_TOKEN,
            weight=1.0,
        )

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "prediction_engine"
        assert entry["message"] == "Prediction submitted from [IP]"
        assert entry["context"] == {"request_id": "req-1"}
        assert entry["identity_token"] == "[REDACTED]"
        assert entry["weight"] == 1.0

    def test_json_formatter_location_on_warning(self):
        record = _record("slow")
        record.levelno = logging.WARNING
        record.levelname = "WARNING"
        assert "location" in json.loads(JSONFormatter().format(record))

    def test_console_formatter_redacts(self):
        output = ConsoleFormatter().format(_record("hello", update_token=UPDATE_TOKEN))
        assert UPDATE_TOKEN not in output
        assert "[REDACTED]" in output

    def test_logging_context_restores_previous(self):
        set_request_context(request_id="outer")
        with LoggingContext(command="seed"):
            assert get_request_context() == {"request_id": "outer", "command": "seed"}
        assert get_request_context() == {"request_id": "outer"}


class TestMetricsCollector:
    def test_counters_with_labels(self):
        collector = MetricsCollector()
        collector.increment("http_requests_total", labels={"status": "200"})
        collector.increment("http_requests_total", labels={"status": "200"})
        collector.increment("http_requests_total", labels={"status": "409"})

        assert collector.get_counter("http_requests_total", labels={"status": "200"}) == 2
        assert collector.get_counter("http_requests_total", labels={"status": "409"}) == 1
        assert collector.get_counter("unknown") == 0

    def test_gauges(self):
        collector = MetricsCollector()
        collector.increment_gauge("http_requests_active")
        collector.increment_gauge("http_requests_active")
        collector.decrement_gauge("http_requests_active")
        assert collector.get_gauge("http_requests_active") == 1.0

        collector.set_gauge("observations_current", 42)
        assert collector.get_gauge("observations_current") == 42

    def test_histogram_buckets(self):
        collector = MetricsCollector()
        collector.timing("aggregate_recompute_ms", 3)
        collector.timing("aggregate_recompute_ms", 300)

        histogram = collector.get_histogram("aggregate_recompute_ms")
        assert histogram.count == 2
        assert histogram.sum == 303
        by_bound = {b.le: b.count for b in histogram.buckets}
        assert by_bound[5] == 1
        assert by_bound[500] == 2

    def test_timer(self):
        collector = MetricsCollector()
        with collector.timer("block_ms"):
            pass
        assert collector.get_histogram("block_ms").count == 1

    def test_prometheus_export(self):
        collector = MetricsCollector(prefix="test_")
        collector.increment("submissions_total")
        collector.timing("aggregate_recompute_ms", 2, labels={"backend": "memory"})

        text = collector.to_prometheus()
        assert "# TYPE test_submissions_total counter" in text
        assert "test_submissions_total 1" in text
        assert 'test_aggregate_recompute_ms_bucket{backend="memory",le="+Inf"} 1' in text
        assert 'test_aggregate_recompute_ms_count{backend="memory"} 1' in text

    def test_get_all_and_reset(self):
        collector = MetricsCollector()
        collector.increment("submissions_total")
        assert collector.get_all()["counters"]["submissions_total"] == 1

        collector.reset()
        assert collector.get_all()["counters"] == {}


class TestNormalizePath:
    def test_static_path(self):
        assert _normalize_path("/api/stats") == "/api/stats"

    def test_dynamic_segments(self):
        assert _normalize_path(f"/api/x/{UPDATE_TOKEN}") == "/api/x/:uuid"
        assert _normalize_path(f"/api/x/{IDENTITY_TOKEN}") == "/api/x/:hash"
        assert _normalize_path("/api/x/42") == "/api/x/:id"
