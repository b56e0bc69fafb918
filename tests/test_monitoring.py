"""
Tests for the monitoring package (src/monitoring/)

Tests cover:
- Sensitive data redaction
- JSON and console log formatting
- Logging context
- Metrics collection and Prometheus export
"""

import json
import logging

import pytest
from flask import Flask

from monitoring import LoggingContext, MetricsCollector, metrics, setup_request_logging
from monitoring.logging import (
    ConsoleFormatter,
    JSONFormatter,
    get_request_context,
    redact_sensitive_data,
    redact_string,
)


def make_record(msg, level=logging.INFO, **extra):
    record = logging.LogRecord("recovery_machine", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    """Tests for sensitive data redaction."""

    def test_redact_api_key_in_string(self):
        assert "abc123" not in redact_string("api_key=abc123 guardian=g1")
        assert "guardian=g1" in redact_string("api_key=abc123 guardian=g1")

    def test_redact_bearer_token(self):
        assert redact_string("Authorization: Bearer tok.en.value").endswith("[REDACTED]")

    def test_redact_fields_in_dict(self):
        data = {"X-API-Key": "k", "nested": {"password": "p"}, "guardian_id": "g1"}
        result = redact_sensitive_data(data)
        assert result["X-API-Key"] == "[REDACTED]"
        assert result["nested"]["password"] == "[REDACTED]"
        assert result["guardian_id"] == "g1"


class TestFormatters:
    """Tests for log formatters."""

    def test_json_formatter_includes_extras(self):
        output = JSONFormatter().format(make_record("Vote recorded", request_id=3, guardian_id="g1"))
        entry = json.loads(output)

        assert entry["message"] == "Vote recorded"
        assert entry["level"] == "INFO"
        assert entry["request_id"] == 3
        assert entry["guardian_id"] == "g1"
        assert "source" not in entry

    def test_json_formatter_redacts_extras(self):
        output = JSONFormatter().format(make_record("auth", level=logging.WARNING, api_key="k-123"))
        entry = json.loads(output)

        assert entry["api_key"] == "[REDACTED]"
        assert "source" in entry

    def test_console_formatter(self):
        output = ConsoleFormatter().format(make_record("Recovery request opened", request_id=1))
        assert "Recovery request opened" in output
        assert "request_id=1" in output


class TestLoggingContext:
    def test_context_is_scoped(self):
        with LoggingContext(caller="g1"):
            assert get_request_context()["caller"] == "g1"
            with LoggingContext(request_id=7):
                assert get_request_context() == {"caller": "g1", "request_id": 7}
            assert get_request_context() == {"caller": "g1"}
        assert get_request_context() == {}

    def test_context_appears_in_json(self):
        with LoggingContext(caller="g2"):
            entry = json.loads(JSONFormatter().format(make_record("x")))
        assert entry["context"] == {"caller": "g2"}


class TestMetricsCollector:
    """Tests for metrics collection."""

    @pytest.fixture
    def collector(self):
        return MetricsCollector(prefix="test")

    def test_counters_with_labels(self, collector):
        collector.increment("votes", labels={"support": "true"})
        collector.increment("votes", labels={"support": "true"})
        collector.increment("votes", labels={"support": "false"})

        assert collector.get_counter("votes", {"support": "true"}) == 2
        assert collector.get_counter("votes", {"support": "false"}) == 1
        assert collector.get_counter("votes") == 0

    def test_gauges(self, collector):
        collector.set_gauge("open", 3)
        collector.increment_gauge("open")
        collector.decrement_gauge("open", 2)
        assert collector.get_gauge("open") == 2

    def test_timer_records_histogram(self, collector):
        with collector.timer("op"):
            pass
        assert collector.get_all()["histograms"]["op"][""]["count"] == 1

    def test_prometheus_export(self, collector):
        collector.increment("recovery_requests_opened", labels={"class": "EMERGENCY"})
        collector.set_gauge("recovery_requests_open", 1)
        collector.timing("latency", 3.0)

        output = collector.to_prometheus()
        assert "# TYPE test_recovery_requests_opened counter" in output
        assert 'test_recovery_requests_opened{class="EMERGENCY"} 1' in output
        assert "test_recovery_requests_open 1" in output
        assert 'test_latency_bucket{le="5"} 1' in output
        assert "test_latency_count 1" in output

    def test_reset(self, collector):
        collector.increment("x")
        collector.reset()
        assert collector.get_all()["counters"] == {}


class TestRequestTelemetry:
    """Tests for the Flask request hooks."""

    @pytest.fixture
    def client(self):
        app = Flask(__name__)
        setup_request_logging(app)

        @app.route("/items/<int:item_id>")
        def item(item_id):
            return {"item_id": item_id}

        return app.test_client()

    def test_counts_by_route_template(self, client):
        client.get("/items/1")
        client.get("/items/2")

        labels = {"method": "GET", "route": "/items/<int:item_id>", "status": "200"}
        assert metrics.get_counter("http_requests_total", labels) == 2
        assert metrics.get_gauge("http_requests_active") == 0

    def test_unmatched_route(self, client):
        assert client.get("/missing").status_code == 404
        labels = {"method": "GET", "route": "<unmatched>", "status": "404"}
        assert metrics.get_counter("http_requests_total", labels) == 1

    def test_request_id(self, client):
        assert client.get("/items/1", headers={"X-Request-ID": "r-1"}).headers["X-Request-ID"] == "r-1"
        assert len(client.get("/items/1").headers["X-Request-ID"]) == 8
