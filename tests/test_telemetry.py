import json
import logging
import pytest
import requests
import responses
from unittest.mock import patch

from degradation_breaker.telemetry import (
    HttpMetricsSink,
    LogMetricsSink,
    NullMetricsSink,
    best_effort,
    default_metrics_sink,
    publish_metric,
    tlog,
)


COLLECTOR_URL = "http://metrics.local/ingest"


# ====================
# TEST GROUP: tlog()
# ====================
def test_tlog_format(caplog):
    logger = logging.getLogger("degradation_breaker.test")

    with caplog.at_level(logging.INFO):
        tlog(logger, "🟡", "BREAKER", "DEGRADED", primary="1 → 2", meta="5 failures")

    msg = caplog.records[-1].getMessage()
    assert msg.startswith("🟡 BREAKER")
    assert "DEGRADED" in msg
    assert msg.endswith("| 5 failures")


def test_tlog_without_meta(caplog):
    logger = logging.getLogger("degradation_breaker.test")

    with caplog.at_level(logging.INFO):
        tlog(logger, "💚", "ROUTING", "OK")

    assert "|" not in caplog.records[-1].getMessage()


# ===========================
# TEST GROUP: Best-effort I/O
# ===========================
def test_best_effort_swallows_and_warns(caplog):
    with caplog.at_level(logging.WARNING):
        with best_effort("metric Test/Thing"):
            raise RuntimeError("collector down")

    assert "collector down" in caplog.text


def test_publish_metric_never_raises():
    class BrokenSink:
        def publish(self, *args, **kwargs):
            raise ConnectionError("nope")

    publish_metric(BrokenSink(), "CircuitBreaker/Controller", "Invocation", 1)


# ============================
# TEST GROUP: Metrics sinks
# ============================
@responses.activate
def test_http_sink_posts_datapoint():
    responses.add(responses.POST, COLLECTOR_URL, json={}, status=200)

    HttpMetricsSink(COLLECTOR_URL, timeout=1).publish(
        "CircuitBreaker/Controller", "ResponseTime", 12.5, {"CurrentLevel": "1"}, unit="Milliseconds"
    )

    payload = json.loads(responses.calls[0].request.body)
    assert payload["namespace"] == "CircuitBreaker/Controller"
    assert payload["metricName"] == "ResponseTime"
    assert payload["value"] == 12.5
    assert payload["unit"] == "Milliseconds"
    assert payload["dimensions"] == {"CurrentLevel": "1"}


@responses.activate
def test_http_sink_raises_on_error_status():
    responses.add(responses.POST, COLLECTOR_URL, status=500)

    with pytest.raises(requests.HTTPError):
        HttpMetricsSink(COLLECTOR_URL, timeout=1).publish("Ns", "Name", 1)


@responses.activate
def test_publish_metric_tolerates_http_timeout():
    responses.add(responses.POST, COLLECTOR_URL, body=requests.exceptions.ReadTimeout("slow"))

    publish_metric(HttpMetricsSink(COLLECTOR_URL, timeout=1), "Ns", "Name", 1)


def test_log_sink_writes_telemetry_line(caplog):
    with caplog.at_level(logging.INFO):
        LogMetricsSink().publish("CircuitBreaker/AlarmProcessor", "RecordsProcessed", 3)

    msg = caplog.records[-1].getMessage()
    assert "ALARMPROCESSOR" in msg
    assert "RecordsProcessed" in msg
    assert "3 Count" in msg


def test_null_sink_accepts_anything():
    NullMetricsSink().publish("Ns", "Name", 1, {"a": "b"})


class MockConfig:
    METRICS_URL = COLLECTOR_URL
    METRICS_TIMEOUT_S = 1


@patch("degradation_breaker.telemetry.Config", MockConfig)
def test_default_sink_uses_configured_collector():
    sink = default_metrics_sink()

    assert isinstance(sink, HttpMetricsSink)
    assert sink.url == COLLECTOR_URL


def test_default_sink_falls_back_to_logging():
    with patch("degradation_breaker.telemetry.Config.METRICS_URL", None):
        assert isinstance(default_metrics_sink(), LogMetricsSink)
