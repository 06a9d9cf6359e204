import json
import pytest
from unittest.mock import patch

from degradation_breaker.errors import StoreUnavailable
from degradation_breaker.levels import ServiceLevel
from degradation_breaker.reconciliation import ReconciliationProcessor


def record(message_id, name="CircuitBreaker-ErrorRate-Level1", new="ALARM", reason="Threshold Crossed", wrap=False):
    payload = json.dumps({
        "AlarmName": name,
        "NewStateValue": new,
        "OldStateValue": "OK" if new == "ALARM" else "ALARM",
        "StateReason": reason,
    })
    if wrap:
        payload = json.dumps({"Type": "Notification", "Message": payload})
    return {"messageId": message_id, "body": payload}


# ========
# FIXTURES
# ========
@pytest.fixture
def processor(engine, sink):
    return ReconciliationProcessor(engine, metrics=sink, recovery_response_time_ms=50)


# ==============================
# TEST GROUP: Per-item isolation
# ==============================
def test_malformed_item_is_isolated(processor):
    records = [
        record("m-1"),
        {"messageId": "m-2", "body": "{not json"},
        record("m-3"),
    ]

    summary = processor.process_batch(records)

    assert summary.processed == 2
    assert summary.errors == 1
    assert summary.results[1]["itemId"] == "m-2"
    assert summary.results[1]["processed"] is False
    assert "error" in summary.results[1]
    assert processor.engine.store.get().failure_count == 2


def test_ok_notification_never_mutates_state(processor, seed_state):
    seed_state(ServiceLevel.DEGRADED, failure_count=6, success_count=2)

    summary = processor.process_batch([record("m-1", new="OK"), record("m-2", name="X-Recovery-Level2", new="OK")])

    state = processor.engine.store.get()
    assert (state.level, state.failure_count, state.success_count) == (ServiceLevel.DEGRADED, 6, 2)
    assert summary.processed == 2
    assert all(r["skipped"] == "state OK" for r in summary.results)


def test_unknown_alarm_class_is_skipped(processor):
    summary = processor.process_batch([record("m-1", name="CircuitBreaker-Latency-Level1")])

    assert summary.processed == 1
    assert summary.results[0]["skipped"] == "unknown alarm class"
    assert processor.engine.store.get().failure_count == 0


# ===============================
# TEST GROUP: State transitions
# ===============================
def test_failure_alarm_records_inferred_error_type(processor):
    with patch.object(processor.engine, "record_failure", wraps=processor.engine.record_failure) as spy:
        processor.process_batch([record("m-1", reason="Timeout while calling handler")])

    spy.assert_called_once_with("full-service", "TimeoutError", ServiceLevel.FULL)


def test_recovery_alarm_uses_synthetic_latency(processor):
    with patch.object(processor.engine, "record_success", wraps=processor.engine.record_success) as spy:
        processor.process_batch([record("m-1", name="CircuitBreaker-Recovery-Level3", wrap=True)])

    spy.assert_called_once_with("maintenance-service", ServiceLevel.MAINTENANCE, 50)


def test_five_failure_alarms_degrade(processor):
    summary = processor.process_batch([record(f"m-{i}") for i in range(5)])

    assert [r["transitioned"] for r in summary.results] == [False] * 4 + [True]
    assert summary.results[-1]["newLevel"] == 2


def test_duplicate_deliveries_apply_twice(processor):
    """At-least-once delivery: no dedup by messageId."""
    processor.process_batch([record("same"), record("same")])

    assert processor.engine.store.get().failure_count == 2


def test_item_id_falls_back_to_index(processor):
    summary = processor.process_batch(["{bad", json.dumps({"AlarmName": "A-Failure-Level1", "NewStateValue": "ALARM"})])

    assert [r["itemId"] for r in summary.results] == ["0", "1"]
    assert [r["processed"] for r in summary.results] == [False, True]


# ===============================
# TEST GROUP: Batch-level failure
# ===============================
def test_store_outage_fails_whole_batch(processor):
    calls = {"n": 0}
    real_get = processor.engine.store.get

    def flaky_get():
        calls["n"] += 1
        if calls["n"] > 1:
            raise StoreUnavailable("disk gone")
        return real_get()

    with patch.object(processor.engine.store, "get", side_effect=flaky_get):
        summary = processor.process_batch([record("m-1"), record("m-2"), record("m-3")])

    assert summary.failed is True
    assert summary.processed == 0
    assert summary.errors == 3
    # First item's increment is not rolled back
    assert processor.engine.store.get().failure_count == 1


def test_handle_wraps_summary(processor, sink):
    response = processor.handle({"Records": [record("m-1"), {"messageId": "m-2", "body": "nope"}]})

    assert response["statusCode"] == 200
    assert response["body"]["processed"] == 1
    assert response["body"]["errors"] == 1
    assert "RecordsProcessed" in sink.names()
    assert "ProcessingErrors" in sink.names()
    assert "RecordProcessingError" in sink.names()


def test_handle_without_records_is_critical(processor, sink):
    response = processor.handle({"unexpected": True})

    assert response["statusCode"] == 500
    assert response["body"]["processed"] == 0
    assert "CriticalError" in sink.names()


def test_metrics_failure_does_not_affect_batch(engine):
    class BrokenSink:
        def publish(self, *args, **kwargs):
            raise RuntimeError("collector down")

    summary = ReconciliationProcessor(engine, metrics=BrokenSink()).process_batch([record("m-1")])

    assert summary.processed == 1


@pytest.mark.parametrize(
    "batch",
    [
        # ❌ Not iterable
        42,

        # ❌ Source fails mid-read
        "generator",
    ],
)
def test_unreadable_batch_is_a_batch_failure(processor, sink, batch):
    if batch == "generator":
        def read_queue():
            yield record("m-1")
            raise OSError("queue read failed")
        batch = read_queue()

    summary = processor.process_batch(batch)

    assert summary.failed is True
    assert summary.processed == 0
    assert "CriticalError" in sink.names()
    assert processor.engine.store.get().failure_count == 0
