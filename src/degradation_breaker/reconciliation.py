# ─── Standard library imports ───
from dataclasses import dataclass, field
from typing import Any, Iterable

# ─── Project imports ───
from .alarms import AlarmClass, AlarmNotification, parse_notification, unwrap_message
from .config import Config
from .errors import ParseError, StoreUnavailable
from .logger import get_logger
from .models import TransitionResult
from .telemetry import MetricsSink, default_metrics_sink, publish_metric, tlog
from .transitions import TransitionEngine


METRICS_NAMESPACE = "CircuitBreaker/AlarmProcessor"


@dataclass
class BatchSummary:
    processed: int = 0
    errors: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    failed: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        summary = {
            "processed": self.processed,
            "errors": self.errors,
            "results": self.results,
        }
        if self.failed:
            summary["error"] = self.error
        return summary


class ReconciliationProcessor:
    """
    Applies alarm notifications to the breaker, independently of routing.

    Responsibilities:
    • Decode each queue record (optionally envelope-wrapped)
    • Map entering-ALARM failure/recovery alarms to engine observations
    • Isolate per-record faults so one bad record never sinks a batch

    Non-responsibilities:
    • No deduplication: every delivery of the same alarm applies again
    • No rollback: increments applied before a batch-level fault stand
    """

    def __init__(
        self,
        engine: TransitionEngine,
        metrics: MetricsSink | None = None,
        recovery_response_time_ms: float = Config.RECOVERY_RESPONSE_TIME_MS,
    ):
        self.engine = engine
        self.metrics = metrics or default_metrics_sink()
        self.recovery_response_time_ms = recovery_response_time_ms
        self.logger = get_logger("reconciliation")

    # ──────────────────────────────────────────────────────────────
    # Queue boundary
    # ──────────────────────────────────────────────────────────────

    def handle(self, event: dict[str, Any]) -> dict[str, Any]:
        """
        Process a queue event {"Records": [...]} into {statusCode, body}.
        """
        records = event.get("Records") if isinstance(event, dict) else None
        if not isinstance(records, list):
            summary = self._batch_failure(0, "event has no Records list")
        else:
            summary = self.process_batch(records)

        return {
            "statusCode": 500 if summary.failed else 200,
            "body": {
                "message": (
                    "Critical error in alarm processor"
                    if summary.failed
                    else "Alarm processing completed"
                ),
                **summary.to_dict(),
            },
        }

    def process_batch(self, records: Iterable[Any]) -> BatchSummary:
        try:
            records = list(records)
        except Exception as e:
            self.logger.exception(f"Could not read batch: {e}")
            return self._batch_failure(0, f"unreadable batch: {e}")

        summary = BatchSummary()

        try:
            for index, record in enumerate(records):
                summary.results.append(self._process_isolated(record, index))
        except StoreUnavailable as e:
            self.logger.exception(f"State store unavailable; failing batch: {e}")
            return self._batch_failure(len(records), str(e))

        summary.processed = sum(1 for r in summary.results if r["processed"])
        summary.errors = len(summary.results) - summary.processed

        publish_metric(self.metrics, METRICS_NAMESPACE, "RecordsProcessed", summary.processed)
        if summary.errors:
            publish_metric(self.metrics, METRICS_NAMESPACE, "ProcessingErrors", summary.errors)

        tlog(
            self.logger,
            "🟢" if not summary.errors else "🟡",
            "RECONCILE",
            "BATCH COMPLETE",
            primary=f"{len(records)} records",
            meta=f"processed={summary.processed} | errors={summary.errors}",
        )
        return summary

    # ──────────────────────────────────────────────────────────────
    # Per-record processing
    # ──────────────────────────────────────────────────────────────

    def _process_isolated(self, record: Any, index: int) -> dict[str, Any]:
        """
        Process one record; anything but a store outage becomes an errored item.
        """
        item_id = _item_id(record, index)
        try:
            return self._process_record(record, item_id)
        except StoreUnavailable:
            raise
        except ParseError as e:
            self.logger.warning(f"Record {item_id} rejected: {e}")
            return self._errored(item_id, str(e))
        except Exception as e:
            self.logger.exception(f"Record {item_id} failed: {e}")
            return self._errored(item_id, str(e))

    def _process_record(self, record: Any, item_id: str) -> dict[str, Any]:
        body = record.get("body") if isinstance(record, dict) else record
        notification = parse_notification(unwrap_message(body))
        self.logger.debug(
            f"Parsed alarm {notification.name} "
            f"({notification.old_state} → {notification.new_state}, {notification.alarm_class})"
        )

        if not notification.is_entering_alarm:
            self.logger.info(f"Alarm {notification.name} is {notification.new_state}; no action needed")
            return _skipped(item_id, notification, f"state {notification.new_state}")

        match notification.alarm_class:
            case AlarmClass.FAILURE:
                result = self.engine.record_failure(
                    notification.service_type,
                    notification.error_type,
                    notification.service_level,
                )
                metric = "FailureAlarmProcessed"
            case AlarmClass.RECOVERY:
                result = self.engine.record_success(
                    notification.service_type,
                    notification.service_level,
                    self.recovery_response_time_ms,
                )
                metric = "RecoveryAlarmProcessed"
            case AlarmClass.UNKNOWN:
                self.logger.info(f"Unknown alarm type, skipping: {notification.name}")
                return _skipped(item_id, notification, "unknown alarm class")

        publish_metric(
            self.metrics, METRICS_NAMESPACE, metric, 1,
            {
                "ServiceType": notification.service_type,
                "ServiceLevel": str(int(notification.service_level)),
                "AlarmName": notification.name,
            },
        )
        return _applied(item_id, notification, result)

    # ──────────────────────────────────────────────────────────────
    # Result helpers
    # ──────────────────────────────────────────────────────────────

    def _errored(self, item_id: str, error: str) -> dict[str, Any]:
        publish_metric(
            self.metrics, METRICS_NAMESPACE, "RecordProcessingError", 1, {"MessageId": item_id}
        )
        return {"itemId": item_id, "processed": False, "error": error}

    def _batch_failure(self, count: int, error: str) -> BatchSummary:
        publish_metric(
            self.metrics, METRICS_NAMESPACE, "CriticalError", 1, {"ErrorType": "HandlerError"}
        )
        return BatchSummary(processed=0, errors=count, failed=True, error=error)


def _item_id(record: Any, index: int) -> str:
    if isinstance(record, dict) and record.get("messageId"):
        return str(record["messageId"])
    return str(index)

def _skipped(item_id: str, notification: AlarmNotification, why: str) -> dict[str, Any]:
    return {
        "itemId": item_id,
        "alarmName": notification.name,
        "processed": True,
        "skipped": why,
    }

def _applied(item_id: str, notification: AlarmNotification, result: TransitionResult) -> dict[str, Any]:
    return {
        "itemId": item_id,
        "alarmName": notification.name,
        "processed": True,
        "transitioned": result.transitioned,
        "newLevel": int(result.state.level),
    }
