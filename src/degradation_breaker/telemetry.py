# ─── Standard library imports ───
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Protocol

# ─── Third-party imports ───
import requests

# ─── Project imports ───
from .config import Config
from .logger import get_logger


logger = get_logger("telemetry")

def tlog(
    logger: logging.Logger,
    emoji: str,
    subsystem: str,
    state: str,
    primary: str = "—--",
    meta: str | None = None,
) -> None:
    """
    Emit a standardized telemetry log "tlog" line.

    Format:
        SUBSYSTEM STATE PRIMARY | meta data
    """
    msg = f"{subsystem:<12} {state:<20} {primary:<16}"
    if meta:
        msg += f" | {meta}"

    logger.info(f"{emoji} {msg}", stacklevel=2)


@contextmanager
def best_effort(what: str) -> Iterator[None]:
    """
    Run a side effect whose failure must never reach the caller.

    Any exception raised inside the block is logged and discarded.
    """
    try:
        yield
    except Exception as e:
        logger.warning(f"Best-effort {what} failed ({type(e).__name__}: {e})")


# ──────────────────────────────────────────────────────────────
# Metrics sinks
# ──────────────────────────────────────────────────────────────

class MetricsSink(Protocol):
    def publish(
        self,
        namespace: str,
        name: str,
        value: float,
        dimensions: dict[str, str] | None = None,
        unit: str = "Count",
    ) -> None: ...


class LogMetricsSink:
    """Write each datapoint as a telemetry line (default sink)."""

    def __init__(self):
        self.logger = get_logger("metrics")

    def publish(self, namespace, name, value, dimensions=None, unit="Count"):
        dims = ",".join(f"{k}={v}" for k, v in (dimensions or {}).items())
        tlog(
            self.logger,
            "📈",
            namespace.split("/")[-1].upper(),
            name,
            primary=f"{value} {unit}",
            meta=dims or None,
        )


class HttpMetricsSink:
    """
    POST datapoints to an HTTP collector.

    Fast-fail semantics: a single request with a short timeout, no retries.
    Errors propagate to the caller; wrap calls with `publish_metric`.
    """

    def __init__(self, url: str, timeout: float = Config.METRICS_TIMEOUT_S):
        self.url = url
        self.timeout = timeout

    def publish(self, namespace, name, value, dimensions=None, unit="Count"):
        payload = {
            "namespace": namespace,
            "metricName": name,
            "value": value,
            "unit": unit,
            "dimensions": dimensions or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        requests.post(self.url, json=payload, timeout=self.timeout).raise_for_status()


class NullMetricsSink:
    def publish(self, namespace, name, value, dimensions=None, unit="Count"):
        pass


def publish_metric(
    sink: MetricsSink,
    namespace: str,
    name: str,
    value: float,
    dimensions: dict[str, str] | None = None,
    unit: str = "Count",
) -> None:
    """Publish one datapoint; never raises."""
    with best_effort(f"metric {namespace}/{name}"):
        sink.publish(namespace, name, value, dimensions=dimensions, unit=unit)


def default_metrics_sink() -> MetricsSink:
    if Config.METRICS_URL:
        return HttpMetricsSink(Config.METRICS_URL)
    return LogMetricsSink()
