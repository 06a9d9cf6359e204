# ─── Standard library imports ───
from typing import Any

# ─── Project imports ───
from . import __version__
from .config import Config
from .errors import DownstreamUnavailable, StoreUnavailable
from .handlers import FEATURES_OFF, JSON_HEADERS, HandlerResponse, LevelHandler, build_handlers
from .levels import LEVEL_EMOJI, BreakerPolicy, ServiceLevel, breaker_policy
from .logger import get_logger
from .models import EventStream
from .state_store import StateStore
from .telemetry import MetricsSink, default_metrics_sink, publish_metric, tlog
from .transitions import TransitionEngine


METRICS_NAMESPACE = "CircuitBreaker/Controller"

# Error types recorded against the failure stream
UNAVAILABLE_ERROR_TYPE = "LambdaExecutionError"
SERVICE_ERROR_TYPE = "ServiceError"

ALLOWED_METHODS = ("GET", "POST")


class RoutingController:
    """
    Synchronous entry point of the degradation breaker.

    Responsibilities:
    • Route each request to the handler of the current level
    • Classify the outcome and feed exactly one observation to the engine
    • Annotate responses with the level and handler that served them
    • Serve read-only status snapshots

    Non-responsibilities:
    • No retries (a failed dispatch is a breaker failure, not a retry)
    • No coordination with other controllers beyond the store
    """

    def __init__(
        self,
        store: StateStore,
        engine: TransitionEngine | None = None,
        handlers: dict[ServiceLevel, LevelHandler] | None = None,
        metrics: MetricsSink | None = None,
        policy: BreakerPolicy = breaker_policy,
        status_window_s: int = Config.STATUS_WINDOW_S,
    ):
        # ─── Dependencies ───
        self.store = store
        self.engine = engine or TransitionEngine(store, policy)
        self.handlers = handlers if handlers is not None else build_handlers()
        self.metrics = metrics or default_metrics_sink()
        self.policy = policy
        self.status_window_s = status_window_s

        self.logger = get_logger("controller")

    # ──────────────────────────────────────────────────────────────
    # HTTP boundary
    # ──────────────────────────────────────────────────────────────

    def handle(self, event: dict[str, Any]) -> dict[str, Any]:
        """
        Dispatch an HTTP-style envelope by method.

        • POST → route()
        • GET  → status()
        • else → 405 with an Allow header
        """
        try:
            method = str(event.get("httpMethod") or event.get("method") or "POST").upper()
            match method:
                case "POST":
                    return self.route(event)
                case "GET":
                    return self.status()
                case _:
                    return self._method_not_allowed(method)
        except Exception as e:
            self.logger.exception(f"Unhandled controller error: {e}")
            publish_metric(
                self.metrics, METRICS_NAMESPACE, "Error", 1,
                {"ErrorType": type(e).__name__},
            )
            return self._maintenance_fallback(
                classification="ControllerError", reason=str(e)
            )

    # ──────────────────────────────────────────────────────────────
    # Routing
    # ──────────────────────────────────────────────────────────────

    def route(self, request: dict[str, Any]) -> dict[str, Any]:
        start_ms = self.store.time.monotonic_ms()

        try:
            state = self.store.get()
        except StoreUnavailable as e:
            return self._store_failure(e)

        level = state.level
        handler = self.handlers[level]
        publish_metric(
            self.metrics, METRICS_NAMESPACE, "Invocation", 1,
            {"CurrentLevel": str(int(level))},
        )

        try:
            response = handler.invoke(request)
        except DownstreamUnavailable as e:
            self.logger.error(f"Dispatch to {handler.service_type} failed: {e.reason}")
            try:
                self.engine.record_failure(handler.service_type, UNAVAILABLE_ERROR_TYPE, level)
            except StoreUnavailable as store_error:
                return self._store_failure(store_error, level=level, service_type=handler.service_type)

            self._publish_outcome("Error", level, "DownstreamUnavailable", start_ms)
            return self._maintenance_fallback(
                classification="DownstreamUnavailable",
                reason=e.reason,
                level=level,
                service_type=handler.service_type,
            )

        elapsed_ms = self.store.time.monotonic_ms() - start_ms
        self.logger.timing(f"Timing | dispatch {handler.service_type:<20} [{elapsed_ms:8.1f} ms]")

        try:
            if response.ok:
                result = self.engine.record_success(handler.service_type, level, elapsed_ms)
            else:
                self.logger.warning(
                    f"{handler.service_type} answered {response.status_code}; recording failure"
                )
                result = self.engine.record_failure(handler.service_type, SERVICE_ERROR_TYPE, level)
        except StoreUnavailable as e:
            return self._store_failure(e, level=level, service_type=handler.service_type)

        if response.ok:
            self._publish_outcome("Success", level, None, start_ms)
        else:
            self._publish_outcome("Error", level, "DownstreamError", start_ms)

        if result.transitioned:
            tlog(
                self.logger,
                LEVEL_EMOJI[result.state.level],
                "ROUTING",
                "LEVEL CHANGE",
                primary=f"next → {result.state.level.service_type}",
                meta=result.state.transition_reason,
            )

        return self._annotate(response, level, handler)

    # ──────────────────────────────────────────────────────────────
    # Status
    # ──────────────────────────────────────────────────────────────

    def status(self) -> dict[str, Any]:
        """
        Read-only snapshot of the breaker. Never records an observation.
        """
        start_ms = self.store.time.monotonic_ms()

        try:
            state = self.store.get()
            recent_failures = self.store.query_recent(EventStream.FAILURE, self.status_window_s)
            recent_successes = self.store.query_recent(EventStream.SUCCESS, self.status_window_s)
        except StoreUnavailable as e:
            return self._store_failure(e)

        level = state.level
        record = state.to_dict()
        handler = self.handlers[level]
        endpoint = _endpoint_of(handler)
        response_time = round(self.store.time.monotonic_ms() - start_ms, 1)

        for name, value in (
            ("CurrentLevel", int(level)),
            ("FailureCount", state.failure_count),
            ("SuccessCount", state.success_count),
        ):
            publish_metric(self.metrics, METRICS_NAMESPACE, name, value)

        body = {
            "circuitBreaker": {
                "currentLevel": int(level),
                "activeService": handler.service_type,
                "serviceEndpoint": endpoint,
                "status": level.status,
                "state": {
                    "failureCount": state.failure_count,
                    "successCount": state.success_count,
                    "lastTransition": record["lastTransition"],
                    "transitionReason": state.transition_reason,
                    "lastUpdated": record["lastUpdated"],
                },
                "thresholds": self.policy.summary(),
                "recentActivity": {
                    "failures": len(recent_failures),
                    "successes": len(recent_successes),
                    "timeWindow": _window_label(self.status_window_s),
                },
            },
            "routing": {
                "recommendedService": handler.service_type,
                "serviceEndpoint": endpoint,
                "level": int(level),
            },
            "metadata": {
                "timestamp": self.store.time.iso(),
                "responseTime": response_time,
                "controllerVersion": __version__,
            },
        }

        return {
            "statusCode": 200,
            "headers": {**JSON_HEADERS, **_routing_headers(level, handler.service_type)},
            "body": body,
        }

    # ──────────────────────────────────────────────────────────────
    # Response helpers
    # ──────────────────────────────────────────────────────────────

    def _annotate(
        self,
        response: HandlerResponse,
        level: ServiceLevel,
        handler: LevelHandler,
    ) -> dict[str, Any]:
        annotated = response.to_dict()
        annotated["headers"].update(_routing_headers(level, handler.service_type))
        if isinstance(annotated["body"], dict):
            annotated["body"] = {
                **annotated["body"],
                "routing": {
                    "level": int(level),
                    "service": handler.service_type,
                    "endpoint": _endpoint_of(handler),
                },
            }
        return annotated

    def _store_failure(
        self,
        error: StoreUnavailable,
        level: ServiceLevel | None = None,
        service_type: str | None = None,
    ) -> dict[str, Any]:
        self.logger.error(f"State store unavailable: {error}")
        publish_metric(
            self.metrics, METRICS_NAMESPACE, "Error", 1, {"ErrorType": "StoreUnavailable"}
        )
        return self._maintenance_fallback(
            classification="StoreUnavailable",
            reason=str(error),
            level=level,
            service_type=service_type,
        )

    def _maintenance_fallback(
        self,
        classification: str,
        reason: str,
        level: ServiceLevel | None = None,
        service_type: str | None = None,
    ) -> dict[str, Any]:
        """
        Locally synthesized 503 served in maintenance mode.

        Names the originally intended target when one was resolved.
        """
        effective = level if level is not None else ServiceLevel.MAINTENANCE
        served_by = service_type or ServiceLevel.MAINTENANCE.service_type
        maintenance = ServiceLevel.MAINTENANCE

        return {
            "statusCode": 503,
            "headers": {**JSON_HEADERS, **_routing_headers(effective, served_by)},
            "body": {
                "level": int(maintenance),
                "status": maintenance.status,
                "message": "Service temporarily unavailable, defaulting to maintenance mode",
                "features": dict(FEATURES_OFF),
                "error": {
                    "classification": classification,
                    "details": reason,
                    "intendedLevel": int(level) if level is not None else None,
                    "intendedService": service_type,
                },
                "routing": {
                    "level": int(effective),
                    "service": served_by,
                    "fallback": True,
                },
                "timestamp": self.store.time.iso(),
            },
        }

    def _method_not_allowed(self, method: str) -> dict[str, Any]:
        self.logger.warning(f"Rejected unsupported method {method}")
        return {
            "statusCode": 405,
            "headers": {**JSON_HEADERS, "Allow": ", ".join(ALLOWED_METHODS)},
            "body": {"message": f"Method {method} not allowed"},
        }

    def _publish_outcome(
        self,
        name: str,
        level: ServiceLevel,
        error_type: str | None,
        start_ms: float,
    ) -> None:
        dims = {"CurrentLevel": str(int(level))}
        if error_type:
            dims["ErrorType"] = error_type
        publish_metric(self.metrics, METRICS_NAMESPACE, name, 1, dims)
        publish_metric(
            self.metrics, METRICS_NAMESPACE, "ResponseTime",
            round(self.store.time.monotonic_ms() - start_ms, 1),
            unit="Milliseconds",
        )


def _routing_headers(level: ServiceLevel, service_type: str) -> dict[str, str]:
    return {
        "X-Circuit-Breaker-Level": str(int(level)),
        "X-Active-Service": service_type,
    }

def _endpoint_of(handler: LevelHandler) -> str:
    return getattr(handler, "url", None) or "in-process"

def _window_label(seconds: int) -> str:
    if seconds and seconds % 60 == 0:
        minutes = seconds // 60
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds} seconds"
