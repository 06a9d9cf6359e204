# ─── Standard library imports ───
import json
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

# ─── Third-party imports ───
import requests

# ─── Project imports ───
from .config import Config
from .errors import DownstreamUnavailable, ParseError
from .levels import ServiceLevel
from .logger import get_logger


logger = get_logger("handlers")

JSON_HEADERS = {"Content-Type": "application/json"}


@dataclass
class HandlerResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def to_dict(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "headers": dict(self.headers),
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HandlerResponse":
        body = data.get("body")
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError:
                body = {"message": body}
        return cls(
            status_code=int(data["statusCode"]),
            headers=dict(data.get("headers") or {}),
            body=body,
        )


def parse_request_body(request: dict[str, Any]) -> dict[str, Any]:
    """
    Decode the optional JSON body of a request envelope.

    Raises:
        ParseError: if a body is present but is not a JSON object
    """
    body = request.get("body")
    if body is None or body == "":
        return {}
    if isinstance(body, dict):
        return body
    try:
        decoded = json.loads(body)
    except (TypeError, ValueError) as e:
        raise ParseError(f"request body is not valid JSON: {e}") from e
    if not isinstance(decoded, dict):
        raise ParseError("request body must be a JSON object")
    return decoded


# ──────────────────────────────────────────────────────────────
# Handler adapters
# ──────────────────────────────────────────────────────────────

class LevelHandler(Protocol):
    service_type: str

    def invoke(self, request: dict[str, Any]) -> HandlerResponse:
        """
        Dispatch one request.

        Raises:
            DownstreamUnavailable: unreachable, timed out or transport fault
        """
        ...


class HttpLevelHandler:
    """
    Level handler deployed behind an HTTP endpoint.

    Error statuses are returned, not raised; only transport faults raise.
    """

    def __init__(self, service_type: str, url: str, timeout: float = Config.HANDLER_TIMEOUT_S):
        self.service_type = service_type
        self.url = url
        self.timeout = timeout

    def invoke(self, request: dict[str, Any]) -> HandlerResponse:
        body = request.get("body")
        data = body if isinstance(body, str) else json.dumps(body or {})

        try:
            resp = requests.post(
                self.url, data=data, headers=JSON_HEADERS, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise DownstreamUnavailable(
                self.service_type, f"{type(e).__name__}: {e}"
            ) from e

        try:
            payload = resp.json()
        except ValueError:
            payload = {"message": resp.text}

        return HandlerResponse(
            status_code=resp.status_code,
            headers=dict(resp.headers),
            body=payload,
        )


class CallableLevelHandler:
    """
    In-process level handler run on a worker thread under a timeout.

    Each call gets its own daemon thread. A handler that overruns is
    abandoned, not interrupted, and never holds up interpreter exit.
    """

    def __init__(
        self,
        service_type: str,
        fn: Callable[[dict[str, Any]], dict[str, Any]],
        timeout: float = Config.HANDLER_TIMEOUT_S,
    ):
        self.service_type = service_type
        self.fn = fn
        self.timeout = timeout

    def invoke(self, request: dict[str, Any]) -> HandlerResponse:
        outcome: dict[str, Any] = {}

        def run() -> None:
            try:
                outcome["response"] = self.fn(request)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(
            target=run, name=f"{self.service_type}-handler", daemon=True
        )
        worker.start()
        worker.join(self.timeout)

        if worker.is_alive():
            raise DownstreamUnavailable(
                self.service_type, f"timed out after {self.timeout}s"
            )
        if "error" in outcome:
            e = outcome["error"]
            raise DownstreamUnavailable(
                self.service_type, f"{type(e).__name__}: {e}"
            ) from e

        raw = outcome.get("response")
        try:
            return HandlerResponse.from_dict(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise DownstreamUnavailable(
                self.service_type, f"malformed handler response: {e}"
            ) from e


# ──────────────────────────────────────────────────────────────
# Reference handlers
# ──────────────────────────────────────────────────────────────

FEATURES_OFF = {
    "balanceInquiry": False,
    "transferHistory": False,
    "newTransfers": False,
    "fullReporting": False,
}

CACHED_TRANSFERS = [
    {"id": 1, "amount": 500, "type": "credit", "date": "2024-01-01"},
    {"id": 2, "amount": 250, "type": "debit", "date": "2024-01-02"},
    {"id": 3, "amount": 1000, "type": "credit", "date": "2024-01-03"},
    {"id": 4, "amount": 750, "type": "debit", "date": "2024-01-04"},
    {"id": 5, "amount": 300, "type": "credit", "date": "2024-01-05"},
]

SIMULATED_FAILURE_RATE = {
    ServiceLevel.FULL: 0.05,
    ServiceLevel.DEGRADED: 0.02,
    ServiceLevel.MAINTENANCE: 0.10,
}


def _should_fail(level: ServiceLevel, body: dict[str, Any], simulate: bool) -> bool:
    if body.get("error") is True:
        return True
    return simulate and random.random() < SIMULATED_FAILURE_RATE[level]


def _reference_response(level: ServiceLevel, status_code: int, **fields) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {
            **JSON_HEADERS,
            "X-Service-Level": str(int(level)),
            "X-Service-Type": level.service_type,
        },
        "body": {
            "service": level.service_type,
            "level": int(level),
            **fields,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


def _request_context(request: dict[str, Any]) -> tuple[dict[str, Any], str]:
    try:
        body = parse_request_body(request)
    except ParseError as e:
        logger.debug(f"Could not parse request body, using defaults ({e})")
        body = {}
    path_params = request.get("pathParameters") or {}
    account_id = path_params.get("accountId") or body.get("accountId") or "default-account"
    return body, account_id


def full_service(request: dict[str, Any], simulate: bool | None = None) -> dict[str, Any]:
    """Level 1: balance plus the complete transfer history."""
    simulate = Config.SIMULATE_RANDOM_FAILURES if simulate is None else simulate
    body, account_id = _request_context(request)
    level = ServiceLevel.FULL

    if _should_fail(level, body, simulate):
        return _reference_response(
            level, 500, accountId=account_id, status="error",
            message="Full service error",
        )

    return _reference_response(
        level, 200, accountId=account_id, status="operational",
        message="Full functionality available",
        data={
            "balance": {"amount": 12500.75, "currency": "USD"},
            "transfers": CACHED_TRANSFERS,
            "features": {k: True for k in FEATURES_OFF},
        },
    )


def degraded_service(request: dict[str, Any], simulate: bool | None = None) -> dict[str, Any]:
    """Level 2: balance plus the last five cached transfers."""
    simulate = Config.SIMULATE_RANDOM_FAILURES if simulate is None else simulate
    body, account_id = _request_context(request)
    level = ServiceLevel.DEGRADED

    if _should_fail(level, body, simulate):
        return _reference_response(
            level, 503, accountId=account_id, status="error",
            message="Degraded service error",
        )

    return _reference_response(
        level, 200, accountId=account_id, status="degraded",
        message="Partial functionality: last 5 transfers from cache",
        data={
            "balance": {"amount": 12500.75, "currency": "USD"},
            "transfers": CACHED_TRANSFERS[-5:],
            "features": {**FEATURES_OFF, "balanceInquiry": True, "transferHistory": True},
        },
        limitations=[
            "Only the last 5 transfers are available",
            "New transfers are disabled",
            "Full reporting is unavailable",
        ],
    )


def maintenance_service(request: dict[str, Any], simulate: bool | None = None) -> dict[str, Any]:
    """Level 3: minimal responder, no account data."""
    simulate = Config.SIMULATE_RANDOM_FAILURES if simulate is None else simulate
    body, account_id = _request_context(request)
    level = ServiceLevel.MAINTENANCE

    if _should_fail(level, body, simulate):
        return _reference_response(
            level, 503, accountId=account_id, status="maintenance_error",
            message="Level 3: system under maintenance, try again later",
            features=dict(FEATURES_OFF),
        )

    return _reference_response(
        level, 200, accountId=account_id, status="maintenance_minimal",
        message="Level 3: minimal operation",
        features=dict(FEATURES_OFF),
    )


REFERENCE_HANDLERS = {
    ServiceLevel.FULL: full_service,
    ServiceLevel.DEGRADED: degraded_service,
    ServiceLevel.MAINTENANCE: maintenance_service,
}

LEVEL_URLS = {
    ServiceLevel.FULL: lambda: Config.FULL_SERVICE_URL,
    ServiceLevel.DEGRADED: lambda: Config.DEGRADED_SERVICE_URL,
    ServiceLevel.MAINTENANCE: lambda: Config.MAINTENANCE_SERVICE_URL,
}


def build_handlers(timeout: float | None = None) -> dict[ServiceLevel, LevelHandler]:
    """
    Resolve one handler per level from config.

    A configured URL selects the HTTP handler; otherwise the in-process
    reference handler serves that level.
    """
    timeout = Config.HANDLER_TIMEOUT_S if timeout is None else timeout
    handlers: dict[ServiceLevel, LevelHandler] = {}
    for level in ServiceLevel:
        url = LEVEL_URLS[level]()
        if url:
            handlers[level] = HttpLevelHandler(level.service_type, url, timeout)
        else:
            handlers[level] = CallableLevelHandler(
                level.service_type, REFERENCE_HANDLERS[level], timeout
            )
        logger.debug(f"{level} → {handlers[level].__class__.__name__} ({url or 'in-process'})")
    return handlers
