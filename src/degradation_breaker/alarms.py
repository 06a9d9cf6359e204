# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import json
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

# ─── Project imports ───
from .errors import ParseError
from .levels import ServiceLevel


LEVEL_PATTERN = re.compile(r"Level(\d+)")

FAILURE_KEYWORDS = ("ErrorRate", "Failure")
RECOVERY_KEYWORDS = ("Recovery", "Success")

ALARM_STATE = "ALARM"

# Native alerting-system keys first, short aliases second
FIELD_ALIASES = {
    "name": ("AlarmName", "name"),
    "new_state": ("NewStateValue", "newState"),
    "old_state": ("OldStateValue", "oldState"),
    "reason": ("StateReason", "reason"),
    "description": ("AlarmDescription", "description"),
}


class AlarmClass(Enum):
    FAILURE = auto()
    RECOVERY = auto()
    UNKNOWN = auto()

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class AlarmNotification:
    """
    One decoded alarm state change.

    Only `name` carries routing semantics (level digit + class keyword);
    `reason` is used solely to infer the recorded error type.
    """
    name: str
    new_state: str
    old_state: str | None
    reason: str
    service_level: ServiceLevel
    description: str | None = None

    @property
    def service_type(self) -> str:
        return self.service_level.service_type

    @property
    def alarm_class(self) -> AlarmClass:
        if any(k in self.name for k in FAILURE_KEYWORDS):
            return AlarmClass.FAILURE
        if any(k in self.name for k in RECOVERY_KEYWORDS):
            return AlarmClass.RECOVERY
        return AlarmClass.UNKNOWN

    @property
    def is_entering_alarm(self) -> bool:
        return self.new_state == ALARM_STATE

    @property
    def error_type(self) -> str:
        if "Timeout" in self.reason:
            return "TimeoutError"
        if "Rate" in self.reason:
            return "HighErrorRate"
        return "SystemError"


def _field(data: dict[str, Any], key: str) -> Any:
    for alias in FIELD_ALIASES[key]:
        if alias in data:
            return data[alias]
    return None


def _decode_json(raw: Any, what: str) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ParseError(f"{what} is not valid JSON: {e}") from e


def unwrap_message(body: Any) -> dict[str, Any]:
    """
    Decode a queue record body into the raw alarm payload.

    Accepts the payload directly or wrapped once in a
    {"Type": "Notification", "Message": "<json>"} envelope.

    Raises:
        ParseError: if any layer is not a JSON object
    """
    decoded = _decode_json(body, "record body")
    if not isinstance(decoded, dict):
        raise ParseError("record body must be a JSON object")

    envelope_type = decoded.get("Type", decoded.get("type"))
    message = decoded.get("Message", decoded.get("message"))
    if envelope_type == "Notification" and message is not None:
        decoded = _decode_json(message, "notification message")
        if not isinstance(decoded, dict):
            raise ParseError("notification message must be a JSON object")

    return decoded


def parse_notification(payload: dict[str, Any]) -> AlarmNotification:
    """
    Build an AlarmNotification from a raw payload.

    Raises:
        ParseError: missing name/state, or no decodable Level1–3 digit
    """
    name = _field(payload, "name")
    new_state = _field(payload, "new_state")
    if not isinstance(name, str) or not name:
        raise ParseError("alarm notification has no name")
    if not isinstance(new_state, str) or not new_state:
        raise ParseError(f"alarm {name!r} has no new state")

    match = LEVEL_PATTERN.search(name)
    if match is None:
        raise ParseError(f"alarm {name!r} has no Level<N> marker")
    try:
        level = ServiceLevel.parse(match.group(1))
    except ValueError as e:
        raise ParseError(f"alarm {name!r} names unknown level {match.group(1)}") from e

    old_state = _field(payload, "old_state")
    return AlarmNotification(
        name=name,
        new_state=new_state.upper(),
        old_state=old_state.upper() if isinstance(old_state, str) else None,
        reason=str(_field(payload, "reason") or ""),
        service_level=level,
        description=_field(payload, "description"),
    )
