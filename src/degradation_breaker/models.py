# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

# ─── Project imports ───
from .levels import ServiceLevel
from .time_service import TimeService


STATE_KEY = "system-state"
INITIAL_REASON = "Initial state"

_clock = TimeService()


class EventStream(Enum):
    FAILURE = "failure"
    SUCCESS = "success"

    def __str__(self) -> str:
        return self.value

    @property
    def partition(self) -> str:
        """Partition key the stream is stored under."""
        return f"{self.value}-log"


@dataclass
class DegradationState:
    """
    The singleton degradation record.

    Counters are streaks: a failure zeroes `success_count`, and a recovery
    transition zeroes both counters.
    """
    level: ServiceLevel = ServiceLevel.FULL
    failure_count: int = 0
    success_count: int = 0
    last_transition_at: datetime | None = None
    transition_reason: str = INITIAL_REASON
    last_updated_at: datetime | None = None

    @classmethod
    def initial(cls, now: datetime) -> DegradationState:
        return cls(last_transition_at=now, last_updated_at=now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pk": STATE_KEY,
            "currentLevel": int(self.level),
            "failureCount": self.failure_count,
            "successCount": self.success_count,
            "lastTransition": _iso_or_none(self.last_transition_at),
            "transitionReason": self.transition_reason,
            "lastUpdated": _iso_or_none(self.last_updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DegradationState:
        """
        Rebuild a state record from its stored form.

        Raises:
            KeyError, ValueError, TypeError: on a malformed record
        """
        failure_count = int(data["failureCount"])
        success_count = int(data["successCount"])
        if failure_count < 0 or success_count < 0:
            raise ValueError("counters must be non-negative")

        return cls(
            level=ServiceLevel.parse(data["currentLevel"]),
            failure_count=failure_count,
            success_count=success_count,
            last_transition_at=_parse_or_none(data.get("lastTransition")),
            transition_reason=data.get("transitionReason") or INITIAL_REASON,
            last_updated_at=_parse_or_none(data.get("lastUpdated")),
        )


@dataclass(frozen=True)
class Event:
    """One immutable entry in the failure or success stream."""
    stream: EventStream
    occurred_at: datetime
    service_type: str
    service_level: int
    expires_at: datetime
    error_type: str | None = None
    response_time_ms: float | None = None
    sort_key: str = field(default="", compare=False)

    @classmethod
    def failure(
        cls,
        service_type: str,
        error_type: str,
        service_level: int,
        now: datetime,
        ttl: timedelta,
    ) -> Event:
        return cls(
            stream=EventStream.FAILURE,
            occurred_at=now,
            service_type=service_type,
            service_level=int(service_level),
            expires_at=now + ttl,
            error_type=error_type,
            sort_key=_sort_key(now),
        )

    @classmethod
    def success(
        cls,
        service_type: str,
        service_level: int,
        response_time_ms: float,
        now: datetime,
        ttl: timedelta,
    ) -> Event:
        return cls(
            stream=EventStream.SUCCESS,
            occurred_at=now,
            service_type=service_type,
            service_level=int(service_level),
            expires_at=now + ttl,
            response_time_ms=response_time_ms,
            sort_key=_sort_key(now),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        item = {
            "pk": self.stream.partition,
            "sk": self.sort_key,
            "service": self.service_type,
            "serviceLevel": self.service_level,
            "timestamp": _clock.iso(self.occurred_at),
            "ttl": int(self.expires_at.timestamp()),
        }
        if self.stream is EventStream.FAILURE:
            item["errorType"] = self.error_type
        else:
            item["responseTime"] = self.response_time_ms
        return item

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        stream = EventStream(data["pk"].removesuffix("-log"))
        occurred_at = _clock.parse_iso(data["timestamp"])
        return cls(
            stream=stream,
            occurred_at=occurred_at,
            service_type=data["service"],
            service_level=int(data["serviceLevel"]),
            expires_at=datetime.fromtimestamp(int(data["ttl"]), tz=occurred_at.tzinfo),
            error_type=data.get("errorType"),
            response_time_ms=data.get("responseTime"),
            sort_key=data.get("sk", ""),
        )


@dataclass(frozen=True)
class TransitionResult:
    state: DegradationState
    transitioned: bool


def _sort_key(now: datetime) -> str:
    # Timestamp prefix keeps range scans ordered; suffix breaks same-instant ties
    return f"{_clock.iso(now)}#{secrets.token_hex(4)}"

def _iso_or_none(dt: datetime | None) -> str | None:
    return _clock.iso(dt) if dt is not None else None

def _parse_or_none(value: str | None) -> datetime | None:
    return _clock.parse_iso(value) if value else None
