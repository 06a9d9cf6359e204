import pytest
from datetime import datetime, timedelta, timezone

from degradation_breaker.models import DegradationState
from degradation_breaker.levels import ServiceLevel
from degradation_breaker.time_service import TimeService
from degradation_breaker.state_store import InMemoryStateStore
from degradation_breaker.transitions import TransitionEngine


T0 = datetime(2025, 9, 5, 2, 33, 15, tzinfo=timezone.utc)


class FrozenTime(TimeService):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.current = start
        self.mono_ms = 0.0

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)
        self.mono_ms += seconds * 1000

    def monotonic_ms(self) -> float:
        return self.mono_ms


class RecordingSink:
    """Metrics sink that keeps every datapoint for assertions."""

    def __init__(self):
        self.points = []

    def publish(self, namespace, name, value, dimensions=None, unit="Count"):
        self.points.append((namespace, name, value, dimensions or {}))

    def names(self):
        return [name for _, name, _, _ in self.points]


# ========
# FIXTURES
# ========
@pytest.fixture
def clock():
    return FrozenTime()

@pytest.fixture
def store(clock):
    return InMemoryStateStore(clock)

@pytest.fixture
def engine(store):
    return TransitionEngine(store)

@pytest.fixture
def sink():
    return RecordingSink()

@pytest.fixture
def seed_state(store):
    """Overwrite the singleton record with the given fields."""
    def _seed(level=ServiceLevel.FULL, failure_count=0, success_count=0):
        return store.put(
            DegradationState(
                level=level,
                failure_count=failure_count,
                success_count=success_count,
            )
        )
    return _seed
