# ─── Standard library imports ───
from dataclasses import replace
from datetime import datetime, timedelta

# ─── Project imports ───
from .config import Config
from .levels import LEVEL_EMOJI, BreakerPolicy, ServiceLevel, breaker_policy
from .logger import get_logger
from .models import DegradationState, Event, TransitionResult
from .state_store import StateStore
from .telemetry import tlog


# ──────────────────────────────────────────────────────────────
# Pure transition rules
# ──────────────────────────────────────────────────────────────

def apply_failure(
    state: DegradationState,
    policy: BreakerPolicy,
    now: datetime,
) -> TransitionResult:
    """
    Apply one failure observation.

    • failure_count += 1, success_count → 0
    • FULL → DEGRADED once the failure streak reaches the first threshold
    • DEGRADED → MAINTENANCE once it reaches the second threshold
    • The streak is not reset by FULL → DEGRADED

    The rule keys off the stored level, never the level the caller saw.
    """
    updated = replace(
        state,
        failure_count=state.failure_count + 1,
        success_count=0,
    )

    match state.level:
        case ServiceLevel.FULL if updated.failure_count >= policy.failures_to_degraded:
            target = ServiceLevel.DEGRADED
            reason = f"Transition 1→2: {updated.failure_count} failures detected"
        case ServiceLevel.DEGRADED if updated.failure_count >= policy.failures_to_maintenance:
            target = ServiceLevel.MAINTENANCE
            reason = f"Transition 2→3: {updated.failure_count} total failures detected"
        case _:
            return TransitionResult(state=updated, transitioned=False)

    updated.level = target
    updated.transition_reason = reason
    updated.last_transition_at = now
    return TransitionResult(state=updated, transitioned=True)


def apply_success(
    state: DegradationState,
    policy: BreakerPolicy,
    now: datetime,
) -> TransitionResult:
    """
    Apply one success observation.

    • success_count += 1, failure_count → 0
    • MAINTENANCE → DEGRADED, DEGRADED → FULL at their success thresholds
    • A recovery also consumes the success streak
    """
    updated = replace(
        state,
        success_count=state.success_count + 1,
        failure_count=0,
    )

    match state.level:
        case ServiceLevel.MAINTENANCE if updated.success_count >= policy.successes_to_degraded:
            target = ServiceLevel.DEGRADED
            reason = f"Recovery 3→2: {updated.success_count} consecutive successes"
        case ServiceLevel.DEGRADED if updated.success_count >= policy.successes_to_full:
            target = ServiceLevel.FULL
            reason = f"Recovery 2→1: {updated.success_count} consecutive successes"
        case _:
            return TransitionResult(state=updated, transitioned=False)

    updated.level = target
    updated.failure_count = 0
    updated.success_count = 0
    updated.transition_reason = reason
    updated.last_transition_at = now
    return TransitionResult(state=updated, transitioned=True)


# ──────────────────────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────────────────────

class TransitionEngine:
    """
    Sole mutator of the state store.

    Responsibilities:
    • Log each classified outcome to its event stream
    • Read → apply rule → write the singleton record
    • Emit telemetry for level changes

    Non-responsibilities:
    • No locking or version checks (last writer wins)
    • No deduplication of repeated observations
    """

    def __init__(
        self,
        store: StateStore,
        policy: BreakerPolicy = breaker_policy,
        event_ttl: timedelta | None = None,
    ):
        self.store = store
        self.policy = policy
        self.event_ttl = event_ttl or timedelta(days=Config.EVENT_TTL_DAYS)
        self.logger = get_logger("transitions")

    def record_failure(
        self,
        service_type: str,
        error_type: str,
        level: int,
    ) -> TransitionResult:
        now = self.store.time.now()
        self.store.append_event(
            Event.failure(service_type, error_type, level, now, self.event_ttl)
        )

        state = self.store.get()
        result = apply_failure(state, self.policy, now)
        stored = self.store.put(result.state)

        self.logger.debug(
            f"Failure recorded ({service_type}/{error_type}) "
            f"→ failures={stored.failure_count}"
        )
        if result.transitioned:
            self._emit_transition(state.level, stored)
        return TransitionResult(state=stored, transitioned=result.transitioned)

    def record_success(
        self,
        service_type: str,
        level: int,
        response_time_ms: float,
    ) -> TransitionResult:
        now = self.store.time.now()
        self.store.append_event(
            Event.success(service_type, level, response_time_ms, now, self.event_ttl)
        )

        state = self.store.get()
        result = apply_success(state, self.policy, now)
        stored = self.store.put(result.state)

        self.logger.debug(
            f"Success recorded ({service_type}, {response_time_ms:.0f} ms) "
            f"→ successes={stored.success_count}"
        )
        if result.transitioned:
            self._emit_transition(state.level, stored)
        return TransitionResult(state=stored, transitioned=result.transitioned)

    # ──────────────────────────────────────────────────────────────
    # Telemetry helpers
    # ──────────────────────────────────────────────────────────────

    def _emit_transition(self, previous: ServiceLevel, state: DegradationState) -> None:
        degrading = state.level > previous
        if degrading:
            self.logger.warning(f"Level transition triggered: {state.transition_reason}")
        else:
            self.logger.info(f"Recovery transition triggered: {state.transition_reason}")

        tlog(
            self.logger,
            LEVEL_EMOJI[state.level],
            "BREAKER",
            "DEGRADE" if degrading else "RECOVER",
            primary=f"{previous} → {state.level}",
            meta=state.transition_reason,
        )
