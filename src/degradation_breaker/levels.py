# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
from dataclasses import dataclass
from enum import IntEnum


class ServiceLevel(IntEnum):
    """
    Degradation tiers served by the front.

    • FULL         — every feature, most expensive handler
    • DEGRADED     — cached/partial data, cheaper handler
    • MAINTENANCE  — minimal guaranteed responder, no account data

    Invariants:
    • Levels move one step per evaluation (no FULL ↔ MAINTENANCE edge)
    """
    FULL = 1
    DEGRADED = 2
    MAINTENANCE = 3

    def __str__(self) -> str:
        return self.name

    @property
    def service_type(self) -> str:
        """Handler identity serving this level."""
        match self:
            case ServiceLevel.FULL:
                return "full-service"
            case ServiceLevel.DEGRADED:
                return "degraded-service"
            case ServiceLevel.MAINTENANCE:
                return "maintenance-service"

    @property
    def status(self) -> str:
        """Operator-facing label used by status snapshots."""
        match self:
            case ServiceLevel.FULL:
                return "healthy"
            case ServiceLevel.DEGRADED:
                return "degraded"
            case ServiceLevel.MAINTENANCE:
                return "maintenance"

    @classmethod
    def parse(cls, value: int | str) -> ServiceLevel:
        """
        Coerce a stored or wire value into a level.

        Raises:
            ValueError: if the value is not 1, 2 or 3
        """
        return cls(int(value))


LEVEL_EMOJI = {
    ServiceLevel.FULL:        "💚",
    ServiceLevel.DEGRADED:    "🟡",
    ServiceLevel.MAINTENANCE: "🔴",
}


@dataclass(frozen=True)
class BreakerPolicy:
    """
    Thresholds governing level transitions.

    Failure thresholds compare against the failure streak accumulated
    since the last success; the streak is not reset when FULL degrades
    to DEGRADED, so DEGRADED → MAINTENANCE fires at the 10th failure
    overall, not the 10th failure observed while DEGRADED.
    """

    # ─── Degradation (failure streak) ───
    failures_to_degraded: int = 5
    failures_to_maintenance: int = 10

    # ─── Recovery (success streak) ───
    successes_to_degraded: int = 3
    successes_to_full: int = 5

    def summary(self) -> dict[str, str]:
        """
        Static threshold table exposed by status snapshots.
        """
        return {
            "level1to2": f"{self.failures_to_degraded} failures",
            "level2to3": f"{self.failures_to_maintenance} failures",
            "level3to2": f"{self.successes_to_degraded} consecutive successes",
            "level2to1": f"{self.successes_to_full} consecutive successes",
        }

# Global singleton instance
breaker_policy = BreakerPolicy()
