# --- Standard library imports ---
import time
from datetime import datetime, timezone


class TimeService:
    """
    UTC wall clock shared by the store and the transition engine.

    - Provides:
        * now()          aware UTC datetime
        * iso()          ISO8601 string with a trailing 'Z'
        * parse_iso()    inverse of iso()
        * monotonic_ms() for latency measurement
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def iso(self, dt: datetime | None = None) -> str:
        """Format an aware datetime as '2025-09-05T02:33:15.640385Z'."""
        dt = dt if dt is not None else self.now()
        return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    def parse_iso(self, iso_str: str) -> datetime:
        """
        Parse an ISO8601 timestamp, normalizing 'Z' to UTC.

        Raises:
            ValueError: if the string is not ISO8601
        """
        dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000
