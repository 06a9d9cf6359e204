# --- Standard library imports ---
import os
from pathlib import Path

# --- Third-party imports ---
from dotenv import load_dotenv


# Load .env once
load_dotenv()

def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default

def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Centralized config for routing, persistence and observability"""

    # --- Persistence ---
    STATE_DIR = Path(
        os.getenv("STATE_DIR", Path.home() / ".cache" / "degradation_breaker")
    ).expanduser()
    EVENT_TTL_DAYS = _env_int("EVENT_TTL_DAYS", 7)

    # --- Downstream handlers (unset → in-process reference handler) ---
    FULL_SERVICE_URL = os.getenv("FULL_SERVICE_URL")
    DEGRADED_SERVICE_URL = os.getenv("DEGRADED_SERVICE_URL")
    MAINTENANCE_SERVICE_URL = os.getenv("MAINTENANCE_SERVICE_URL")
    HANDLER_TIMEOUT_S = _env_int("HANDLER_TIMEOUT_S", 5)
    SIMULATE_RANDOM_FAILURES = _env_bool("SIMULATE_RANDOM_FAILURES")

    # --- Status / reconciliation policy ---
    STATUS_WINDOW_S = _env_int("STATUS_WINDOW_S", 300)
    RECOVERY_RESPONSE_TIME_MS = _env_int("RECOVERY_RESPONSE_TIME_MS", 50)

    # --- Metrics sink (unset → metrics are logged) ---
    METRICS_URL = os.getenv("METRICS_URL")
    METRICS_TIMEOUT_S = _env_int("METRICS_TIMEOUT_S", 2)

    # --- Observability Policy ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_TIMING = _env_bool("LOG_TIMING")
