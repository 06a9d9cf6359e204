# --- Standard library imports ---
import sys
import logging
from typing import TextIO

# --- Project imports ---
from .config import Config


ROOT_NAMESPACE = "degradation_breaker"

# --- Custom log levels ---
TIMING = 25   # Sits between INFO and WARNING
logging.addLevelName(TIMING, "TIME")

def timing(self, message, *args, **kwargs):
    """Logger.timing(): dispatch latency lines, hidden unless LOG_TIMING is on."""
    if self.isEnabledFor(TIMING):
        self._log(TIMING, message, args, stacklevel=2, **kwargs)

logging.Logger.timing = timing

# --- Filters ---
class TimingFilter(logging.Filter):
    """Drop TIMING records unless enabled; every other level passes."""
    def __init__(self, enabled: bool):
        super().__init__()
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        return self.enabled if record.levelno == TIMING else True

# --- Formatting ---
LOG_LEVEL_EMOJIS = {
    logging.DEBUG: "🧱",
    logging.INFO: "🟢",
    TIMING: "⚡️",
    logging.WARNING: "⚠️ ",
    logging.ERROR: "❌",
    logging.CRITICAL: "🔥",
}

# Four-letter names keep the columns aligned
LEVEL_NAME_MAP = {
    "WARNING": "WARN",
    "CRITICAL": "FATAL",
}

DEFAULT_FORMAT = "%(asctime)s %(levelemoji)s %(name)s:%(funcName)s → %(message)s"
DEFAULT_DATEFMT = "%H:%M:%S"

# Chatty at DEBUG; one line per downstream/collector connection
NOISY_LIBRARIES = ("urllib3", "requests")

class EmojiFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelemoji = LOG_LEVEL_EMOJIS.get(record.levelno, "")
        record.levelname = LEVEL_NAME_MAP.get(record.levelname, record.levelname)
        return super().format(record)

# --- Public logging setup API ---
def setup_logging(
    level=logging.INFO,
    timing_enabled: bool | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Install a single emoji handler on the root logger.

    Args:
        level: root log level
        timing_enabled: show TIMING lines (defaults to Config.LOG_TIMING)
        stream: destination (defaults to stdout; the CLI passes stderr so
            its JSON result owns stdout)
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(EmojiFormatter(fmt=DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
    handler.addFilter(
        TimingFilter(enabled=Config.LOG_TIMING if timing_enabled is None else timing_enabled)
    )
    root.addHandler(handler)

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_NAMESPACE}.{name}")
