import pytest
import sys
import logging
from degradation_breaker.logger import TIMING, EmojiFormatter, setup_logging, get_logger

@pytest.mark.parametrize(
    "level, message, expected_in_output",
    [
        (logging.DEBUG, "Breaker state loaded", True),
        (logging.INFO, "Routing to full-service", True),
        (logging.WARNING, "Five failures in a row", True),
        (logging.ERROR, "Dispatch timed out", True),
        (logging.CRITICAL, "Store unreachable", True),
    ],
)

def test_logger_configuration(capsys, level, message, expected_in_output):
    """Smoke test to ensure logger setup produces expected formatted output at various levels"""
    setup_logging(level=logging.DEBUG)  # always capture all messages
    logger = get_logger("test")

    logger.log(level, message)

    captured = capsys.readouterr()
    assert (message in captured.out) is expected_in_output


def test_logger_is_namespaced():
    assert get_logger("controller").name == "degradation_breaker.controller"


@pytest.mark.parametrize(
    "timing_enabled, expected_in_output",
    [
        (True, True),
        (False, False),
    ],
)
def test_timing_filter(capsys, timing_enabled, expected_in_output):
    setup_logging(level=logging.DEBUG, timing_enabled=timing_enabled)
    logger = get_logger("test")

    logger.timing("Timing | dispatch full-service")

    captured = capsys.readouterr()
    assert ("dispatch full-service" in captured.out) is expected_in_output


def test_level_names_are_shortened(capsys):
    setup_logging(level=logging.DEBUG, timing_enabled=False)
    logging.getLogger().handlers[0].setFormatter(
        EmojiFormatter(fmt="%(levelname)s %(levelemoji)s %(message)s")
    )

    get_logger("test").warning("careful")
    get_logger("test").log(TIMING, "fast")

    out = capsys.readouterr().out
    assert "WARN ⚠️" in out
    assert "fast" not in out


def test_logs_can_target_stderr(capsys):
    setup_logging(level=logging.INFO, stream=sys.stderr)

    get_logger("test").info("Reconcile batch complete")

    captured = capsys.readouterr()
    assert "Reconcile batch complete" in captured.err
    assert captured.out == ""
