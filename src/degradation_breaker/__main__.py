# --- Standard library imports ---
import sys
import json
import logging
import argparse
from pathlib import Path

# --- Project imports ---
from .config import Config
from .errors import BreakerError
from .logger import get_logger, setup_logging
from .controller import RoutingController
from .reconciliation import ReconciliationProcessor
from .state_store import InMemoryStateStore, JsonFileStateStore
from .telemetry import NullMetricsSink
from .transitions import TransitionEngine


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="degradation_breaker",
        description="Three-level service degradation controller",
    )
    parser.add_argument(
        "--memory", action="store_true",
        help="use a throwaway in-memory store instead of STATE_DIR",
    )
    parser.add_argument(
        "--state-dir", type=Path, default=None,
        help=f"JSON store directory (default: {Config.STATE_DIR})",
    )
    parser.add_argument(
        "--no-metrics", action="store_true",
        help="discard metric datapoints instead of logging or posting them",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="print the current breaker snapshot")

    route = sub.add_parser("route", help="route one request through the breaker")
    route.add_argument("--error", action="store_true", help="ask the handler to fail")
    route.add_argument("--account", default=None, help="account id forwarded to the handler")
    route.add_argument("--count", type=int, default=1, help="number of requests to send")

    reconcile = sub.add_parser("reconcile", help="apply a batch of alarm notifications")
    reconcile.add_argument("file", type=Path, help="JSON list of records or {\"Records\": [...]}")

    sub.add_parser("purge", help="drop expired failure/success events")
    return parser


def run(args: argparse.Namespace) -> dict:
    """
    Execute one CLI command and return its JSON-serializable result.
    """
    store = InMemoryStateStore() if args.memory else JsonFileStateStore(args.state_dir)
    metrics = NullMetricsSink() if args.no_metrics else None

    match args.command:
        case "status":
            return RoutingController(store, metrics=metrics).handle({"httpMethod": "GET"})

        case "route":
            controller = RoutingController(store, metrics=metrics)
            body = {"error": args.error}
            if args.account:
                body["accountId"] = args.account
            responses = [
                controller.handle({"httpMethod": "POST", "body": json.dumps(body)})
                for _ in range(args.count)
            ]
            return responses[-1] if args.count == 1 else {"responses": responses}

        case "reconcile":
            event = json.loads(args.file.read_text())
            if isinstance(event, list):
                event = {"Records": event}
            processor = ReconciliationProcessor(TransitionEngine(store), metrics=metrics)
            return processor.handle(event)

        case "purge":
            return {"purged": store.purge_expired()}


def main(argv: list[str] | None = None) -> int:
    """
    Entry point for the degradation breaker CLI.

    Logs go to stderr; the command result is printed to stdout as JSON.
    """
    setup_logging(level=getattr(logging, Config.LOG_LEVEL, logging.INFO), stream=sys.stderr)
    logger = get_logger("main")
    logger.debug(f"Python version: {sys.version}")

    args = build_parser().parse_args(argv)

    try:
        result = run(args)
    except (BreakerError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0

if __name__ == "__main__":
    sys.exit(main())
