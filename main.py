#!/usr/bin/env python3
"""
PR Watchdog - Main CLI entrypoint

Tracks GitHub pull requests from webhook deliveries and posts Slack alerts
for PRs that are stale, waiting for review, or stalled after review.

Usage:
    python main.py serve                                   # Webhook receiver + scan loops
    python main.py scan                                    # One scan tick, all alert kinds
    python main.py scan --kind stalled                     # One scan tick, one kind
    python main.py ingest payload.json --event pull_request
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from models.config_models import Config
from models.data_models import AlertKind
from alerts.dispatcher import AlertDispatcher
from alerts.engine import AlertEngine, TickReport
from alerts.slack import SlackWebhookSink
from storage.base import PullRequestStore
from storage.factory import build_store
from utils.config_loader import load_config
from utils.errors import PRWatchdogError
from utils.logger import setup_logger
from webhooks.lifecycle import PullRequestLifecycle
from webhooks.normalizer import normalize

logger = logging.getLogger(__name__)


def run_scan(
    kinds: List[AlertKind],
    config: Config,
    store: PullRequestStore,
    sink: Optional[SlackWebhookSink] = None,
) -> TickReport:
    """
    Run a single scan tick and wait for every delivery to finish.

    Args:
        kinds: Alert kinds to scan for
        config: Loaded config (thresholds, caps, default webhook)
        store: State store
        sink: Alert sink (default: SlackWebhookSink)

    Returns:
        TickReport for the tick
    """
    async def _tick() -> TickReport:
        dispatcher = AlertDispatcher(pacing_seconds=config.alerts.dispatch_pacing_seconds)
        engine = AlertEngine(
            store=store,
            dispatcher=dispatcher,
            sink=sink or SlackWebhookSink(),
            config=config.alerts,
            default_webhook_url=config.credentials.slack_webhook_url,
        )
        try:
            return await engine.run_tick(kinds)
        finally:
            await dispatcher.close()

    return asyncio.run(_tick())


def ingest_payload(path: str, event_name: str, store: PullRequestStore) -> bool:
    """
    Apply a webhook payload saved on disk, as if GitHub had delivered it.

    Useful for replaying deliveries from the GitHub webhook settings page.

    Returns:
        bool: True if the event changed a PR, False otherwise
    """
    try:
        payload = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        logger.error(f"Could not read payload from {path}: {e}")
        return False

    try:
        event = normalize(payload, event_name=event_name)
        pr = PullRequestLifecycle(store).apply(event)
    except PRWatchdogError as e:
        logger.error(f"Failed to apply {path}: {e}")
        return False

    if pr is None:
        logger.info(f"Event '{event.action}' did not change any PR")
        return False

    logger.info(
        f"PR {event.repo_name}#{pr.pr_number}: {pr.status.value}, "
        f"{pr.review_count} review(s), last commit {pr.last_commit_at.isoformat()}"
    )
    return True


def main():
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="PR Watchdog - Slack alerts for stale, unreviewed and stalled pull requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the webhook receiver with background scan loops
  python main.py serve --port 8080

  # Run one scan tick for every alert kind
  python main.py scan

  # Replay a saved delivery
  python main.py ingest delivery.json --event pull_request_review
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    scan_parser = subparsers.add_parser(
        "scan",
        help="Run one alert scan tick and exit"
    )
    scan_parser.add_argument(
        "--kind",
        choices=[kind.value for kind in AlertKind],
        action="append",
        help="Alert kind to scan for (repeatable; default: all kinds)"
    )

    ingest_parser = subparsers.add_parser(
        "ingest",
        help="Apply a GitHub webhook payload stored in a JSON file"
    )
    ingest_parser.add_argument(
        "payload",
        help="Path to the JSON payload"
    )
    ingest_parser.add_argument(
        "--event",
        default="pull_request",
        help="X-GitHub-Event name of the payload (default: pull_request)"
    )

    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the webhook receiver and scan loops"
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to run the API server on (default: 8000)"
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind the server to (default: 127.0.0.1)"
    )

    args = parser.parse_args()
    setup_logger()

    # Show help if no command provided
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        from backend.server import run_server
        logger.info(f"Starting PR Watchdog on http://{args.host}:{args.port}")
        run_server(host=args.host, port=args.port)
        sys.exit(0)

    config = load_config()
    setup_logger(config.log_level)
    try:
        store = build_store(config.credentials)
    except Exception as e:
        logger.error(f"Failed to initialize store: {e}")
        sys.exit(1)

    try:
        if args.command == "scan":
            kinds = [AlertKind(kind) for kind in args.kind] if args.kind else list(AlertKind)
            try:
                report = run_scan(kinds, config, store)
            except PRWatchdogError as e:
                logger.error(f"Scan failed: {e}")
                sys.exit(1)
            for kind in kinds:
                stats = report.stats(kind)
                logger.info(
                    f"  {kind.value}: {stats.selected} selected, "
                    f"{stats.sent} sent, {stats.failed} failed"
                )
            sys.exit(0 if report.failed == 0 else 1)

        elif args.command == "ingest":
            success = ingest_payload(args.payload, args.event, store)
            sys.exit(0 if success else 1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
