"""Poll /api/pro-status for an account, optionally as if returning from checkout."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path

from dayssupply.config import Settings
from dayssupply.reconciliation.markers import InMemoryMarkerStore, JsonFileMarkerStore
from dayssupply.reconciliation.poller import ReconciliationPoller
from dayssupply.reconciliation.status_client import ProStatusClient

logger = logging.getLogger("scripts.check_pro_status")


def _parse_args(local_settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check Days' Supply Pro entitlement.")
    parser.add_argument(
        "--base-url",
        default=os.getenv(
            "DAYSSUPPLY_API_URL", f"http://{local_settings.host}:{local_settings.port}"
        ),
        help="API base URL (default: DAYSSUPPLY_API_URL or local server).",
    )
    parser.add_argument(
        "--token",
        default=os.getenv("DAYSSUPPLY_ACCESS_TOKEN"),
        help="Supabase access token (default: DAYSSUPPLY_ACCESS_TOKEN).",
    )
    parser.add_argument(
        "--after-checkout",
        action="store_true",
        help="Behave as if the user just returned from checkout and poll until entitled.",
    )
    parser.add_argument(
        "--marker-file",
        type=Path,
        default=None,
        help="Persist the recent-checkout marker here so a later run can resume it.",
    )
    parser.add_argument(
        "--attempts",
        type=int,
        default=local_settings.activation_max_attempts,
        help="Polls before waiting out the recency window.",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=local_settings.activation_delay_seconds,
        help="Seconds between polls.",
    )
    parser.add_argument(
        "--window",
        type=float,
        default=float(local_settings.recent_checkout_window_seconds),
        help="Recency window in seconds.",
    )
    return parser.parse_args()


async def main() -> int:
    local_settings = Settings()
    args = _parse_args(local_settings)
    client = ProStatusClient(
        args.base_url, args.token, timeout=local_settings.supabase_timeout_seconds
    )
    markers = JsonFileMarkerStore(args.marker_file) if args.marker_file else InMemoryMarkerStore()
    poller = ReconciliationPoller(
        client,
        markers,
        window_seconds=args.window,
        max_attempts=args.attempts,
        delay_seconds=args.delay,
        screenshot_mode=local_settings.screenshot_mode,
    )
    try:
        if args.after_checkout:
            poller.on_checkout_success()
        elif not poller.resume():
            await poller.refresh()
        await poller.wait()
    finally:
        await poller.close()

    state = poller.state
    print(
        json.dumps(
            {
                "is_entitled": state.is_entitled,
                "status": state.status,
                "phase": state.phase.value,
                "can_access": poller.can_access,
            },
            indent=2,
        )
    )
    return 0 if state.is_entitled else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    raise SystemExit(asyncio.run(main()))
