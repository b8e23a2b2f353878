"""
Mark a stalled ``generating`` order as failed so it can be retried.

Usage:
    python scripts/fix_stuck_order.py ORDER_ID --stale-minutes 20
"""

from __future__ import annotations

import argparse
import sys
from datetime import timedelta
from pathlib import Path

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storyloom.common import OrderNotFound, configure_logging, load_settings
from storyloom.persistence import GenerationStore, build_session_factory
from storyloom.pipeline import ProgressTracker, fix_stuck_order


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fail a Storyloom order whose run has stalled.")
    parser.add_argument("order_id", help="Identifier of the stuck order.")
    parser.add_argument(
        "--stale-minutes",
        type=int,
        default=None,
        help="Minutes without progress before the order counts as stuck (default from settings).",
    )
    parser.add_argument("--config", default=None, help="Optional YAML settings file.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging("INFO")
    settings = load_settings(args.config)
    session_factory = build_session_factory(settings.database_url)

    minutes = args.stale_minutes if args.stale_minutes is not None else settings.stuck_after_minutes
    try:
        fixed = fix_stuck_order(
            args.order_id,
            store=GenerationStore(session_factory),
            tracker=ProgressTracker(session_factory),
            stale_after=timedelta(minutes=minutes),
        )
    except OrderNotFound as exc:
        print(exc, file=sys.stderr)
        return 1

    print("Order marked failed." if fixed else "Order left unchanged.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
