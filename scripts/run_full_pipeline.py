"""
CLI to seed an order and run the complete Storyloom pipeline in the foreground.

Usage:
    python scripts/run_full_pipeline.py \
        --order order.yaml \
        --output storybook.yaml
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storyloom import build_services
from storyloom.common import configure_logging, load_settings
from storyloom.pipeline import STAGE_ORDER


class CliProgress:
    """
    Mirrors orchestrator progress notifications onto the terminal.
    """

    def __init__(self) -> None:
        self._chapter_bar: tqdm | None = None
        self._last_stage: str | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        if stage == "failed":
            self.close()
            self._write(f"Generation failed: {payload.get('error')}")
            return

        if stage != self._last_stage:
            self._last_stage = stage
            position = [item.value for item in STAGE_ORDER].index(stage) + 1
            self._write(f"[{position}/{len(STAGE_ORDER)}] {payload.get('message', stage)}")

        match stage:
            case "narrative":
                total = payload.get("total_chapters")
                if self._chapter_bar is None and total:
                    self._chapter_bar = tqdm(total=total * 2, desc="Chapters", unit="step")
                if self._chapter_bar is not None and payload.get("current_chapter"):
                    self._chapter_bar.set_description(payload.get("message", ""))
                    self._chapter_bar.update(1)
            case "cover":
                self.close()
            case "complete":
                self.close()

    def close(self) -> None:
        if self._chapter_bar is not None:
            self._chapter_bar.close()
            self._chapter_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full Storyloom generation pipeline.")
    parser.add_argument(
        "--order",
        default=None,
        help="Path to an order YAML/JSON file to seed into the database.",
    )
    parser.add_argument(
        "--order-id",
        default=None,
        help="Run an order that already exists in the database instead of seeding one.",
    )
    parser.add_argument(
        "--retry",
        action="store_true",
        help="Allow restarting an order whose previous run failed.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML settings file (defaults to STORYLOOM_CONFIG).",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Optional YAML file to store the assembled book content.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level for library output.")
    args = parser.parse_args()
    if not args.order and not args.order_id:
        parser.error("Provide --order or --order-id.")
    return args


def load_order_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported order file format. Use YAML or JSON.")

    if not isinstance(data, Dict):
        raise ValueError("Order file must deserialize to a mapping.")
    return data


def seed_order(services, data: Dict[str, Any]) -> str:
    """Create the order described by ``data`` and record its payment."""
    order_id = services.store.create_order(
        user_id=str(data.get("user_id") or "cli-user"),
        characters=data.get("characters") or [],
        target_chapters=int(data.get("target_chapters", 12)),
        title=data.get("title"),
        description=data.get("description"),
        age_range=str(data.get("age_range", "5-8")),
        theme=str(data.get("theme", "adventure")),
        setting=data.get("setting"),
        art_style=str(data.get("art_style", "pixar-3d")),
        global_seed=data.get("global_seed"),
    )
    payment = data.get("payment") or {}
    services.store.record_payment(
        order_id,
        session_id=str(payment.get("session_id") or f"cli-{order_id}"),
        paid=bool(payment.get("paid", True)),
        provider=str(payment.get("provider") or "manual"),
    )
    return order_id


def main() -> int:
    args = parse_args()
    configure_logging(args.log_level.upper())
    services = build_services(load_settings(args.config))

    if args.order_id:
        order_id = args.order_id
    else:
        order_id = seed_order(services, load_order_mapping(Path(args.order)))
        tqdm.write(f"Seeded order {order_id}")

    trigger = services.guard.try_start(order_id, retry=args.retry)
    if not trigger.started:
        print(f"Generation not started for {order_id}: {trigger.reason}", file=sys.stderr)
        return 1

    progress = CliProgress()
    try:
        result = services.orchestrator.run(order_id, progress_callback=progress)
    finally:
        progress.close()

    report = services.tracker.read(order_id)
    print(yaml.safe_dump(report.as_dict() if report else {}, sort_keys=False, allow_unicode=True))

    if not result.success:
        return 1

    if args.output:
        order = services.store.get_order(order_id)
        storybook = services.store.get_storybook(order.storybook_id)
        output_path = Path(args.output)
        output_path.write_text(
            yaml.safe_dump(dict(storybook.content or {}), sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
        print(f"Book content saved to {output_path.resolve()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
