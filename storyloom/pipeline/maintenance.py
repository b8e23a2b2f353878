"""
Operator helpers for runs that stopped making progress.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from storyloom.persistence import GenerationStore, OrderStatus, utcnow

from .progress import ProgressTracker

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=20)


def fix_stuck_order(
    order_id: str,
    *,
    store: GenerationStore,
    tracker: ProgressTracker,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
    now: datetime | None = None,
) -> bool:
    """
    Mark a ``generating`` order failed when its progress went quiet.

    Returns ``True`` when the order was moved to ``failed``; a retry trigger
    can then be granted for it.
    """
    order = store.get_order(order_id)
    if order.status != OrderStatus.GENERATING.value:
        logger.info("Order %s is %s; nothing to fix", order_id, order.status)
        return False

    now = now or utcnow()
    snapshot = tracker.snapshot(order_id)
    last_activity = snapshot.updated_at if snapshot is not None else None
    last_activity = last_activity or order.generation_started_at or order.generation_triggered_at
    if last_activity is not None and now - last_activity < stale_after:
        logger.info(
            "Order %s still active (last update %s ago)", order_id, now - last_activity
        )
        return False

    minutes = int(stale_after.total_seconds() // 60)
    tracker.fail(order_id, f"No progress for more than {minutes} minutes; marked failed by operator.")
    changed = store.mark_failed(order_id)
    if changed:
        logger.warning("Order %s marked failed after stalling", order_id)
    return changed
