"""
Idempotent start of generation runs.

Page reloads, extra browser tabs and redundant realtime callbacks all end up
calling :meth:`TriggerGuard.try_start`. Only one of them may win; the rest get
``started=False`` and should simply keep polling progress.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from storyloom.common import DuplicateTriggerRejected
from storyloom.persistence import GenerationStore, OrderStatus, utcnow

from .progress import ProgressTracker

logger = logging.getLogger(__name__)

STARTED = "started"
ALREADY_GENERATING = "already_generating"
COOLDOWN = "cooldown"
ALREADY_COMPLETE = "already_complete"
RETRY_REQUIRED = "retry_required"
NOT_PAID = "not_paid"
NOT_FOUND = "not_found"

_FINISHED_STATUSES = frozenset(
    {OrderStatus.COMPLETE.value, OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value}
)


@dataclass(frozen=True)
class TriggerResult:
    order_id: str
    started: bool
    reason: str

    def raise_if_rejected(self) -> None:
        if not self.started:
            raise DuplicateTriggerRejected(self.order_id, self.reason)

    def as_dict(self) -> dict[str, Any]:
        return {"orderId": self.order_id, "started": self.started, "reason": self.reason}


class TriggerGuard:
    """
    Grants at most one active run per order.

    The decision is a single conditional UPDATE in the data layer, so it holds
    across threads and across processes that share the database.

    Parameters
    ----------
    store:
        Data layer that performs the atomic claim.
    tracker:
        Progress tracker; a granted run gets a fresh progress record.
    cooldown_seconds:
        Minimum gap between two granted triggers of the same order.
    clock:
        Returns the current naive UTC time. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        store: GenerationStore,
        tracker: ProgressTracker,
        cooldown_seconds: float = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._clock = clock

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def try_start(self, order_id: str, *, retry: bool = False) -> TriggerResult:
        order = self._store.find_order(order_id)
        if order is None:
            return TriggerResult(order_id, False, NOT_FOUND)

        allowed = [OrderStatus.PAID.value]
        if retry:
            allowed.append(OrderStatus.FAILED.value)

        now = self._clock()
        if self._store.claim_generation(
            order_id, now=now, cooldown=self._cooldown, allowed_statuses=allowed
        ):
            self._tracker.reset(order_id, started_at=now)
            logger.info("Generation granted for order %s (retry=%s)", order_id, retry)
            return TriggerResult(order_id, True, STARTED)

        reason = self._rejection_reason(order_id, allowed)
        logger.info("Generation trigger for order %s rejected: %s", order_id, reason)
        return TriggerResult(order_id, False, reason)

    def _rejection_reason(self, order_id: str, allowed: list[str]) -> str:
        order = self._store.find_order(order_id)
        if order is None:
            return NOT_FOUND
        if order.status == OrderStatus.GENERATING.value:
            return ALREADY_GENERATING
        if order.status in _FINISHED_STATUSES:
            return ALREADY_COMPLETE
        if order.status in allowed:
            # Claim lost only because the last attempt is inside the window.
            return COOLDOWN
        if order.status == OrderStatus.FAILED.value:
            return RETRY_REQUIRED
        return NOT_PAID


class GenerationLauncher:
    """
    Runs the guard and, when granted, executes the run on a daemon thread.
    """

    def __init__(self, guard: TriggerGuard, run: Callable[[str], Any]) -> None:
        self._guard = guard
        self._run = run

    def launch(
        self,
        order_id: str,
        *,
        retry: bool = False,
        schedule: Callable[..., Any] | None = None,
    ) -> TriggerResult:
        """
        Start a run for ``order_id`` if the guard allows it.

        ``schedule`` replaces the daemon thread, e.g. FastAPI's
        ``BackgroundTasks.add_task``; it is called as ``schedule(fn, order_id)``.
        """
        result = self._guard.try_start(order_id, retry=retry)
        if not result.started:
            return result
        if schedule is not None:
            schedule(self._run_safely, order_id)
        else:
            thread = threading.Thread(
                target=self._run_safely,
                args=(order_id,),
                name=f"generation-{order_id}",
                daemon=True,
            )
            thread.start()
        return result

    def _run_safely(self, order_id: str) -> None:
        try:
            self._run(order_id)
        except Exception:
            logger.exception("Background generation for order %s crashed", order_id)
