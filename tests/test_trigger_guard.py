import threading
from datetime import datetime, timedelta

import pytest

from storyloom.common import DuplicateTriggerRejected
from storyloom.persistence import GenerationStore, build_session_factory
from storyloom.pipeline import GenerationLauncher, ProgressTracker, Stage, TriggerGuard

from .conftest import CAST


def test_second_trigger_is_rejected(make_order, guard, store, tracker):
    order_id = make_order()

    first = guard.try_start(order_id)
    second = guard.try_start(order_id)

    assert first.started and first.reason == "started"
    assert not second.started
    assert second.reason == "already_generating"
    assert store.get_order(order_id).status == "generating"
    assert store.get_storybook(store.get_order(order_id).storybook_id).status == "generating"
    assert tracker.snapshot(order_id).stage is Stage.PAYMENT
    with pytest.raises(DuplicateTriggerRejected):
        second.raise_if_rejected()


def test_unpaid_and_unknown_orders_are_refused(make_order, guard):
    assert guard.try_start(make_order(paid=False)).reason == "not_paid"
    assert guard.try_start("does-not-exist").reason == "not_found"


def test_failed_order_needs_explicit_retry_outside_cooldown(make_order, store, tracker):
    now = datetime(2026, 1, 1, 12, 0, 0)
    clock = {"now": now}
    guard = TriggerGuard(store=store, tracker=tracker, cooldown_seconds=30, clock=lambda: clock["now"])
    order_id = make_order()

    assert guard.try_start(order_id).started
    store.mark_failed(order_id)

    assert guard.try_start(order_id).reason == "retry_required"
    clock["now"] = now + timedelta(seconds=10)
    assert guard.try_start(order_id, retry=True).reason == "cooldown"
    clock["now"] = now + timedelta(seconds=31)
    assert guard.try_start(order_id, retry=True).started


def test_complete_order_is_not_restarted(make_order, guard, store):
    order_id = make_order()
    guard.try_start(order_id)
    store.finalize(order_id, content={"title": "T", "pages": []}, illustration_metadata=[])
    assert guard.try_start(order_id, retry=True).reason == "already_complete"


def test_concurrent_triggers_grant_exactly_one_run(tmp_path):
    session_factory = build_session_factory(f"sqlite:///{tmp_path / 'race.db'}")
    store = GenerationStore(session_factory)
    guard = TriggerGuard(store=store, tracker=ProgressTracker(session_factory))
    order_id = store.create_order(user_id="u", characters=CAST, target_chapters=3)
    store.record_payment(order_id, session_id="cs_1", paid=True)

    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def trigger():
        barrier.wait()
        result = guard.try_start(order_id)
        with lock:
            results.append(result)

    threads = [threading.Thread(target=trigger) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(result.started for result in results) == 1
    assert {result.reason for result in results if not result.started} <= {
        "already_generating",
        "cooldown",
    }


def test_launcher_runs_only_granted_orders(make_order, guard):
    ran = []
    launcher = GenerationLauncher(guard, ran.append)
    order_id = make_order()

    scheduled = []
    first = launcher.launch(order_id, schedule=lambda fn, *args: scheduled.append((fn, args)))
    second = launcher.launch(order_id, schedule=lambda fn, *args: scheduled.append((fn, args)))

    assert first.started and not second.started
    assert len(scheduled) == 1
    fn, args = scheduled[0]
    fn(*args)
    assert ran == [order_id]


def test_launcher_thread_executes_run(make_order, guard):
    done = threading.Event()
    seen = []

    def run(order_id):
        seen.append(order_id)
        done.set()

    order_id = make_order()
    assert GenerationLauncher(guard, run).launch(order_id).started
    assert done.wait(timeout=5)
    assert seen == [order_id]
