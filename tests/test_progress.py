from datetime import datetime

import pytest

from storyloom.pipeline import STAGE_BUDGET, STAGE_ORDER, Stage, overall_progress


def test_stage_budget_is_contiguous_and_sums_to_100():
    cursor = 0
    for stage in STAGE_ORDER[:-1]:
        base, weight = STAGE_BUDGET[stage]
        assert base == cursor
        cursor += weight
    assert cursor == 100
    assert overall_progress(Stage.COMPLETE, 100) == 100


def test_overall_progress_maps_stage_local_percentages():
    assert overall_progress(Stage.PAYMENT, 0) == 0
    assert overall_progress(Stage.OUTLINE, 100) == 10
    assert overall_progress(Stage.NARRATIVE, 50) == 46
    assert overall_progress("layout", 100) == 100


def test_reset_starts_at_payment(make_order, tracker):
    order_id = make_order()
    snapshot = tracker.reset(order_id)
    assert snapshot.stage is Stage.PAYMENT
    assert snapshot.overall_progress == 0
    assert snapshot.error is None


def test_advance_is_monotonic(make_order, tracker):
    order_id = make_order()
    tracker.reset(order_id)

    assert tracker.advance(order_id, Stage.NARRATIVE, 50, "halfway")
    assert not tracker.advance(order_id, Stage.OUTLINE, 100, "back to outline")
    assert not tracker.advance(order_id, Stage.NARRATIVE, 25, "lower percentage")

    snapshot = tracker.snapshot(order_id)
    assert snapshot.stage is Stage.NARRATIVE
    assert snapshot.stage_progress == 50
    assert snapshot.message == "halfway"


def test_terminal_snapshot_is_frozen(make_order, tracker):
    order_id = make_order()
    tracker.reset(order_id)
    tracker.advance(order_id, Stage.COMPLETE, 100, "done")

    assert not tracker.advance(order_id, Stage.COMPLETE, 100, "again")
    assert not tracker.fail(order_id, "late failure")
    assert tracker.snapshot(order_id).stage is Stage.COMPLETE


def test_writes_from_an_older_run_are_refused(make_order, tracker):
    order_id = make_order()
    first = tracker.reset(order_id, started_at=datetime(2026, 1, 1, 12, 0))
    second = tracker.reset(order_id, started_at=datetime(2026, 1, 1, 12, 30))

    old = first.started_at
    assert not tracker.advance(order_id, Stage.NARRATIVE, 50, "old run", run_started_at=old)
    assert not tracker.fail(order_id, "old run broke", run_started_at=old)
    tracker.merge_data(order_id, run_started_at=old, title="Old Title")

    snapshot = tracker.snapshot(order_id)
    assert snapshot.stage is Stage.PAYMENT
    assert snapshot.data == {}
    assert tracker.advance(
        order_id, Stage.OUTLINE, 100, "current run", run_started_at=second.started_at
    )


def test_fail_keeps_percentage_and_hides_raw_error(make_order, tracker):
    order_id = make_order()
    tracker.reset(order_id)
    tracker.advance(order_id, Stage.NARRATIVE, 50, "halfway")

    assert tracker.fail(order_id, "Replicate 500: internal details")
    snapshot = tracker.snapshot(order_id)
    assert snapshot.stage is Stage.FAILED
    assert snapshot.overall_progress == 46
    assert snapshot.error == "Replicate 500: internal details"
    assert "Replicate" not in snapshot.message
    assert "error" not in snapshot.as_dict()


def test_failed_stage_cannot_be_advanced_to():
    with pytest.raises(ValueError):
        overall_progress(Stage.FAILED, 0)


def test_merge_data_keeps_stage_fields(make_order, tracker):
    order_id = make_order()
    tracker.reset(order_id)
    tracker.advance(order_id, Stage.OUTLINE, 100, "outline ready")
    tracker.merge_data(order_id, title="Lantern Sea")
    tracker.merge_data(order_id, coverUrl="https://cdn.test/cover.webp")

    snapshot = tracker.snapshot(order_id)
    assert snapshot.data == {"title": "Lantern Sea", "coverUrl": "https://cdn.test/cover.webp"}
    assert snapshot.stage is Stage.OUTLINE


def test_read_reports_order_status_and_storybook(make_order, tracker, store):
    order_id = make_order(title="Pinned")
    report = tracker.read(order_id)
    assert report.status == "paid"
    assert report.progress is None
    assert report.storybook["title"] == "Pinned"
    assert tracker.read("missing") is None
