import pytest

from storyloom.common import InvalidStatusTransition, RunSuperseded
from storyloom.persistence import OrderStatus, StorybookStatus

from .conftest import CAST


def test_cancel_order_only_from_pending(make_order, store, guard):
    pending = make_order(paid=False)
    paid = make_order()
    generating = make_order()
    assert guard.try_start(generating).started

    assert store.cancel_order(pending)
    assert store.get_order(pending).status == OrderStatus.CANCELLED.value

    assert not store.cancel_order(paid)
    assert not store.cancel_order(generating)
    assert store.get_order(paid).status == OrderStatus.PAID.value
    assert store.get_order(generating).status == OrderStatus.GENERATING.value


def test_status_never_moves_backwards(make_order, store):
    order_id = make_order()
    store.set_status(order_id, OrderStatus.GENERATING.value)
    store.finalize(order_id, content={"title": "T", "pages": []}, illustration_metadata=[])

    with pytest.raises(InvalidStatusTransition) as excinfo:
        store.set_status(order_id, OrderStatus.PAID.value)

    assert excinfo.value.current == "complete"
    assert store.get_order(order_id).status == OrderStatus.COMPLETE.value


def test_cancelled_order_cannot_be_paid(make_order, store):
    order_id = make_order(paid=False)
    assert store.cancel_order(order_id)

    with pytest.raises(InvalidStatusTransition):
        store.set_status(order_id, OrderStatus.PAID.value)


@pytest.mark.parametrize("chapters", [0, 25])
def test_order_rejects_chapter_count_out_of_range(store, chapters):
    with pytest.raises(ValueError, match="target_chapters"):
        store.create_order(user_id="user-1", characters=CAST, target_chapters=chapters)


def test_order_rejects_unknown_age_range(store):
    with pytest.raises(ValueError, match="age range"):
        store.create_order(user_id="user-1", characters=CAST, target_chapters=3, age_range="13-99")


def test_stale_run_cannot_finalize_or_fail_the_order(make_order, store, guard):
    order_id = make_order()
    assert guard.try_start(order_id).started
    current = store.get_order(order_id).generation_started_at
    stale = current.replace(year=current.year - 1)

    with pytest.raises(RunSuperseded):
        store.finalize(
            order_id,
            content={"title": "T", "pages": []},
            illustration_metadata=[],
            run_started_at=stale,
        )
    assert not store.mark_failed(order_id, run_started_at=stale)

    order = store.get_order(order_id)
    assert order.status == OrderStatus.GENERATING.value
    assert store.get_storybook(order.storybook_id).status == StorybookStatus.GENERATING.value

    store.finalize(
        order_id,
        content={"title": "T", "pages": []},
        illustration_metadata=[],
        run_started_at=current,
    )
    assert store.get_order(order_id).status == OrderStatus.COMPLETE.value
