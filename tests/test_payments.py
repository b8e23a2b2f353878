import stripe

from storyloom.payments import PaymentVerification, StripePaymentVerifier


def make_verifier(store, session=None, error=None):
    lookups = []

    def retrieve(session_id):
        lookups.append(session_id)
        if error is not None:
            raise error
        return session

    return StripePaymentVerifier(store=store, retrieve_session=retrieve), lookups


def test_paid_session_marks_order_paid(make_order, store):
    order_id = make_order(paid=False)
    verifier, lookups = make_verifier(
        store, {"metadata": {"orderId": order_id}, "payment_status": "paid"}
    )

    result = verifier.verify(order_id, "cs_live_1")

    assert result.success and result.paid
    assert lookups == ["cs_live_1"]
    order = store.get_order(order_id)
    assert order.status == "paid"
    assert order.payment_status == "paid"
    assert order.stripe_session_id == "cs_live_1"


def test_unpaid_session_keeps_order_pending(make_order, store):
    order_id = make_order(paid=False)
    verifier, _ = make_verifier(
        store, {"metadata": {"orderId": order_id}, "payment_status": "unpaid"}
    )

    result = verifier.verify(order_id, "cs_live_2")

    assert result.success and not result.paid
    assert store.get_order(order_id).status == "pending"


def test_session_for_another_order_is_rejected(make_order, store):
    order_id = make_order(paid=False)
    verifier, _ = make_verifier(
        store, {"metadata": {"orderId": "someone-else"}, "payment_status": "paid"}
    )

    result = verifier.verify(order_id, "cs_live_3")

    assert result == PaymentVerification(success=False, paid=False, error="Session mismatch")
    assert store.get_order(order_id).status == "pending"


def test_provider_error_is_reported_not_raised(make_order, store):
    order_id = make_order(paid=False)
    verifier, _ = make_verifier(store, error=stripe.StripeError("No such checkout session"))

    result = verifier.verify(order_id, "cs_missing")

    assert not result.success
    assert "No such checkout session" in result.error


def test_orchestrator_reverifies_unrecorded_payment(make_order, store, tracker, build_orchestrator):
    from .conftest import FakeCompletion, FakeImageGenerator

    order_id = make_order(paid=False)
    store.record_payment(order_id, session_id="cs_pending", paid=False)
    store.set_status(order_id, "paid")
    store.set_status(order_id, "generating")
    tracker.reset(order_id)

    verifier, lookups = make_verifier(
        store, {"metadata": {"orderId": order_id}, "payment_status": "paid"}
    )
    orchestrator = build_orchestrator(FakeCompletion(), FakeImageGenerator(), payment_verifier=verifier)

    result = orchestrator.run(order_id)

    assert result.success, result.error
    assert lookups == ["cs_pending"]
    assert store.get_order(order_id).payment_status == "paid"
