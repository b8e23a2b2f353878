import pytest
import stripe
from fastapi.testclient import TestClient

from storyloom.api import create_app
from storyloom.common import Settings
from storyloom.payments import StripePaymentVerifier
from storyloom.services import build_services

from .conftest import FakeCompletion, FakeHttpSession, FakeImageGenerator


@pytest.fixture
def stripe_sessions():
    return {}


@pytest.fixture
def services(session_factory, store, image_store, stripe_sessions):
    def retrieve(session_id):
        session = stripe_sessions.get(session_id)
        if session is None:
            raise stripe.StripeError("No such checkout.session: secret-internal-id")
        return session

    return build_services(
        Settings(database_url="sqlite://"),
        session_factory=session_factory,
        completion_fn=FakeCompletion(),
        image_generator=FakeImageGenerator(),
        image_store=image_store,
        http_session=FakeHttpSession(),
        payment_verifier=StripePaymentVerifier(store=store, retrieve_session=retrieve),
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_state_requires_order_id(client):
    assert client.get("/api/generate/state").status_code == 400
    assert client.get("/api/generate/state", params={"orderId": "nope"}).status_code == 404


def test_start_runs_generation_and_state_reports_completion(client, make_order):
    order_id = make_order(target_chapters=2)

    response = client.post("/api/generate/start", json={"orderId": order_id})
    assert response.status_code == 202
    assert response.json()["started"] is True

    state = client.get("/api/generate/state", params={"orderId": order_id}).json()
    assert state["success"] is True
    assert state["status"] == "complete"
    assert state["progress"]["stage"] == "complete"
    assert state["progress"]["overallProgress"] == 100
    assert state["storybook"]["title"] == "Mia and the Lantern Sea"
    assert state["storybook"]["coverUrl"]
    assert state["data"]["chapterCount"] == 2

    again = client.post("/api/generate/start", json={"orderId": order_id})
    assert again.status_code == 200
    assert again.json() == {"orderId": order_id, "started": False, "reason": "already_complete"}


def test_start_unknown_order_is_404(client):
    assert client.post("/api/generate/start", json={"orderId": "missing"}).status_code == 404


def test_unpaid_order_is_not_started(client, make_order):
    order_id = make_order(paid=False)
    response = client.post("/api/generate/start", json={"orderId": order_id})
    assert response.status_code == 200
    assert response.json()["reason"] == "not_paid"


def test_verify_payment_marks_order_paid(client, make_order, stripe_sessions, store):
    order_id = make_order(paid=False)
    stripe_sessions["cs_1"] = {"metadata": {"orderId": order_id}, "payment_status": "paid"}

    response = client.post(f"/api/orders/{order_id}/verify-payment", json={"sessionId": "cs_1"})

    assert response.json() == {"success": True, "paid": True, "error": None}
    assert store.get_order(order_id).status == "paid"


def test_verify_payment_hides_provider_errors(client, make_order):
    order_id = make_order(paid=False)

    body = client.post(
        f"/api/orders/{order_id}/verify-payment", json={"sessionId": "cs_unknown"}
    ).json()

    assert body["success"] is False
    assert body["error"] == "Payment verification failed."
    assert "secret-internal-id" not in str(body)


def test_failed_run_state_does_not_leak_error(client, make_order, services):
    order_id = make_order(target_chapters=2)
    services.guard.try_start(order_id)
    services.tracker.fail(order_id, "Replicate token r8_secret rejected")
    services.store.mark_failed(order_id)

    state = client.get("/api/generate/state", params={"orderId": order_id}).json()

    assert state["status"] == "failed"
    assert state["progress"]["stage"] == "failed"
    assert "r8_secret" not in str(state)


def test_cancel_only_succeeds_for_pending_orders(client, make_order):
    pending = make_order(paid=False)
    paid = make_order()

    response = client.post(f"/api/orders/{pending}/cancel")
    assert response.status_code == 200
    assert response.json() == {"orderId": pending, "cancelled": True, "status": "cancelled"}

    assert client.post(f"/api/orders/{paid}/cancel").status_code == 409
    assert client.post("/api/orders/missing/cancel").status_code == 404
