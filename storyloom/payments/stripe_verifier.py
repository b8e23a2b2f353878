"""
Confirm that a Stripe Checkout session for an order was paid.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable

import stripe

from storyloom.common import OrderNotFound
from storyloom.persistence import GenerationStore

logger = logging.getLogger(__name__)

SessionRetriever = Callable[[str], Any]


@dataclass(frozen=True)
class PaymentVerification:
    success: bool
    paid: bool
    error: str | None = None


def _read(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    try:
        return obj[key]
    except (KeyError, TypeError):
        return getattr(obj, key, None)


class StripePaymentVerifier:
    """
    Looks up a Checkout Session and records the outcome on the order.

    Parameters
    ----------
    store:
        Data layer used to record the payment.
    api_key:
        Stripe secret key. Falls back to ``STRIPE_SECRET_KEY``.
    retrieve_session:
        Optional replacement for ``stripe.checkout.Session.retrieve``. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        store: GenerationStore,
        api_key: str | None = None,
        retrieve_session: SessionRetriever | None = None,
    ) -> None:
        self._store = store
        self._api_key = api_key or os.getenv("STRIPE_SECRET_KEY")
        if not self._api_key and retrieve_session is None:
            raise ValueError("Stripe secret key is required. Set STRIPE_SECRET_KEY or pass api_key.")
        self._retrieve_session = retrieve_session or self._retrieve_from_stripe

    def _retrieve_from_stripe(self, session_id: str) -> Any:
        return stripe.checkout.Session.retrieve(session_id, api_key=self._api_key)

    def verify(self, order_id: str, session_id: str) -> PaymentVerification:
        if not session_id:
            return PaymentVerification(success=False, paid=False, error="Missing session id")

        try:
            session = self._retrieve_session(session_id)
        except stripe.StripeError as exc:
            logger.error("Stripe session lookup failed for order %s: %s", order_id, exc)
            return PaymentVerification(success=False, paid=False, error=str(exc))

        metadata = _read(session, "metadata") or {}
        if _read(metadata, "orderId") != order_id:
            logger.warning("Checkout session %s does not belong to order %s", session_id, order_id)
            return PaymentVerification(success=False, paid=False, error="Session mismatch")

        paid = _read(session, "payment_status") == "paid"
        try:
            self._store.record_payment(order_id, session_id=session_id, paid=paid)
        except OrderNotFound as exc:
            return PaymentVerification(success=False, paid=False, error=str(exc))

        logger.info("Order %s payment verified (paid=%s)", order_id, paid)
        return PaymentVerification(success=True, paid=paid)
