"""
Payment verification for Storyloom orders.
"""

from .stripe_verifier import PaymentVerification, StripePaymentVerifier

__all__ = ["PaymentVerification", "StripePaymentVerifier"]
