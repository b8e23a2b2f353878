"""
Error taxonomy for the Storyloom generation pipeline.
"""

from __future__ import annotations


class StoryloomError(Exception):
    """Base class for every error raised by Storyloom."""


class PaymentNotVerified(StoryloomError):
    """The checkout session could not be confirmed as paid."""

    def __init__(self, message: str = "Payment verification failed.") -> None:
        super().__init__(message)


class MalformedResponse(StoryloomError):
    """A text or image collaborator returned output that cannot be parsed."""


class UpstreamGenerationFailure(StoryloomError):
    """The text or image provider call itself errored."""


class StorageUploadFailure(StoryloomError):
    """A generated image could not be copied to permanent storage."""


class OrderNotFound(StoryloomError):
    """No order (or no storybook for it) exists for the requested id."""

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order '{order_id}' not found.")
        self.order_id = order_id


class InvalidStatusTransition(StoryloomError):
    """An order status change would move the order backwards."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move order from '{current}' to '{requested}'.")
        self.current = current
        self.requested = requested


class DuplicateTriggerRejected(StoryloomError):
    """
    Generation is already running (or was just triggered) for the order.

    Not a failure: callers should keep polling the progress record.
    """

    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(f"Generation for order '{order_id}' not started: {reason}.")
        self.order_id = order_id
        self.reason = reason


class IncompleteBook(StoryloomError):
    """Stored chapters or illustrations do not add up to a finished book."""


class RunSuperseded(StoryloomError):
    """A newer run was granted for the order; this run must stop writing."""

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Generation run for order '{order_id}' was superseded by a newer run.")
        self.order_id = order_id
