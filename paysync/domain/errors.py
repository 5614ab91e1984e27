from __future__ import annotations


class PaysyncError(Exception):
    """Base class for pipeline errors."""


class InvalidSignatureError(PaysyncError):
    """Webhook signature is missing or does not match the body."""


class MalformedPayloadError(PaysyncError):
    """Payload cannot be attributed to a payment of ours."""


class RecordNotFoundError(PaysyncError):
    """No PaymentRecord matches the event's identifiers."""


class PersistenceError(PaysyncError):
    """The record store failed to read or write."""


class DuplicateOrderError(PersistenceError):
    """A PaymentRecord already exists for the order id."""

    def __init__(self, order_id: str):
        super().__init__(f"Payment record already exists for order {order_id}")
        self.order_id = order_id


class DownstreamSideEffectError(PaysyncError):
    """A payout or notification call failed after fulfillment was committed."""
