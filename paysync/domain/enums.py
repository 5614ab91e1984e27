from __future__ import annotations

from enum import Enum


class Processor(str, Enum):
    """Payment processors that notify us via webhooks."""

    CARD = "card"
    CRYPTO = "crypto"


class StatusClass(str, Enum):
    """Coarse classification of a processor's raw status string."""

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RequestType(str, Enum):
    """Kinds of domain objects a payment can pay for."""

    LOGISTICS = "logistics"
    SECURITY = "security"
    HOTEL_BOOKING = "hotel_booking"
    APARTMENT_BOOKING = "apartment_booking"
    EVENT_BOOKING = "event_booking"


class HandleResult(str, Enum):
    """Outcome of handling one normalized payment event."""

    FULFILLED = "FULFILLED"
    STATUS_UPDATED = "STATUS_UPDATED"
    PARTIAL_PAYMENT = "PARTIAL_PAYMENT"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    NOT_FOUND = "NOT_FOUND"


class SplitStatus(str, Enum):
    """Split/payout state recorded on the payment for the retry job."""

    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
