from __future__ import annotations

from enum import Enum

from .enums import Processor, StatusClass


class CryptoStatus(str, Enum):
    """Raw NOWPayments payment statuses."""

    WAITING = "waiting"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    SENDING = "sending"
    PARTIALLY_PAID = "partially_paid"
    FINISHED = "finished"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class CardStatus(str, Enum):
    """Raw Paystack transaction statuses."""

    PENDING = "pending"
    ONGOING = "ongoing"
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"
    REVERSED = "reversed"


CRYPTO_STATUS_CLASSES: dict[str, StatusClass] = {
    CryptoStatus.WAITING.value: StatusClass.IN_PROGRESS,
    CryptoStatus.CONFIRMING.value: StatusClass.IN_PROGRESS,
    CryptoStatus.CONFIRMED.value: StatusClass.IN_PROGRESS,
    CryptoStatus.SENDING.value: StatusClass.IN_PROGRESS,
    CryptoStatus.FINISHED.value: StatusClass.COMPLETED,
    CryptoStatus.PARTIALLY_PAID.value: StatusClass.COMPLETED,
    CryptoStatus.FAILED.value: StatusClass.FAILED,
    CryptoStatus.EXPIRED.value: StatusClass.FAILED,
    CryptoStatus.REFUNDED.value: StatusClass.FAILED,
}

CARD_STATUS_CLASSES: dict[str, StatusClass] = {
    CardStatus.PENDING.value: StatusClass.IN_PROGRESS,
    CardStatus.ONGOING.value: StatusClass.IN_PROGRESS,
    CardStatus.QUEUED.value: StatusClass.IN_PROGRESS,
    CardStatus.PROCESSING.value: StatusClass.IN_PROGRESS,
    CardStatus.SUCCESS.value: StatusClass.COMPLETED,
    CardStatus.FAILED.value: StatusClass.FAILED,
    CardStatus.ABANDONED.value: StatusClass.FAILED,
    CardStatus.REVERSED.value: StatusClass.FAILED,
}

# NOWPayments payout callbacks for the splits we initiate
PAYOUT_STATUS_CLASSES: dict[str, StatusClass] = {
    "creating": StatusClass.IN_PROGRESS,
    "waiting": StatusClass.IN_PROGRESS,
    "processing": StatusClass.IN_PROGRESS,
    "sending": StatusClass.IN_PROGRESS,
    "finished": StatusClass.COMPLETED,
    "completed": StatusClass.COMPLETED,
    "failed": StatusClass.FAILED,
    "rejected": StatusClass.FAILED,
}

STATUS_CLASSES: dict[Processor, dict[str, StatusClass]] = {
    Processor.CRYPTO: CRYPTO_STATUS_CLASSES,
    Processor.CARD: CARD_STATUS_CLASSES,
}

# Status stored on a record whose completion event underpaid
PARTIALLY_PAID = CryptoStatus.PARTIALLY_PAID.value

# payment_status written to the booking/request record on fulfillment
PAYMENT_COMPLETED = "completed"


def classify(processor: Processor, raw_status: str) -> StatusClass | None:
    """Return the status class for a raw status, or None when unknown."""
    return STATUS_CLASSES[processor].get(raw_status.strip().lower())


class PaymentState(str, Enum):
    """Lifecycle state of a PaymentRecord, derived from status + fulfilled."""

    CREATED = "CREATED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED_FULFILLED = "COMPLETED_FULFILLED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in {PaymentState.COMPLETED_FULFILLED, PaymentState.FAILED}


def derive_state(processor: Processor, status: str | None, fulfilled: bool) -> PaymentState:
    if fulfilled:
        return PaymentState.COMPLETED_FULFILLED
    if not status:
        return PaymentState.CREATED
    if status == PARTIALLY_PAID:
        return PaymentState.PARTIALLY_PAID
    status_class = classify(processor, status)
    if status_class is StatusClass.FAILED:
        return PaymentState.FAILED
    if status_class is None:
        return PaymentState.CREATED
    # A completed status without the fulfilled flag means fulfillment has not
    # been committed yet
    return PaymentState.IN_PROGRESS
