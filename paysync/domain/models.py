from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from .enums import HandleResult, Processor, StatusClass
from .requests import RequestRef
from .statuses import PaymentState, derive_state


@dataclass
class PaymentRecord:
    """One payment attempt, keyed by order id."""

    id: str
    order_id: str
    processor: Processor
    request: RequestRef
    processor_payment_id: str | None = None
    status: str | None = None
    fulfilled: bool = False
    amount_expected: Decimal | None = None
    amount_actual_paid: Decimal | None = None
    currency: str | None = None
    partial_payment_note: str | None = None
    failure_reason: str | None = None
    split_status: str | None = None
    split_id: str | None = None
    split_error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    finished_at: datetime | None = None
    failed_at: datetime | None = None

    @property
    def state(self) -> PaymentState:
        return derive_state(self.processor, self.status, self.fulfilled)


# Columns a patch may touch; id, order_id, processor and request are immutable
MUTABLE_FIELDS = frozenset(
    {
        "processor_payment_id",
        "status",
        "fulfilled",
        "amount_expected",
        "amount_actual_paid",
        "currency",
        "partial_payment_note",
        "failure_reason",
        "split_status",
        "split_id",
        "split_error",
        "metadata",
        "updated_at",
        "finished_at",
        "failed_at",
    }
)

# Written once; later patches never replace a stored value
SET_ONCE_FIELDS = frozenset({"processor_payment_id", "failed_at"})


@dataclass(frozen=True)
class PaymentEvent:
    """Processor notification normalized to our vocabulary."""

    processor: Processor
    status: str
    status_class: StatusClass
    order_id: str | None = None
    payment_id: str | None = None
    pay_amount: Decimal | None = None
    actually_paid: Decimal | None = None
    currency: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def underpaid(self) -> bool:
        if self.pay_amount is None or self.actually_paid is None:
            return False
        return self.actually_paid < self.pay_amount


@dataclass(frozen=True)
class PayoutEvent:
    """Payout-status callback for a split we initiated."""

    split_id: str
    status: str
    status_class: StatusClass
    amount: Decimal | None = None
    currency: str | None = None
    error: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InitiateSplit:
    record_id: str
    payment_id: str


@dataclass(frozen=True)
class Notify:
    kind: str
    payload: dict[str, Any]


SideEffect = InitiateSplit | Notify


@dataclass
class HandleOutcome:
    """Committed result plus the side effects to run after the commit."""

    result: HandleResult
    record: PaymentRecord | None = None
    intents: list[SideEffect] = field(default_factory=list)


@dataclass
class SplitResult:
    """Normalized result of a payout split initiation."""

    success: bool
    split_id: str | None = None
    error: str | None = None
