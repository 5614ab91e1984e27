from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import HandleResult, Processor, RequestType
from .models import PaymentRecord
from .statuses import PaymentState


class PaymentCreateRequest(BaseModel):
    """Request body for registering a payment at checkout initiation."""

    order_id: str = Field(..., min_length=1, description="Checkout correlation key, unique per attempt")
    processor: Processor
    request_type: RequestType
    request_id: str = Field(..., min_length=1, description="Identifier of the booking/request being paid for")
    amount_expected: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=10)
    processor_payment_id: str | None = Field(
        default=None, description="Processor payment id when checkout already created one"
    )


class PaymentSummary(BaseModel):
    id: str
    order_id: str
    processor: Processor
    request_type: RequestType
    request_id: str
    processor_payment_id: str | None = None
    status: str | None = None
    state: PaymentState
    fulfilled: bool
    amount_expected: Decimal | None = None
    amount_actual_paid: Decimal | None = None
    currency: str | None = None
    partial_payment_note: str | None = None
    failure_reason: str | None = None
    split_status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    finished_at: datetime | None = None
    failed_at: datetime | None = None

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "PaymentSummary":
        return cls(
            id=record.id,
            order_id=record.order_id,
            processor=record.processor,
            request_type=record.request.type,
            request_id=record.request.id,
            processor_payment_id=record.processor_payment_id,
            status=record.status,
            state=record.state,
            fulfilled=record.fulfilled,
            amount_expected=record.amount_expected,
            amount_actual_paid=record.amount_actual_paid,
            currency=record.currency,
            partial_payment_note=record.partial_payment_note,
            failure_reason=record.failure_reason,
            split_status=record.split_status,
            created_at=record.created_at,
            updated_at=record.updated_at,
            finished_at=record.finished_at,
            failed_at=record.failed_at,
        )


class WebhookAck(BaseModel):
    """Body returned to processors; anything but 401/400/500 means 'stop retrying'."""

    status: str
    result: HandleResult | None = None
