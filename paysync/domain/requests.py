"""Booking/request targets a payment can point at.

A PaymentRecord references its domain object through a ``RequestRef``. The
table and field names for each request type live in ``REQUEST_TARGETS`` so
that nothing builds table names from strings at runtime.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .enums import RequestType


@dataclass(frozen=True)
class RequestTarget:
    table: str
    status_field: str
    payment_status_field: str = "payment_status"
    confirmed_at_field: str = "confirmed_at"
    confirmed_value: str = "confirmed"


REQUEST_TARGETS: dict[RequestType, RequestTarget] = {
    RequestType.LOGISTICS: RequestTarget(table="logistics_requests", status_field="status"),
    RequestType.SECURITY: RequestTarget(table="security_requests", status_field="status"),
    RequestType.HOTEL_BOOKING: RequestTarget(table="hotel_bookings", status_field="booking_status"),
    RequestType.APARTMENT_BOOKING: RequestTarget(table="apartment_bookings", status_field="status"),
    RequestType.EVENT_BOOKING: RequestTarget(table="event_bookings", status_field="status"),
}


@dataclass(frozen=True)
class RequestRef:
    """Typed reference to the booking or request being paid for."""

    type: RequestType
    id: str

    @property
    def target(self) -> RequestTarget:
        return REQUEST_TARGETS[self.type]


@dataclass(frozen=True)
class RequestUpdate:
    """Field changes for one booking/request record."""

    ref: RequestRef
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def confirmation(cls, ref: RequestRef, payment_status: str, at: datetime) -> "RequestUpdate":
        target = ref.target
        return cls(
            ref=ref,
            fields={
                target.status_field: target.confirmed_value,
                target.payment_status_field: payment_status,
                target.confirmed_at_field: at,
            },
        )

    @classmethod
    def payment_status(cls, ref: RequestRef, payment_status: str) -> "RequestUpdate":
        # Primary workflow status is never written here
        return cls(ref=ref, fields={ref.target.payment_status_field: payment_status})
