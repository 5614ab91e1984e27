from __future__ import annotations

from typing import Any

from paysync.domain.enums import Processor
from paysync.domain.errors import MalformedPayloadError
from paysync.domain.models import PaymentEvent
from paysync.domain.statuses import CardStatus, classify
from paysync.utils.amounts import from_minor_units

from .base import WebhookProcessor, optional_str, require_mapping

CHARGE_SUCCESS = "charge.success"
CHARGE_FAILED = "charge.failed"

# The event name is authoritative over data.status for these
_EVENT_STATUS = {
    CHARGE_SUCCESS: CardStatus.SUCCESS.value,
    CHARGE_FAILED: CardStatus.FAILED.value,
}

_EXTRA_FIELDS = ("channel", "gateway_response", "paid_at", "domain")


class PaystackWebhook(WebhookProcessor):
    """Paystack webhooks (card).

    Paystack signs the body with HMAC-SHA512 keyed by the account secret key
    and sends it in ``x-paystack-signature``. Amounts are in minor units.
    """

    processor = Processor.CARD
    signature_header = "x-paystack-signature"

    @property
    def secret(self) -> str:
        return self.settings.paystack_secret_key

    def normalize(self, payload: dict[str, Any]) -> PaymentEvent:
        body = require_mapping(payload)
        event_name = optional_str(body.get("event"))
        if event_name is None or not event_name.startswith("charge."):
            raise MalformedPayloadError(f"Unsupported Paystack event {event_name!r}")
        data = require_mapping(body.get("data"), "data")

        order_id = optional_str(data.get("reference"))
        payment_id = optional_str(data.get("id"))
        if order_id is None and payment_id is None:
            raise MalformedPayloadError("Paystack event carries neither reference nor id")

        raw_status = _EVENT_STATUS.get(event_name) or optional_str(data.get("status"))
        if raw_status is None:
            raise MalformedPayloadError(f"Paystack event {event_name} carries no status")
        status = raw_status.lower()
        status_class = classify(self.processor, status)
        if status_class is None:
            raise MalformedPayloadError(f"Unknown Paystack status {raw_status!r}")

        amount = from_minor_units(data.get("amount"), field_name="amount")
        extras: dict[str, Any] = {key: data[key] for key in _EXTRA_FIELDS if data.get(key) is not None}
        extras["event"] = event_name
        authorization = data.get("authorization")
        if isinstance(authorization, dict):
            for key in ("card_type", "last4", "bank"):
                if authorization.get(key) is not None:
                    extras[key] = authorization[key]
        return PaymentEvent(
            processor=self.processor,
            status=status,
            status_class=status_class,
            order_id=order_id,
            payment_id=payment_id,
            # Card charges settle in full or not at all
            pay_amount=amount,
            actually_paid=amount,
            currency=optional_str(data.get("currency")),
            extras=extras,
        )
