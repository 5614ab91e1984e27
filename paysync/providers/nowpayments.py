from __future__ import annotations

from typing import Any

from paysync.domain.enums import Processor
from paysync.domain.errors import MalformedPayloadError
from paysync.domain.models import PaymentEvent, PayoutEvent
from paysync.domain.statuses import PAYOUT_STATUS_CLASSES, classify
from paysync.utils.amounts import to_decimal

from .base import WebhookProcessor, optional_str, require_mapping


# Telemetry copied verbatim onto the record's metadata
_EXTRA_FIELDS = (
    "pay_address",
    "pay_currency",
    "price_amount",
    "price_currency",
    "outcome_amount",
    "outcome_currency",
    "fee",
    "purchase_id",
    "invoice_id",
    "parent_payment_id",
)


class NowPaymentsIPN(WebhookProcessor):
    """NOWPayments instant payment notifications (crypto).

    The IPN is signed with HMAC-SHA512 of the body using the IPN secret and
    sent in ``x-nowpayments-sig``.
    """

    processor = Processor.CRYPTO
    signature_header = "x-nowpayments-sig"

    @property
    def secret(self) -> str:
        return self.settings.nowpayments_ipn_secret

    def normalize(self, payload: dict[str, Any]) -> PaymentEvent:
        body = require_mapping(payload)
        order_id = optional_str(body.get("order_id"))
        payment_id = optional_str(body.get("payment_id"))
        if order_id is None and payment_id is None:
            raise MalformedPayloadError("IPN carries neither order_id nor payment_id")

        raw_status = optional_str(body.get("payment_status"))
        if raw_status is None:
            raise MalformedPayloadError("IPN carries no payment_status")
        status = raw_status.lower()
        status_class = classify(self.processor, status)
        if status_class is None:
            raise MalformedPayloadError(f"Unknown NOWPayments status {raw_status!r}")

        extras = {key: body[key] for key in _EXTRA_FIELDS if body.get(key) is not None}
        return PaymentEvent(
            processor=self.processor,
            status=status,
            status_class=status_class,
            order_id=order_id,
            payment_id=payment_id,
            pay_amount=to_decimal(body.get("pay_amount"), field_name="pay_amount"),
            actually_paid=to_decimal(body.get("actually_paid"), field_name="actually_paid"),
            currency=optional_str(body.get("pay_currency")),
            extras=extras,
        )

    def normalize_payout(self, payload: dict[str, Any]) -> PayoutEvent:
        """Map a payout-status callback (same signing scheme as the IPN)."""
        body = require_mapping(payload)
        split_id = optional_str(body.get("id"))
        if split_id is None:
            raise MalformedPayloadError("Payout callback carries no id")
        raw_status = optional_str(body.get("status"))
        if raw_status is None:
            raise MalformedPayloadError("Payout callback carries no status")
        status = raw_status.lower()
        status_class = PAYOUT_STATUS_CLASSES.get(status)
        if status_class is None:
            raise MalformedPayloadError(f"Unknown NOWPayments payout status {raw_status!r}")
        return PayoutEvent(
            split_id=split_id,
            status=status,
            status_class=status_class,
            amount=to_decimal(body.get("amount"), field_name="amount"),
            currency=optional_str(body.get("currency")),
            error=optional_str(body.get("error")),
            extras={key: body[key] for key in ("address", "hash", "batch_withdrawal_id") if body.get(key) is not None},
        )
