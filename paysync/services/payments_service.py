from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from paysync.config import Settings
from paysync.domain.dtos import PaymentCreateRequest
from paysync.domain.errors import (
    DuplicateOrderError,
    InvalidSignatureError,
    MalformedPayloadError,
    RecordNotFoundError,
)
from paysync.domain.models import HandleOutcome, PaymentRecord
from paysync.domain.requests import RequestRef
from paysync.providers.base import WebhookProcessor
from paysync.providers.nowpayments import NowPaymentsIPN
from paysync.repositories.base import PaymentRecordStore
from paysync.services.fulfillment import FulfillmentOrchestrator
from paysync.services.payout_status import PayoutStatusHandler


class PaymentsService:
    """Business logic for payment records and inbound processor webhooks."""

    def __init__(
        self,
        store: PaymentRecordStore,
        orchestrator: FulfillmentOrchestrator,
        cfg: Settings,
        payouts: PayoutStatusHandler | None = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.payouts = payouts or PayoutStatusHandler(store)
        self.settings = cfg
        self.logger = logging.getLogger(__name__)

    async def register_payment(self, request: PaymentCreateRequest) -> PaymentRecord:
        """Create the PaymentRecord for a checkout attempt.

        Idempotent on order_id: a repeated call returns the stored record as
        long as it points at the same booking.
        """
        existing = await self.store.find_by_order_id(request.order_id)
        if existing is not None:
            return self._check_same_checkout(existing, request)

        now = datetime.now(timezone.utc)
        record = PaymentRecord(
            id=uuid.uuid4().hex,
            order_id=request.order_id,
            processor=request.processor,
            request=RequestRef(type=request.request_type, id=request.request_id),
            processor_payment_id=request.processor_payment_id,
            amount_expected=request.amount_expected,
            currency=request.currency.upper(),
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self.store.create(record)
        except DuplicateOrderError:
            # Lost a race with a concurrent registration for the same order
            existing = await self.store.find_by_order_id(request.order_id)
            if existing is None:
                raise
            return self._check_same_checkout(existing, request)
        self.logger.info(
            "payment record created",
            extra={
                "record_id": created.id,
                "order_id": created.order_id,
                "processor": created.processor.value,
                "request_type": created.request.type.value,
                "request_id": created.request.id,
                "amount": created.amount_expected,
                "currency": created.currency,
            },
        )
        return created

    def _check_same_checkout(self, existing: PaymentRecord, request: PaymentCreateRequest) -> PaymentRecord:
        if existing.request != RequestRef(type=request.request_type, id=request.request_id):
            raise ValueError(f"Order {request.order_id} already belongs to another request")
        if existing.processor is not request.processor:
            raise ValueError(f"Order {request.order_id} already registered with processor {existing.processor.value}")
        self.logger.info(
            "idempotency hit; returning existing payment record",
            extra={"record_id": existing.id, "order_id": existing.order_id},
        )
        return existing

    async def get_payment(self, order_id: str) -> PaymentRecord:
        record = await self.store.find_by_order_id(order_id)
        if record is None:
            raise RecordNotFoundError(order_id)
        return record

    async def ingest_webhook(
        self,
        processor: WebhookProcessor,
        raw_body: bytes,
        signature_header: str | None,
    ) -> HandleOutcome:
        """Verify, parse, normalize and apply one webhook delivery.

        The signature is checked over ``raw_body`` before anything is parsed.
        Raises InvalidSignatureError, MalformedPayloadError or
        PersistenceError; the route maps them to status codes.
        """
        payload = self._verified_payload(processor, raw_body, signature_header)
        event = processor.normalize(payload)
        self.logger.info(
            "webhook event received",
            extra={
                "processor": event.processor.value,
                "order_id": event.order_id,
                "payment_id": event.payment_id,
                "status": event.status,
                "status_class": event.status_class.value,
                "amount": event.actually_paid,
                "currency": event.currency,
            },
        )
        return await self.orchestrator.handle(event)

    async def ingest_payout_webhook(
        self,
        processor: NowPaymentsIPN,
        raw_body: bytes,
        signature_header: str | None,
    ) -> HandleOutcome:
        """Verify and apply a payout-status callback for one of our splits."""
        payload = self._verified_payload(processor, raw_body, signature_header)
        event = processor.normalize_payout(payload)
        self.logger.info(
            "payout callback received",
            extra={"split_id": event.split_id, "status": event.status, "amount": event.amount, "currency": event.currency},
        )
        return await self.payouts.handle(event)

    def _verified_payload(self, processor: WebhookProcessor, raw_body: bytes, signature_header: str | None) -> Any:
        if not processor.verify(raw_body, signature_header):
            raise InvalidSignatureError(f"Invalid {processor.processor.value} webhook signature")
        try:
            return json.loads(raw_body)
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedPayloadError("Webhook body is not valid JSON") from exc
