"""Webhook-driven payment state machine.

Per PaymentRecord: CREATED -> IN_PROGRESS -> COMPLETED_FULFILLED | PARTIALLY_PAID
| FAILED. Completion is absorbing: once ``fulfilled`` is set, later events of
any class only refresh telemetry. Completion cascades to the booking's primary
status; failure only to its payment_status field.

The orchestrator never calls payout or notification services itself. It
returns the intents and ``SideEffectDispatcher`` runs them after the response.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from paysync.domain.enums import HandleResult, StatusClass
from paysync.domain.models import HandleOutcome, InitiateSplit, Notify, PaymentEvent, PaymentRecord
from paysync.domain.requests import RequestUpdate
from paysync.domain.statuses import PARTIALLY_PAID, PAYMENT_COMPLETED
from paysync.integrations.notifications import PAYMENT_FAILED, PAYMENT_FULFILLED, PAYMENT_PARTIAL
from paysync.repositories.base import PaymentRecordStore
from paysync.utils.amounts import format_amount
from paysync.utils.idempotency import should_fulfill

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_extra(record: PaymentRecord, event: PaymentEvent, **more: Any) -> dict[str, Any]:
    return {
        "record_id": record.id,
        "order_id": record.order_id,
        "payment_id": event.payment_id,
        "processor": event.processor.value,
        "status": event.status,
        "status_class": event.status_class.value,
        **more,
    }


class FulfillmentOrchestrator:
    """Applies one normalized PaymentEvent to its PaymentRecord."""

    def __init__(self, store: PaymentRecordStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    async def handle(self, event: PaymentEvent) -> HandleOutcome:
        record = await self._lookup(event)
        if record is None:
            logger.warning(
                "unmatched payment event; needs manual reconciliation",
                extra={
                    "order_id": event.order_id,
                    "payment_id": event.payment_id,
                    "processor": event.processor.value,
                    "status": event.status,
                    "result": HandleResult.NOT_FOUND.value,
                },
            )
            return HandleOutcome(result=HandleResult.NOT_FOUND)

        now = self.clock()
        base = self._telemetry_patch(record, event, now)

        if event.status_class is StatusClass.COMPLETED:
            if event.status == PARTIALLY_PAID or event.underpaid:
                outcome = await self._partial(record, event, base)
            else:
                outcome = await self._complete(record, event, base, now)
        elif event.status_class is StatusClass.FAILED:
            outcome = await self._fail(record, event, base, now)
        else:
            outcome = await self._progress(record, event, base)

        logger.info("payment event handled", extra=_log_extra(record, event, result=outcome.result.value))
        return outcome

    async def _lookup(self, event: PaymentEvent) -> PaymentRecord | None:
        record = None
        if event.order_id:
            record = await self.store.find_by_order_id(event.order_id)
        if record is None and event.payment_id:
            record = await self.store.find_by_processor_payment_id(event.payment_id)
        if record is not None and record.processor is not event.processor:
            logger.warning(
                "event processor does not match payment record",
                extra=_log_extra(record, event, error=f"record processor {record.processor.value}"),
            )
            return None
        return record

    def _telemetry_patch(self, record: PaymentRecord, event: PaymentEvent, now: datetime) -> dict[str, Any]:
        """Fields every branch may refresh: amounts, metadata, identity, timestamps."""
        patch: dict[str, Any] = {"updated_at": now}
        if event.payment_id:
            if record.processor_payment_id is None:
                patch["processor_payment_id"] = event.payment_id
            elif record.processor_payment_id != event.payment_id:
                logger.warning(
                    "processor payment id mismatch; keeping original",
                    extra=_log_extra(record, event, error=f"stored {record.processor_payment_id}"),
                )
        if event.actually_paid is not None:
            patch["amount_actual_paid"] = event.actually_paid
        if record.amount_expected is None and event.pay_amount is not None:
            patch["amount_expected"] = event.pay_amount
        if record.currency is None and event.currency:
            patch["currency"] = event.currency

        metadata = dict(record.metadata)
        metadata.update(event.extras)
        if event.pay_amount is not None:
            metadata["pay_amount"] = format(event.pay_amount, "f")
        if event.currency:
            metadata["pay_currency"] = event.currency
        if metadata != record.metadata:
            patch["metadata"] = metadata
        return patch

    async def _complete(
        self, record: PaymentRecord, event: PaymentEvent, base: dict[str, Any], now: datetime
    ) -> HandleOutcome:
        if not should_fulfill(record, event):
            logger.info("payment already fulfilled", extra=_log_extra(record, event))
            return await self._telemetry_only(record, base)

        patch = {**base, "status": event.status, "finished_at": now, "partial_payment_note": None}
        confirmation = RequestUpdate.confirmation(record.request, PAYMENT_COMPLETED, now)
        claimed = await self.store.claim_fulfillment(record.id, patch, confirmation)
        if claimed is None:
            logger.info("fulfillment claimed by a concurrent delivery", extra=_log_extra(record, event))
            return HandleOutcome(result=HandleResult.ALREADY_PROCESSED, record=record)

        payment_id = claimed.processor_payment_id or claimed.order_id
        intents = [
            InitiateSplit(record_id=claimed.id, payment_id=payment_id),
            Notify(
                kind=PAYMENT_FULFILLED,
                payload={
                    "order_id": claimed.order_id,
                    "payment_id": payment_id,
                    "processor": claimed.processor.value,
                    "request_type": claimed.request.type.value,
                    "request_id": claimed.request.id,
                    "amount": format_amount(claimed.amount_actual_paid),
                    "currency": claimed.currency,
                },
            ),
        ]
        logger.info("payment fulfilled", extra=_log_extra(claimed, event, request_type=claimed.request.type.value))
        return HandleOutcome(result=HandleResult.FULFILLED, record=claimed, intents=intents)

    async def _telemetry_only(self, record: PaymentRecord, base: dict[str, Any]) -> HandleOutcome:
        updated = await self.store.update(record.id, base)
        return HandleOutcome(result=HandleResult.ALREADY_PROCESSED, record=updated)

    async def _apply_unfulfilled(
        self,
        record: PaymentRecord,
        event: PaymentEvent,
        patch: dict[str, Any],
        base: dict[str, Any],
        request_update: RequestUpdate | None = None,
    ) -> tuple[PaymentRecord, PaymentRecord] | None:
        """Write a status patch unless fulfillment has been claimed meanwhile."""
        applied = await self.store.update_unfulfilled(record.id, patch, request_update)
        if applied is None:
            logger.warning("payment fulfilled concurrently; status not applied", extra=_log_extra(record, event))
            await self.store.update(record.id, base)
        return applied

    async def _partial(self, record: PaymentRecord, event: PaymentEvent, base: dict[str, Any]) -> HandleOutcome:
        if record.fulfilled:
            logger.warning("partial payment event for fulfilled payment", extra=_log_extra(record, event))
            return await self._telemetry_only(record, base)

        currency = event.currency or record.currency or ""
        note = (
            f"Customer paid {format_amount(event.actually_paid)} {currency}, "
            f"expected {format_amount(event.pay_amount)}"
        ).replace("  ", " ")
        applied = await self._apply_unfulfilled(
            record, event, {**base, "status": PARTIALLY_PAID, "partial_payment_note": note}, base
        )
        if applied is None:
            return HandleOutcome(result=HandleResult.ALREADY_PROCESSED)
        before, updated = applied

        intents = []
        if before.status != PARTIALLY_PAID:
            intents.append(
                Notify(
                    kind=PAYMENT_PARTIAL,
                    payload={
                        "order_id": updated.order_id,
                        "payment_id": updated.processor_payment_id,
                        "request_type": updated.request.type.value,
                        "request_id": updated.request.id,
                        "note": note,
                    },
                )
            )
        logger.warning("partial payment received", extra=_log_extra(record, event, amount=event.actually_paid))
        return HandleOutcome(result=HandleResult.PARTIAL_PAYMENT, record=updated, intents=intents)

    async def _fail(
        self, record: PaymentRecord, event: PaymentEvent, base: dict[str, Any], now: datetime
    ) -> HandleOutcome:
        if record.fulfilled:
            # Out-of-order or post-fulfillment failure: never downgrade
            logger.warning("failure event for fulfilled payment; ignored", extra=_log_extra(record, event))
            return await self._telemetry_only(record, base)

        reason = event.extras.get("gateway_response") or f"Payment {event.status}"
        # failed_at is set-once in the store, so only the first failure lands
        patch = {**base, "status": event.status, "failure_reason": str(reason), "failed_at": now}
        applied = await self._apply_unfulfilled(
            record, event, patch, base, RequestUpdate.payment_status(record.request, event.status)
        )
        if applied is None:
            return HandleOutcome(result=HandleResult.ALREADY_PROCESSED)
        before, updated = applied

        intents = []
        if before.failed_at is None or before.status != event.status:
            intents.append(
                Notify(
                    kind=PAYMENT_FAILED,
                    payload={
                        "order_id": updated.order_id,
                        "payment_id": updated.processor_payment_id,
                        "request_type": updated.request.type.value,
                        "request_id": updated.request.id,
                        "status": event.status,
                    },
                )
            )
        return HandleOutcome(result=HandleResult.STATUS_UPDATED, record=updated, intents=intents)

    async def _progress(self, record: PaymentRecord, event: PaymentEvent, base: dict[str, Any]) -> HandleOutcome:
        if record.fulfilled:
            return await self._telemetry_only(record, base)
        applied = await self._apply_unfulfilled(record, event, {**base, "status": event.status}, base)
        if applied is None:
            return HandleOutcome(result=HandleResult.ALREADY_PROCESSED)
        return HandleOutcome(result=HandleResult.STATUS_UPDATED, record=applied[1])
