"""Payout-status callbacks for splits started after fulfillment.

The payout service reports the split lifecycle asynchronously; the outcome
lands on the PaymentRecord's ``split_*`` fields. A completed payout is final.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from paysync.domain.enums import HandleResult, SplitStatus, StatusClass
from paysync.domain.models import HandleOutcome, Notify, PayoutEvent
from paysync.integrations.notifications import ADMIN_PAYOUT_COMPLETED, ADMIN_SPLIT_FAILED
from paysync.repositories.base import PaymentRecordStore
from paysync.utils.amounts import format_amount

logger = logging.getLogger(__name__)

_SPLIT_STATUS = {
    StatusClass.COMPLETED: SplitStatus.COMPLETED,
    StatusClass.FAILED: SplitStatus.FAILED,
    StatusClass.IN_PROGRESS: SplitStatus.PROCESSING,
}

DEFAULT_PAYOUT_ERROR = "Crypto payout failed"


class PayoutStatusHandler:
    def __init__(self, store: PaymentRecordStore, clock: Callable[[], datetime] | None = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def handle(self, event: PayoutEvent) -> HandleOutcome:
        extra: dict[str, Any] = {"split_id": event.split_id, "status": event.status}
        record = await self.store.find_by_split_id(event.split_id)
        if record is None:
            logger.warning("payout callback for unknown split", extra={**extra, "result": HandleResult.NOT_FOUND.value})
            return HandleOutcome(result=HandleResult.NOT_FOUND)

        extra.update(record_id=record.id, order_id=record.order_id)
        split_status = _SPLIT_STATUS[event.status_class].value
        if record.split_status in (SplitStatus.COMPLETED.value, split_status):
            logger.info("payout callback already applied", extra=extra)
            return HandleOutcome(result=HandleResult.ALREADY_PROCESSED, record=record)

        error = None
        if event.status_class is StatusClass.FAILED:
            error = event.error or DEFAULT_PAYOUT_ERROR
        metadata = dict(record.metadata)
        metadata["payout"] = {
            "status": event.status,
            "amount": format_amount(event.amount) if event.amount is not None else None,
            "currency": event.currency,
            **event.extras,
        }
        updated = await self.store.update(
            record.id,
            {
                "split_status": split_status,
                "split_error": error,
                "metadata": metadata,
                "updated_at": self.clock(),
            },
        )

        intents = []
        if event.status_class is StatusClass.COMPLETED:
            intents.append(
                Notify(
                    kind=ADMIN_PAYOUT_COMPLETED,
                    payload={
                        "payout_id": event.split_id,
                        "record_id": updated.id,
                        "order_id": updated.order_id,
                        "amount": format_amount(event.amount),
                        "currency": event.currency,
                        "address": event.extras.get("address"),
                        "hash": event.extras.get("hash"),
                    },
                )
            )
        elif event.status_class is StatusClass.FAILED:
            intents.append(
                Notify(
                    kind=ADMIN_SPLIT_FAILED,
                    payload={
                        "record_id": updated.id,
                        "payment_id": updated.processor_payment_id,
                        "split_id": event.split_id,
                        "error": error,
                    },
                )
            )
            logger.warning("payout failed", extra={**extra, "error": error})
        logger.info("payout status recorded", extra={**extra, "result": HandleResult.STATUS_UPDATED.value})
        return HandleOutcome(result=HandleResult.STATUS_UPDATED, record=updated, intents=intents)
