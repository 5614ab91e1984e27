from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple

from paysync.domain.enums import RequestType
from paysync.domain.errors import DuplicateOrderError, RecordNotFoundError
from paysync.domain.models import SET_ONCE_FIELDS, PaymentRecord
from paysync.domain.requests import RequestRef, RequestUpdate

from .base import PaymentRecordStore, validate_patch

logger = logging.getLogger(__name__)


def _copy(record: PaymentRecord) -> PaymentRecord:
    return replace(record, metadata=copy.deepcopy(record.metadata))


class InMemoryPaymentStore(PaymentRecordStore):
    """In-memory payment repository for tests and DB-less development."""

    name = "memory"

    def __init__(self) -> None:
        self.by_id: Dict[str, PaymentRecord] = {}
        self.by_order_id: Dict[str, str] = {}
        self.by_payment_id: Dict[str, str] = {}
        self.requests: Dict[Tuple[RequestType, str], Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def find_by_order_id(self, order_id: str) -> Optional[PaymentRecord]:
        record_id = self.by_order_id.get(order_id)
        if record_id:
            return _copy(self.by_id[record_id])
        return None

    async def find_by_processor_payment_id(self, payment_id: str) -> Optional[PaymentRecord]:
        record_id = self.by_payment_id.get(payment_id)
        if record_id:
            return _copy(self.by_id[record_id])
        return None

    async def find_by_split_id(self, split_id: str) -> Optional[PaymentRecord]:
        for record in self.by_id.values():
            if record.split_id == split_id:
                return _copy(record)
        return None

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        async with self._lock:
            if record.order_id in self.by_order_id:
                raise DuplicateOrderError(record.order_id)
            stored = _copy(record)
            self.by_id[stored.id] = stored
            self.by_order_id[stored.order_id] = stored.id
            if stored.processor_payment_id:
                self.by_payment_id[stored.processor_payment_id] = stored.id
            return _copy(stored)

    async def update(self, record_id: str, patch: dict[str, Any]) -> PaymentRecord:
        validate_patch(patch)
        async with self._lock:
            return self._apply(record_id, patch)

    async def claim_fulfillment(
        self,
        record_id: str,
        patch: dict[str, Any],
        confirmation: RequestUpdate,
    ) -> Optional[PaymentRecord]:
        validate_patch(patch)
        async with self._lock:
            if self._get(record_id).fulfilled:
                return None
            record = self._apply(record_id, {**patch, "fulfilled": True})
            self._apply_request(confirmation)
            return record

    async def update_unfulfilled(
        self,
        record_id: str,
        patch: dict[str, Any],
        request_update: RequestUpdate | None = None,
    ) -> Optional[Tuple[PaymentRecord, PaymentRecord]]:
        validate_patch(patch)
        async with self._lock:
            current = self._get(record_id)
            if current.fulfilled:
                return None
            before = _copy(current)
            # Booking row first: a failure there leaves the record untouched
            if request_update is not None:
                self._apply_request(request_update)
            return before, self._apply(record_id, patch)

    async def update_request(self, update: RequestUpdate) -> None:
        async with self._lock:
            self._apply_request(update)

    def _get(self, record_id: str) -> PaymentRecord:
        current = self.by_id.get(record_id)
        if current is None:
            raise RecordNotFoundError(record_id)
        return current

    def _apply(self, record_id: str, patch: dict[str, Any]) -> PaymentRecord:
        current = self._get(record_id)
        changes = copy.deepcopy(patch)
        for field in SET_ONCE_FIELDS & set(changes):
            stored = getattr(current, field)
            if stored is None:
                continue
            if changes[field] != stored:
                logger.warning(
                    "set-once field kept",
                    extra={"record_id": record_id, "order_id": current.order_id, "error": f"{field} is {stored}"},
                )
            del changes[field]
        updated = replace(current, **changes)
        self.by_id[record_id] = updated
        if updated.processor_payment_id:
            self.by_payment_id.setdefault(updated.processor_payment_id, record_id)
        return _copy(updated)

    def _apply_request(self, update: RequestUpdate) -> None:
        key = (update.ref.type, update.ref.id)
        row = self.requests.setdefault(key, {"id": update.ref.id})
        row.update(update.fields)

    # Helpers for seeding and inspecting booking rows

    def seed_request(self, ref: RequestRef, **fields: Any) -> None:
        self.requests[(ref.type, ref.id)] = {"id": ref.id, **fields}

    def get_request(self, ref: RequestRef) -> Dict[str, Any] | None:
        row = self.requests.get((ref.type, ref.id))
        return dict(row) if row is not None else None

    def list_all(self) -> list[PaymentRecord]:
        return [_copy(record) for record in self.by_id.values()]
