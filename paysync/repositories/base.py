from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from paysync.domain.models import MUTABLE_FIELDS, PaymentRecord
from paysync.domain.requests import RequestUpdate


class PaymentRecordStore(ABC):
    """Repository for PaymentRecords and the booking fields the pipeline owns.

    Every operation touches a single record. Backend failures surface as
    PersistenceError. Fields in SET_ONCE_FIELDS keep their stored value once
    set, whatever a patch carries.
    """

    name: str = "abstract"

    @abstractmethod
    async def find_by_order_id(self, order_id: str) -> PaymentRecord | None:
        ...

    @abstractmethod
    async def find_by_processor_payment_id(self, payment_id: str) -> PaymentRecord | None:
        ...

    @abstractmethod
    async def find_by_split_id(self, split_id: str) -> PaymentRecord | None:
        ...

    @abstractmethod
    async def create(self, record: PaymentRecord) -> PaymentRecord:
        """Insert a new record; DuplicateOrderError when the order id exists."""

    @abstractmethod
    async def update(self, record_id: str, patch: dict[str, Any]) -> PaymentRecord:
        """Apply a partial update and return the stored record.

        Only keys in MUTABLE_FIELDS are accepted; the rest of the row is left
        as is. RecordNotFoundError when the id is unknown.
        """

    @abstractmethod
    async def claim_fulfillment(
        self,
        record_id: str,
        patch: dict[str, Any],
        confirmation: RequestUpdate,
    ) -> PaymentRecord | None:
        """Mark a record fulfilled and confirm its booking in one transaction.

        Equivalent to ``UPDATE ... SET fulfilled = true WHERE id = X AND
        fulfilled = false`` followed by the booking update. Returns None,
        writing nothing, when the record was already fulfilled.
        """

    @abstractmethod
    async def update_unfulfilled(
        self,
        record_id: str,
        patch: dict[str, Any],
        request_update: RequestUpdate | None = None,
    ) -> tuple[PaymentRecord, PaymentRecord] | None:
        """Apply a status patch only while the record is not fulfilled.

        The row lock, the patch and the optional booking update share one
        transaction. Returns ``(before, after)``, or None without writing
        anything when the record is already fulfilled.
        """

    @abstractmethod
    async def update_request(self, update: RequestUpdate) -> None:
        """Write payment fields on the booking/request record."""

    async def close(self) -> None:
        return None


def validate_patch(patch: dict[str, Any]) -> None:
    unknown = set(patch) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
