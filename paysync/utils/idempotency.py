from __future__ import annotations

from paysync.domain.enums import StatusClass
from paysync.domain.models import PaymentEvent, PaymentRecord


def should_fulfill(record: PaymentRecord, event: PaymentEvent) -> bool:
    """Return True when a completion event may run fulfillment side effects.

    IN_PROGRESS and FAILED events never fulfill, so they are never let
    through. The answer is only advisory: the store's conditional
    ``claim_fulfillment`` write is what actually stops a concurrent duplicate.
    """
    if event.status_class is not StatusClass.COMPLETED:
        return False
    return not record.fulfilled
