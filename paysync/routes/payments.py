from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from paysync.container import Container, get_container
from paysync.domain.dtos import PaymentCreateRequest, PaymentSummary
from paysync.domain.errors import PersistenceError, RecordNotFoundError
from paysync.utils.security import verify_bearer_token

router = APIRouter(prefix="/api/payments")
logger = logging.getLogger(__name__)


@router.post("", response_model=PaymentSummary, dependencies=[Depends(verify_bearer_token)])
async def create_payment(
    request: PaymentCreateRequest,
    container: Container = Depends(get_container),
) -> PaymentSummary:
    """Register the payment for a checkout before the processor notifies us."""
    logger.info(
        "create_payment received",
        extra={
            "endpoint": "/api/payments",
            "method": "POST",
            "order_id": request.order_id,
            "processor": request.processor.value,
            "request_type": request.request_type.value,
            "request_id": request.request_id,
            "amount": request.amount_expected,
            "currency": request.currency,
        },
    )
    try:
        record = await container.service.register_payment(request)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment store unavailable") from exc
    return PaymentSummary.from_record(record)


@router.get("/{order_id}", response_model=PaymentSummary, dependencies=[Depends(verify_bearer_token)])
async def get_payment(order_id: str, container: Container = Depends(get_container)) -> PaymentSummary:
    try:
        record = await container.service.get_payment(order_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown order") from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment store unavailable") from exc
    return PaymentSummary.from_record(record)
