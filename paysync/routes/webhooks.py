from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from paysync.container import Container, get_container
from paysync.domain.dtos import WebhookAck
from paysync.domain.enums import HandleResult, Processor
from paysync.domain.errors import InvalidSignatureError, MalformedPayloadError, PersistenceError
from paysync.domain.models import HandleOutcome
from paysync.providers.base import WebhookProcessor
from paysync.providers.factory import detect_processor, get_processor
from paysync.utils.security import is_well_formed_signature

router = APIRouter()
logger = logging.getLogger(__name__)


async def _handle_delivery(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container,
    processor: WebhookProcessor,
    ingest: Callable[..., Awaitable[HandleOutcome]] | None = None,
) -> WebhookAck:
    ingest = ingest or container.service.ingest_webhook
    endpoint = request.url.path
    # Read once, before any parsing: the signature covers these exact bytes
    raw_body = await request.body()
    signature = request.headers.get(processor.signature_header)

    if processor.processor is Processor.CARD and not is_well_formed_signature(signature):
        logger.warning(
            "webhook signature header unparseable",
            extra={"endpoint": endpoint, "processor": processor.processor.value},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature header")

    try:
        outcome = await ingest(processor, raw_body, signature)
    except InvalidSignatureError as exc:
        logger.warning(
            "webhook signature rejected",
            extra={"endpoint": endpoint, "processor": processor.processor.value, "error": str(exc)},
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    except MalformedPayloadError as exc:
        # Acknowledge so the processor stops retrying; triage from logs
        logger.warning(
            "webhook payload not attributable",
            extra={"endpoint": endpoint, "processor": processor.processor.value, "error": str(exc)},
        )
        return WebhookAck(status="ignored")
    except PersistenceError as exc:
        # Fail loudly so the processor redelivers
        logger.error(
            "webhook core write failed",
            extra={"endpoint": endpoint, "processor": processor.processor.value, "error": str(exc)},
        )
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Temporary processing error")
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "webhook processing error",
            extra={"endpoint": endpoint, "processor": processor.processor.value, "error": str(exc)},
        )
        return WebhookAck(status="error")

    if outcome.intents:
        background_tasks.add_task(container.dispatcher.run, outcome.intents)
    if outcome.result is HandleResult.NOT_FOUND:
        return WebhookAck(status="accepted", result=outcome.result)
    return WebhookAck(status="success", result=outcome.result)


@router.post("/api/webhooks/crypto", response_model=WebhookAck)
async def crypto_ipn(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container = Depends(get_container),
) -> WebhookAck:
    """NOWPayments IPN (``x-nowpayments-sig``)."""
    processor = get_processor(container.settings, Processor.CRYPTO)
    return await _handle_delivery(request, background_tasks, container, processor)


@router.post("/api/webhooks/card", response_model=WebhookAck)
async def card_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container = Depends(get_container),
) -> WebhookAck:
    """Paystack webhook (``x-paystack-signature``)."""
    processor = get_processor(container.settings, Processor.CARD)
    return await _handle_delivery(request, background_tasks, container, processor)


@router.post("/api/webhooks/payout", response_model=WebhookAck)
async def payout_status(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container = Depends(get_container),
) -> WebhookAck:
    """NOWPayments payout-status callback, signed like the IPN."""
    processor = get_processor(container.settings, Processor.CRYPTO)
    return await _handle_delivery(
        request, background_tasks, container, processor, container.service.ingest_payout_webhook
    )


@router.post("/api/payments/webhook", response_model=WebhookAck)
async def unified_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container = Depends(get_container),
) -> WebhookAck:
    """Single endpoint for both processors, routed on the signature header."""
    processor = detect_processor(container.settings, request.headers)
    if processor is None:
        logger.warning("webhook without signature header", extra={"endpoint": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook")
    return await _handle_delivery(request, background_tasks, container, processor)
