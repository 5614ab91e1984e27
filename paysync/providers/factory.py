from __future__ import annotations

from typing import Any, Optional

from paysync.config import Settings
from paysync.domain.enums import Processor
from paysync.domain.models import PaymentEvent

from .base import WebhookProcessor
from .nowpayments import NowPaymentsIPN
from .paystack import PaystackWebhook

_PROCESSORS: dict[Processor, type[WebhookProcessor]] = {
    Processor.CRYPTO: NowPaymentsIPN,
    Processor.CARD: PaystackWebhook,
}


def get_processor(settings: Settings, processor: Processor) -> WebhookProcessor:
    """Return the webhook processor for a processor kind."""
    return _PROCESSORS[processor](settings)


def get_processor_by_name(settings: Settings, name: Optional[str]) -> WebhookProcessor:
    """Return a processor by normalized name.

    Supported names:
    - "crypto" or "nowpayments" -> NowPaymentsIPN
    - "card" or "paystack" -> PaystackWebhook
    """
    normalized = (name or "").strip().lower()
    if normalized in {"crypto", "nowpayments"}:
        return NowPaymentsIPN(settings)
    if normalized in {"card", "paystack"}:
        return PaystackWebhook(settings)
    msg = f"Unknown processor {name}"
    raise ValueError(msg)


def detect_processor(settings: Settings, headers: Any) -> WebhookProcessor | None:
    """Pick the processor whose signature header is present on a request."""
    for processor in (Processor.CARD, Processor.CRYPTO):
        candidate = get_processor(settings, processor)
        if headers.get(candidate.signature_header):
            return candidate
    return None


def normalize(processor: Processor, payload: dict[str, Any], settings: Settings | None = None) -> PaymentEvent:
    """Parse a processor-specific payload into a PaymentEvent."""
    return get_processor(settings or Settings(), processor).normalize(payload)
