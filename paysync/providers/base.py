from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from paysync.config import Settings
from paysync.domain.enums import Processor
from paysync.domain.errors import MalformedPayloadError
from paysync.domain.models import PaymentEvent
from paysync.utils.security import verify_signature


class WebhookProcessor(ABC):
    """Inbound side of a payment processor: signature scheme + payload shape."""

    processor: Processor
    signature_header: str

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    @abstractmethod
    def secret(self) -> str:
        """Shared secret used to sign webhook bodies."""

    def verify(self, raw_body: bytes, signature_header: str | None) -> bool:
        return verify_signature(raw_body, signature_header, self.secret)

    @abstractmethod
    def normalize(self, payload: dict[str, Any]) -> PaymentEvent:
        """Map a parsed webhook body onto a PaymentEvent.

        Must be a pure function of the payload. Raises MalformedPayloadError
        when the payload cannot be attributed to one of our payments.
        """


def require_mapping(payload: Any, what: str = "payload") -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"{what} is not a JSON object")
    return payload


def optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
