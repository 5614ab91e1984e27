from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from paysync.config import Settings

logger = logging.getLogger(__name__)

# Notification kinds emitted by the pipeline
PAYMENT_FULFILLED = "payment_fulfilled"
PAYMENT_PARTIAL = "payment_partial"
PAYMENT_FAILED = "payment_failed"
ADMIN_SPLIT_FAILED = "admin_split_failed"
ADMIN_PAYOUT_COMPLETED = "admin_payout_completed"


class Notifier(ABC):
    """Admin/vendor/customer alert channel. Fire-and-forget for callers."""

    @abstractmethod
    async def notify(self, kind: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotifier(Notifier):
    async def notify(self, kind: str, payload: dict[str, Any]) -> None:
        logger.info("notification", extra={"kind": kind, "event": payload})


class WebhookNotifier(Notifier):
    """Posts ``{"type": kind, "data": payload}`` to a notification webhook.

    Raises httpx errors; the side-effect dispatcher logs and drops them.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.url = settings.notify_webhook_url
        self.timeout = settings.http_timeout_seconds
        self._client = client

    async def notify(self, kind: str, payload: dict[str, Any]) -> None:
        body = {"type": kind, "data": payload}
        if self._client is not None:
            resp = await self._client.post(self.url, json=body)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, json=body)
        resp.raise_for_status()
        logger.info("notification sent", extra={"kind": kind})


def get_notifier(settings: Settings) -> Notifier:
    if settings.notify_webhook_url:
        return WebhookNotifier(settings)
    return LoggingNotifier()
