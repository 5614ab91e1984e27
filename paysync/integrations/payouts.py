from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import httpx

from paysync.config import Settings
from paysync.domain.models import SplitResult

logger = logging.getLogger(__name__)


class PayoutClient(ABC):
    """Split/payout API: vendor and platform shares of a fulfilled payment."""

    @abstractmethod
    async def initiate_split(self, payment_id: str) -> SplitResult:
        """Start the split for a payment and report whether it was accepted."""


class HttpPayoutClient(PayoutClient):
    """Calls the payout service over HTTP.

    Transport and HTTP errors are reported as ``SplitResult(success=False)``
    so the caller can record them for the retry job.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.base_url = settings.payout_api_url.rstrip("/")
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.payout_api_token:
            headers["Authorization"] = f"Bearer {self.settings.payout_api_token}"
        return headers

    async def initiate_split(self, payment_id: str) -> SplitResult:
        url = f"{self.base_url}/splits"
        started = time.monotonic()
        try:
            if self._client is not None:
                resp = await self._client.post(url, headers=self._headers(), json={"payment_id": payment_id})
            else:
                async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
                    resp = await client.post(url, headers=self._headers(), json={"payment_id": payment_id})
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "split initiation failed",
                extra={"payment_id": payment_id, "error": str(exc)},
            )
            return SplitResult(success=False, error=str(exc) or exc.__class__.__name__)
        latency_ms = int((time.monotonic() - started) * 1000)
        success = bool(body.get("success", True)) if isinstance(body, dict) else False
        split_id = None
        error = None
        if isinstance(body, dict):
            raw_id = body.get("split_id") or body.get("id")
            split_id = str(raw_id) if raw_id is not None else None
            error = body.get("error")
        logger.info(
            "split initiation responded",
            extra={"payment_id": payment_id, "split_id": split_id, "status": success, "latency_ms": latency_ms},
        )
        if not success:
            return SplitResult(success=False, error=str(error or "payout service rejected split"))
        return SplitResult(success=True, split_id=split_id)


class DisabledPayoutClient(PayoutClient):
    """Used when no payout API is configured; every split stays pending retry."""

    async def initiate_split(self, payment_id: str) -> SplitResult:
        logger.warning("payout api not configured", extra={"payment_id": payment_id})
        return SplitResult(success=False, error="payout api not configured")


def get_payout_client(settings: Settings) -> PayoutClient:
    if settings.payout_enabled:
        return HttpPayoutClient(settings)
    return DisabledPayoutClient()
