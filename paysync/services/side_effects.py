from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable

from paysync.domain.enums import SplitStatus
from paysync.domain.errors import DownstreamSideEffectError, PaysyncError
from paysync.domain.models import InitiateSplit, Notify, SideEffect, SplitResult
from paysync.integrations.notifications import ADMIN_SPLIT_FAILED, Notifier
from paysync.integrations.payouts import PayoutClient
from paysync.repositories.base import PaymentRecordStore

logger = logging.getLogger(__name__)


class SideEffectDispatcher:
    """Runs post-commit intents; never lets a failure escape.

    By the time this runs the fulfillment is committed, so errors here are
    logged and recorded on the payment (for the split retry job) only.
    """

    def __init__(
        self,
        store: PaymentRecordStore,
        payouts: PayoutClient,
        notifier: Notifier,
        timeout_seconds: float = 15.0,
    ):
        self.store = store
        self.payouts = payouts
        self.notifier = notifier
        self.timeout_seconds = timeout_seconds

    async def run(self, intents: Iterable[SideEffect]) -> None:
        for intent in intents:
            try:
                if isinstance(intent, InitiateSplit):
                    await self._split(intent)
                elif isinstance(intent, Notify):
                    await self._notify(intent)
            except DownstreamSideEffectError as exc:
                logger.warning("side effect failed", extra={"event": type(intent).__name__, "error": str(exc)})
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "side effect failed",
                    exc_info=True,
                    extra={"event": type(intent).__name__, "error": str(exc)},
                )

    async def _split(self, intent: InitiateSplit) -> None:
        try:
            result = await asyncio.wait_for(
                self.payouts.initiate_split(intent.payment_id), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            result = SplitResult(success=False, error="payout call timed out")
        except Exception as exc:  # noqa: BLE001
            result = SplitResult(success=False, error=str(exc) or exc.__class__.__name__)

        patch = {
            "split_status": (SplitStatus.SUCCEEDED if result.success else SplitStatus.FAILED).value,
            "split_id": result.split_id,
            "split_error": None if result.success else result.error,
            "updated_at": datetime.now(timezone.utc),
        }
        try:
            await self.store.update(intent.record_id, patch)
        except PaysyncError as exc:
            logger.error(
                "split outcome not recorded",
                extra={"record_id": intent.record_id, "payment_id": intent.payment_id, "error": str(exc)},
            )

        if result.success:
            logger.info(
                "split initiated",
                extra={"record_id": intent.record_id, "payment_id": intent.payment_id, "split_id": result.split_id},
            )
            return
        logger.warning(
            "split failed; left for retry",
            extra={"record_id": intent.record_id, "payment_id": intent.payment_id, "error": result.error},
        )
        await self._notify(
            Notify(
                kind=ADMIN_SPLIT_FAILED,
                payload={"record_id": intent.record_id, "payment_id": intent.payment_id, "error": result.error},
            )
        )

    async def _notify(self, intent: Notify) -> None:
        try:
            await asyncio.wait_for(
                self.notifier.notify(intent.kind, intent.payload), timeout=self.timeout_seconds
            )
        except Exception as exc:  # noqa: BLE001
            raise DownstreamSideEffectError(f"notification {intent.kind} failed: {exc!r}") from exc
