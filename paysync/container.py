from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from paysync.config import Settings
from paysync.db.client import Database
from paysync.integrations.notifications import Notifier, get_notifier
from paysync.integrations.payouts import PayoutClient, get_payout_client
from paysync.repositories.base import PaymentRecordStore
from paysync.repositories.memory_store import InMemoryPaymentStore
from paysync.repositories.pg_store import PgPaymentStore
from paysync.services.fulfillment import FulfillmentOrchestrator
from paysync.services.payments_service import PaymentsService
from paysync.services.side_effects import SideEffectDispatcher


@dataclass
class Container:
    """Process-wide collaborators, built once by the app bootstrap."""

    settings: Settings
    store: PaymentRecordStore
    service: PaymentsService
    dispatcher: SideEffectDispatcher


def build_store(settings: Settings) -> PaymentRecordStore:
    if settings.db_enabled:
        return PgPaymentStore(Database(settings))
    return InMemoryPaymentStore()


def build_container(
    settings: Settings,
    store: PaymentRecordStore | None = None,
    payouts: PayoutClient | None = None,
    notifier: Notifier | None = None,
) -> Container:
    store = store or build_store(settings)
    orchestrator = FulfillmentOrchestrator(store)
    dispatcher = SideEffectDispatcher(
        store,
        payouts or get_payout_client(settings),
        notifier or get_notifier(settings),
        timeout_seconds=settings.side_effect_timeout_seconds,
    )
    return Container(
        settings=settings,
        store=store,
        service=PaymentsService(store, orchestrator, settings),
        dispatcher=dispatcher,
    )


def get_container(request: Request) -> Container:
    return request.app.state.container
