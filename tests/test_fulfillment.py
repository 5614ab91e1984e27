from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import RecordingNotifier, RecordingPayouts, card_payload, crypto_payload, make_record
from paysync.domain.enums import HandleResult, Processor, RequestType
from paysync.domain.errors import PersistenceError
from paysync.domain.models import InitiateSplit, Notify
from paysync.domain.requests import RequestRef
from paysync.domain.statuses import PaymentState
from paysync.integrations.notifications import PAYMENT_FAILED, PAYMENT_FULFILLED, PAYMENT_PARTIAL
from paysync.providers.factory import normalize
from paysync.repositories.memory_store import InMemoryPaymentStore
from paysync.services.fulfillment import FulfillmentOrchestrator
from paysync.services.side_effects import SideEffectDispatcher

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


class YieldingStore(InMemoryPaymentStore):
    """Lets other deliveries run between read and write."""

    async def find_by_order_id(self, order_id):
        record = await super().find_by_order_id(order_id)
        await asyncio.sleep(0)
        return record


async def _seed(store: InMemoryPaymentStore, record, **booking):
    store.seed_request(record.request, **(booking or {"status": "pending", "payment_status": "pending"}))
    return await store.create(record)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def orchestrator(store, clock) -> FulfillmentOrchestrator:
    return FulfillmentOrchestrator(store, clock=clock)


def crypto(settings, **overrides):
    return normalize(Processor.CRYPTO, crypto_payload(**overrides), settings)


@pytest.mark.asyncio
async def test_finished_payment_is_fulfilled(settings, store, orchestrator) -> None:
    await _seed(store, make_record())

    outcome = await orchestrator.handle(crypto(settings))

    assert outcome.result is HandleResult.FULFILLED
    stored = await store.find_by_order_id("ORD-1")
    assert stored.fulfilled
    assert stored.status == "finished"
    assert stored.state is PaymentState.COMPLETED_FULFILLED
    assert stored.finished_at == NOW
    assert stored.processor_payment_id == "PAY-1"
    assert stored.amount_actual_paid == Decimal("100")
    assert stored.metadata["pay_currency"] == "usdttrc20"
    assert stored.metadata["price_currency"] == "usd"

    booking = store.get_request(stored.request)
    assert booking["status"] == "confirmed"
    assert booking["payment_status"] == "completed"
    assert booking["confirmed_at"] == NOW

    assert outcome.intents[0] == InitiateSplit(record_id=stored.id, payment_id="PAY-1")
    assert isinstance(outcome.intents[1], Notify)
    assert outcome.intents[1].kind == PAYMENT_FULFILLED
    assert outcome.intents[1].payload["request_type"] == "logistics"


@pytest.mark.asyncio
async def test_duplicate_completion_is_a_no_op(settings, store, orchestrator, clock) -> None:
    await _seed(store, make_record())
    await orchestrator.handle(crypto(settings))
    clock.advance(minutes=5)

    outcome = await orchestrator.handle(crypto(settings))

    assert outcome.result is HandleResult.ALREADY_PROCESSED
    assert outcome.intents == []
    stored = await store.find_by_order_id("ORD-1")
    assert stored.finished_at == NOW
    assert stored.updated_at == NOW + timedelta(minutes=5)
    assert store.get_request(stored.request)["confirmed_at"] == NOW


@pytest.mark.asyncio
async def test_concurrent_completions_fulfill_once(settings, clock) -> None:
    store = YieldingStore()
    orchestrator = FulfillmentOrchestrator(store, clock=clock)
    await _seed(store, make_record())

    outcomes = await asyncio.gather(*(orchestrator.handle(crypto(settings)) for _ in range(5)))

    results = [outcome.result for outcome in outcomes]
    assert results.count(HandleResult.FULFILLED) == 1
    assert results.count(HandleResult.ALREADY_PROCESSED) == 4
    splits = [intent for outcome in outcomes for intent in outcome.intents if isinstance(intent, InitiateSplit)]
    assert len(splits) == 1


@pytest.mark.asyncio
async def test_partial_payment_holds_the_booking(settings, store, orchestrator) -> None:
    await _seed(store, make_record())

    outcome = await orchestrator.handle(crypto(settings, payment_status="partially_paid", actually_paid="60"))

    assert outcome.result is HandleResult.PARTIAL_PAYMENT
    stored = await store.find_by_order_id("ORD-1")
    assert not stored.fulfilled
    assert stored.status == "partially_paid"
    assert stored.state is PaymentState.PARTIALLY_PAID
    assert stored.partial_payment_note == "Customer paid 60 usdttrc20, expected 100"
    assert store.get_request(stored.request) == {"id": "REQ-1", "status": "pending", "payment_status": "pending"}
    assert [intent.kind for intent in outcome.intents] == [PAYMENT_PARTIAL]

    again = await orchestrator.handle(crypto(settings, payment_status="partially_paid", actually_paid="70"))
    assert again.result is HandleResult.PARTIAL_PAYMENT
    assert again.intents == []
    stored = await store.find_by_order_id("ORD-1")
    assert stored.amount_actual_paid == Decimal("70")


@pytest.mark.asyncio
async def test_underpaid_finished_is_treated_as_partial(settings, store, orchestrator) -> None:
    await _seed(store, make_record())

    outcome = await orchestrator.handle(crypto(settings, actually_paid="99.5"))

    assert outcome.result is HandleResult.PARTIAL_PAYMENT
    assert not (await store.find_by_order_id("ORD-1")).fulfilled


@pytest.mark.asyncio
async def test_top_up_after_partial_fulfills(settings, store, orchestrator) -> None:
    await _seed(store, make_record())
    await orchestrator.handle(crypto(settings, payment_status="partially_paid", actually_paid="60"))

    outcome = await orchestrator.handle(crypto(settings))

    assert outcome.result is HandleResult.FULFILLED
    stored = await store.find_by_order_id("ORD-1")
    assert stored.partial_payment_note is None
    assert stored.fulfilled


@pytest.mark.asyncio
async def test_expired_payment_fails_without_touching_primary_status(settings, store, orchestrator) -> None:
    await _seed(store, make_record())

    outcome = await orchestrator.handle(crypto(settings, payment_status="expired", actually_paid=0))

    assert outcome.result is HandleResult.STATUS_UPDATED
    stored = await store.find_by_order_id("ORD-1")
    assert stored.status == "expired"
    assert stored.failed_at == NOW
    assert stored.failure_reason == "Payment expired"
    assert not stored.fulfilled
    booking = store.get_request(stored.request)
    assert booking["payment_status"] == "expired"
    assert booking["status"] == "pending"
    assert [intent.kind for intent in outcome.intents] == [PAYMENT_FAILED]


@pytest.mark.asyncio
async def test_repeated_failure_notifies_once(settings, store, orchestrator, clock) -> None:
    await _seed(store, make_record())
    await orchestrator.handle(crypto(settings, payment_status="expired"))
    clock.advance(minutes=1)

    outcome = await orchestrator.handle(crypto(settings, payment_status="expired"))

    assert outcome.intents == []
    assert (await store.find_by_order_id("ORD-1")).failed_at == NOW


@pytest.mark.asyncio
async def test_in_progress_updates_status_only(settings, store, orchestrator) -> None:
    await _seed(store, make_record())

    outcome = await orchestrator.handle(crypto(settings, payment_status="confirming", actually_paid=None))

    assert outcome.result is HandleResult.STATUS_UPDATED
    assert outcome.intents == []
    stored = await store.find_by_order_id("ORD-1")
    assert stored.status == "confirming"
    assert stored.state is PaymentState.IN_PROGRESS
    assert store.get_request(stored.request)["status"] == "pending"


@pytest.mark.asyncio
@pytest.mark.parametrize("late_status", ["expired", "confirming", "partially_paid"])
async def test_fulfillment_is_never_downgraded(settings, store, orchestrator, late_status) -> None:
    await _seed(store, make_record())
    await orchestrator.handle(crypto(settings))

    outcome = await orchestrator.handle(crypto(settings, payment_status=late_status, actually_paid="10"))

    assert outcome.result is HandleResult.ALREADY_PROCESSED
    assert outcome.intents == []
    stored = await store.find_by_order_id("ORD-1")
    assert stored.fulfilled
    assert stored.status == "finished"
    assert stored.failed_at is None
    booking = store.get_request(stored.request)
    assert booking["status"] == "confirmed"
    assert booking["payment_status"] == "completed"


@pytest.mark.asyncio
async def test_unknown_order_is_not_found(settings, store, orchestrator) -> None:
    await _seed(store, make_record())

    outcome = await orchestrator.handle(crypto(settings, order_id="ORD-404", payment_id="PAY-404"))

    assert outcome.result is HandleResult.NOT_FOUND
    assert outcome.intents == []
    stored = await store.find_by_order_id("ORD-1")
    assert stored.status == "waiting"
    assert stored.processor_payment_id is None


@pytest.mark.asyncio
async def test_lookup_falls_back_to_processor_payment_id(settings, store, orchestrator) -> None:
    await _seed(store, make_record(processor_payment_id="PAY-1"))
    payload = crypto_payload()
    del payload["order_id"]

    outcome = await orchestrator.handle(normalize(Processor.CRYPTO, payload, settings))

    assert outcome.result is HandleResult.FULFILLED
    assert outcome.record.order_id == "ORD-1"


@pytest.mark.asyncio
async def test_processor_payment_id_is_not_overwritten(settings, store, orchestrator) -> None:
    await _seed(store, make_record(processor_payment_id="PAY-ORIGINAL"))

    outcome = await orchestrator.handle(crypto(settings, payment_status="confirming", payment_id="PAY-OTHER"))

    assert outcome.result is HandleResult.STATUS_UPDATED
    assert (await store.find_by_order_id("ORD-1")).processor_payment_id == "PAY-ORIGINAL"


@pytest.mark.asyncio
async def test_processor_mismatch_is_not_applied(settings, store, orchestrator) -> None:
    await _seed(store, make_record(order_id="ORD-CARD-1", processor=Processor.CRYPTO))

    outcome = await orchestrator.handle(normalize(Processor.CARD, card_payload(), settings))

    assert outcome.result is HandleResult.NOT_FOUND
    assert not (await store.find_by_order_id("ORD-CARD-1")).fulfilled


@pytest.mark.asyncio
async def test_card_success_confirms_hotel_booking(settings, store, orchestrator) -> None:
    ref = RequestRef(type=RequestType.HOTEL_BOOKING, id="HB-7")
    record = make_record(order_id="ORD-CARD-1", processor=Processor.CARD, request=ref, amount_expected=Decimal("2500"))
    await _seed(store, record, booking_status="pending", payment_status="pending")

    outcome = await orchestrator.handle(normalize(Processor.CARD, card_payload(), settings))

    assert outcome.result is HandleResult.FULFILLED
    booking = store.get_request(ref)
    assert booking["booking_status"] == "confirmed"
    assert booking["payment_status"] == "completed"
    assert "status" not in booking
    assert outcome.intents[0].payment_id == "4099260516"


@pytest.mark.asyncio
async def test_card_failure_records_gateway_reason(settings, store, orchestrator) -> None:
    record = make_record(order_id="ORD-CARD-1", processor=Processor.CARD)
    await _seed(store, record)

    payload = card_payload("charge.failed", gateway_response="Declined")
    outcome = await orchestrator.handle(normalize(Processor.CARD, payload, settings))

    assert outcome.result is HandleResult.STATUS_UPDATED
    stored = await store.find_by_order_id("ORD-CARD-1")
    assert stored.status == "failed"
    assert stored.failure_reason == "Declined"
    assert store.get_request(stored.request)["payment_status"] == "failed"


@pytest.mark.asyncio
async def test_fulfillment_intents_run_through_dispatcher(settings, store, orchestrator) -> None:
    await _seed(store, make_record())
    payouts = RecordingPayouts()
    notifier = RecordingNotifier()
    dispatcher = SideEffectDispatcher(store, payouts, notifier, timeout_seconds=1)

    outcome = await orchestrator.handle(crypto(settings))
    await dispatcher.run(outcome.intents)

    assert payouts.calls == ["PAY-1"]
    assert notifier.kinds == [PAYMENT_FULFILLED]
    stored = await store.find_by_order_id("ORD-1")
    assert stored.split_status == "succeeded"
    assert stored.split_id == "SPLIT-1"


class FlakyBookingStore(InMemoryPaymentStore):
    """Fails the first booking-row write."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    def _apply_request(self, update):
        if self.failures:
            self.failures -= 1
            raise PersistenceError("booking table unavailable")
        super()._apply_request(update)


@pytest.mark.asyncio
@pytest.mark.parametrize("late_status", ["expired", "confirming", "partially_paid"])
async def test_late_event_racing_completion_does_not_downgrade(settings, clock, late_status) -> None:
    store = YieldingStore()
    orchestrator = FulfillmentOrchestrator(store, clock=clock)
    await _seed(store, make_record())

    completed, late = await asyncio.gather(
        orchestrator.handle(crypto(settings)),
        orchestrator.handle(crypto(settings, payment_status=late_status, actually_paid="10")),
    )

    assert completed.result is HandleResult.FULFILLED
    assert late.result is HandleResult.ALREADY_PROCESSED
    assert late.intents == []
    stored = await store.find_by_order_id("ORD-1")
    assert stored.fulfilled
    assert stored.status == "finished"
    assert stored.failed_at is None
    assert stored.partial_payment_note is None
    booking = store.get_request(stored.request)
    assert booking["status"] == "confirmed"
    assert booking["payment_status"] == "completed"


@pytest.mark.asyncio
async def test_concurrent_first_deliveries_assign_payment_id_once(settings, clock) -> None:
    store = YieldingStore()
    orchestrator = FulfillmentOrchestrator(store, clock=clock)
    await _seed(store, make_record())

    first, second = await asyncio.gather(
        orchestrator.handle(crypto(settings, payment_id="PAY-A", payment_status="waiting")),
        orchestrator.handle(crypto(settings, payment_id="PAY-B", payment_status="confirming")),
    )

    assert first.result is HandleResult.STATUS_UPDATED
    assert second.result is HandleResult.STATUS_UPDATED
    stored = await store.find_by_order_id("ORD-1")
    assert stored.processor_payment_id == "PAY-A"
    assert stored.status == "confirming"


@pytest.mark.asyncio
async def test_store_keeps_set_once_fields(store) -> None:
    record = await store.create(make_record(processor_payment_id="PAY-1", failed_at=NOW))

    updated = await store.update(
        record.id, {"processor_payment_id": "PAY-2", "failed_at": NOW + timedelta(hours=1), "status": "failed"}
    )

    assert updated.processor_payment_id == "PAY-1"
    assert updated.failed_at == NOW
    assert updated.status == "failed"
    assert (await store.find_by_processor_payment_id("PAY-2")) is None


@pytest.mark.asyncio
async def test_failure_retried_after_booking_write_error_still_notifies(settings, clock) -> None:
    store = FlakyBookingStore()
    orchestrator = FulfillmentOrchestrator(store, clock=clock)
    await _seed(store, make_record())

    with pytest.raises(PersistenceError):
        await orchestrator.handle(crypto(settings, payment_status="expired"))

    stored = await store.find_by_order_id("ORD-1")
    assert stored.status == "waiting"
    assert stored.failed_at is None

    retried = await orchestrator.handle(crypto(settings, payment_status="expired"))

    assert retried.result is HandleResult.STATUS_UPDATED
    assert [intent.kind for intent in retried.intents] == [PAYMENT_FAILED]
    assert store.get_request(retried.record.request)["payment_status"] == "expired"
