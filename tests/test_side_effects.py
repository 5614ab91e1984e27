from __future__ import annotations

import asyncio
import logging

import httpx
import pytest

from conftest import RecordingNotifier, RecordingPayouts, make_record
from paysync.domain.models import InitiateSplit, Notify, SplitResult
from paysync.integrations.notifications import ADMIN_SPLIT_FAILED, PAYMENT_FULFILLED
from paysync.services.side_effects import SideEffectDispatcher


class SlowPayouts(RecordingPayouts):
    async def initiate_split(self, payment_id: str) -> SplitResult:
        self.calls.append(payment_id)
        await asyncio.sleep(5)
        return SplitResult(success=True, split_id="late")


@pytest.mark.asyncio
async def test_split_success_is_recorded(store) -> None:
    record = await store.create(make_record(fulfilled=True))
    dispatcher = SideEffectDispatcher(store, RecordingPayouts(), RecordingNotifier())

    await dispatcher.run([InitiateSplit(record_id=record.id, payment_id="PAY-1")])

    stored = await store.find_by_order_id("ORD-1")
    assert stored.split_status == "succeeded"
    assert stored.split_id == "SPLIT-1"
    assert stored.split_error is None


@pytest.mark.asyncio
async def test_split_rejection_is_recorded_and_alerts_admin(store) -> None:
    record = await store.create(make_record(fulfilled=True))
    payouts = RecordingPayouts(result=SplitResult(success=False, error="vendor account missing"))
    notifier = RecordingNotifier()
    dispatcher = SideEffectDispatcher(store, payouts, notifier)

    await dispatcher.run([InitiateSplit(record_id=record.id, payment_id="PAY-1")])

    stored = await store.find_by_order_id("ORD-1")
    assert stored.fulfilled
    assert stored.split_status == "failed"
    assert stored.split_error == "vendor account missing"
    assert notifier.kinds == [ADMIN_SPLIT_FAILED]
    assert notifier.sent[0][1]["payment_id"] == "PAY-1"


@pytest.mark.asyncio
async def test_split_exception_does_not_escape(store) -> None:
    record = await store.create(make_record(fulfilled=True))
    payouts = RecordingPayouts(error=httpx.ConnectError("connection refused"))
    notifier = RecordingNotifier()
    dispatcher = SideEffectDispatcher(store, payouts, notifier)

    await dispatcher.run(
        [
            InitiateSplit(record_id=record.id, payment_id="PAY-1"),
            Notify(kind=PAYMENT_FULFILLED, payload={"order_id": "ORD-1"}),
        ]
    )

    stored = await store.find_by_order_id("ORD-1")
    assert stored.split_status == "failed"
    assert "connection refused" in stored.split_error
    assert notifier.kinds == [ADMIN_SPLIT_FAILED, PAYMENT_FULFILLED]


@pytest.mark.asyncio
async def test_split_timeout_is_bounded(store) -> None:
    record = await store.create(make_record(fulfilled=True))
    dispatcher = SideEffectDispatcher(store, SlowPayouts(), RecordingNotifier(), timeout_seconds=0.05)

    await dispatcher.run([InitiateSplit(record_id=record.id, payment_id="PAY-1")])

    stored = await store.find_by_order_id("ORD-1")
    assert stored.split_status == "failed"
    assert stored.split_error == "payout call timed out"


@pytest.mark.asyncio
async def test_notifier_failure_is_swallowed(store) -> None:
    record = await store.create(make_record(fulfilled=True))
    notifier = RecordingNotifier(error=RuntimeError("smtp down"))
    payouts = RecordingPayouts()
    dispatcher = SideEffectDispatcher(store, payouts, notifier)

    await dispatcher.run(
        [
            Notify(kind=PAYMENT_FULFILLED, payload={"order_id": "ORD-1"}),
            InitiateSplit(record_id=record.id, payment_id="PAY-1"),
        ]
    )

    assert notifier.kinds == [PAYMENT_FULFILLED]
    assert payouts.calls == ["PAY-1"]


@pytest.mark.asyncio
async def test_unknown_record_for_split_is_logged_only(store) -> None:
    payouts = RecordingPayouts()
    dispatcher = SideEffectDispatcher(store, payouts, RecordingNotifier())

    await dispatcher.run([InitiateSplit(record_id="missing", payment_id="PAY-9")])

    assert payouts.calls == ["PAY-9"]


@pytest.mark.asyncio
async def test_notifier_failure_is_logged_as_downstream_error(store, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="paysync.services.side_effects")
    dispatcher = SideEffectDispatcher(store, RecordingPayouts(), RecordingNotifier(error=RuntimeError("smtp down")))

    await dispatcher.run([Notify(kind=PAYMENT_FULFILLED, payload={"order_id": "ORD-1"})])

    [entry] = [record for record in caplog.records if record.getMessage() == "side effect failed"]
    assert entry.levelno == logging.WARNING
    assert "notification payment_fulfilled failed" in entry.error
    assert "smtp down" in entry.error
