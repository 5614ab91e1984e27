from __future__ import annotations

import asyncio
import json
import pathlib
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from paysync.config import Settings
from paysync.container import build_container
from paysync.domain.enums import Processor, RequestType
from paysync.domain.models import PaymentRecord, SplitResult
from paysync.domain.requests import RequestRef
from paysync.integrations.notifications import Notifier
from paysync.integrations.payouts import PayoutClient
from paysync.main import create_app
from paysync.repositories.memory_store import InMemoryPaymentStore
from paysync.utils.security import compute_signature

IPN_SECRET = "ipn-secret-for-tests"
PAYSTACK_SECRET = "sk_test_paystack_secret"
API_TOKEN = "testtoken"


class RecordingPayouts(PayoutClient):
    def __init__(self, result: SplitResult | None = None, error: Exception | None = None) -> None:
        self.calls: list[str] = []
        self.result = result or SplitResult(success=True, split_id="SPLIT-1")
        self.error = error

    async def initiate_split(self, payment_id: str) -> SplitResult:
        self.calls.append(payment_id)
        if self.error is not None:
            raise self.error
        return self.result


class RecordingNotifier(Notifier):
    def __init__(self, error: Exception | None = None) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.error = error

    async def notify(self, kind: str, payload: dict[str, Any]) -> None:
        self.sent.append((kind, payload))
        if self.error is not None:
            raise self.error

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]


def make_record(
    order_id: str = "ORD-1",
    processor: Processor = Processor.CRYPTO,
    request: RequestRef | None = None,
    **fields: Any,
) -> PaymentRecord:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    defaults: dict[str, Any] = {
        "status": "waiting" if processor is Processor.CRYPTO else "pending",
        "amount_expected": Decimal("100"),
        "currency": "USD",
        "created_at": now,
        "updated_at": now,
    }
    defaults.update(fields)
    return PaymentRecord(
        id=f"rec-{order_id}",
        order_id=order_id,
        processor=processor,
        request=request or RequestRef(type=RequestType.LOGISTICS, id="REQ-1"),
        **defaults,
    )


def crypto_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "payment_id": "PAY-1",
        "order_id": "ORD-1",
        "payment_status": "finished",
        "pay_amount": 100,
        "actually_paid": 100,
        "pay_currency": "usdttrc20",
        "price_amount": 100,
        "price_currency": "usd",
    }
    payload.update(overrides)
    return payload


def card_payload(event: str = "charge.success", **data_overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": 4099260516,
        "reference": "ORD-CARD-1",
        "status": "success",
        "amount": 250000,
        "currency": "NGN",
        "channel": "card",
        "gateway_response": "Successful",
        "paid_at": "2026-01-01T10:00:00.000Z",
    }
    data.update(data_overrides)
    return {"event": event, "data": data}


def sign(body: bytes, secret: str = IPN_SECRET) -> str:
    return compute_signature(body, secret)


def encode(payload: Any) -> bytes:
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        api_bearer_token=API_TOKEN,
        nowpayments_ipn_secret=IPN_SECRET,
        paystack_secret_key=PAYSTACK_SECRET,
        db_host="",
        payout_api_url="",
        notify_webhook_url="",
        side_effect_timeout_seconds=2.0,
    )


@pytest.fixture
def store() -> InMemoryPaymentStore:
    return InMemoryPaymentStore()


@pytest.fixture
def payouts() -> RecordingPayouts:
    return RecordingPayouts()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def client(settings, store, payouts, notifier) -> TestClient:
    container = build_container(settings, store=store, payouts=payouts, notifier=notifier)
    return TestClient(create_app(container=container))


@pytest.fixture
def seed(store):
    """Synchronously insert a record and its booking row."""

    def _seed(record: PaymentRecord, **booking_fields: Any) -> PaymentRecord:
        fields = booking_fields or {"status": "pending", "payment_status": "pending"}
        store.seed_request(record.request, **fields)
        return asyncio.run(store.create(record))

    return _seed
