"""Shared fixtures: test settings, SQLite stores, and a fake Paystack API."""

import json
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Settings are read once at import time, so the environment is fixed first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["API_KEY"] = "test-api-key"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"
os.environ["PAYSTACK_WEBHOOK_ALLOW_UNSIGNED"] = "false"
os.environ["AUTH_JWT_SECRET"] = "jwt-test-secret"
os.environ["AUTH_JWT_AUDIENCE"] = "authenticated"
os.environ["OTEL_ENABLED"] = "false"

import httpx
import pytest
from jose import jwt

from settlepay.common.db import Base, make_session_factory
from settlepay.services.settlement.gateway import PaystackClient
from settlepay.services.settlement.models import Order
from settlepay.services.settlement.service import SettlementService

SECRET_KEY = "sk_test_secret"
CLIENT_ID = "client-1"
OTHER_CLIENT_ID = "client-2"
PROVIDER_ID = "provider-1"


class FixedClock:
    """Deterministic clock; each call returns `now` then advances by `step`."""

    def __init__(self, now: datetime, step: timedelta = timedelta(milliseconds=1)) -> None:
        self.now = now
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class FakePaystack:
    """In-memory stand-in for the Paystack transaction API."""

    def __init__(self) -> None:
        self.charges: dict[str, dict] = {}
        self.initialize_requests: list[dict] = []
        self.initialize_headers: list[httpx.Headers] = []
        self.fail_initialize = False
        self.unreachable = False
        self.transport = httpx.MockTransport(self.handler)

    def set_charge(
        self,
        reference: str,
        status: str,
        amount_minor: int,
        order_id: str | None = None,
        channel: str | None = "card",
        paid_at: str | None = "2026-10-19T12:05:00.000Z",
        currency: str = "XOF",
    ) -> None:
        self.charges[reference] = {
            "reference": reference,
            "status": status,
            "amount": amount_minor,
            "currency": currency,
            "channel": channel,
            "paid_at": paid_at if status == "success" else None,
            "metadata": {"order_id": order_id} if order_id else "",
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if request.method == "POST" and path == "/transaction/initialize":
            body = json.loads(request.content)
            self.initialize_requests.append(body)
            self.initialize_headers.append(request.headers)
            if self.fail_initialize:
                return httpx.Response(400, json={"status": False, "message": "Invalid key"})
            reference = body["reference"]
            self.set_charge(reference, "abandoned", body["amount"], order_id=body["metadata"].get("order_id"))
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{reference}",
                        "access_code": f"access-{reference}",
                        "reference": reference,
                    },
                },
            )
        if request.method == "GET" and path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            charge = self.charges.get(reference)
            if charge is None:
                return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})
            return httpx.Response(200, json={"status": True, "message": "Verification successful", "data": charge})
        return httpx.Response(404, json={"status": False, "message": "unknown route"})


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits."""

    factory = make_session_factory(f"sqlite:///{tmp_path / 'settlement.db'}")
    engine = factory.kw["bind"]
    Base.metadata.create_all(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def paystack():
    return FakePaystack()


@pytest.fixture
def gateway(paystack):
    return PaystackClient(SECRET_KEY, transport=paystack.transport)


@pytest.fixture
def service(session_factory, gateway, clock):
    return SettlementService(session_factory, gateway, webhook_secret=SECRET_KEY, clock=clock)


@pytest.fixture
def make_order(session_factory):
    """Insert an order and return its id."""

    def _make(
        order_id: str = "O1",
        client_id: str = CLIENT_ID,
        status: str = "pending",
        total_amount: str = "10000",
    ) -> str:
        with session_factory() as db:
            db.add(
                Order(
                    id=order_id,
                    client_id=client_id,
                    provider_id=PROVIDER_ID,
                    status=status,
                    total_amount=Decimal(total_amount),
                )
            )
            db.commit()
        return order_id

    return _make


def fetch_order(session_factory, order_id: str) -> Order:
    with session_factory() as db:
        return db.get(Order, order_id)


def bearer_token(user_id: str, secret: str = "jwt-test-secret", audience: str = "authenticated") -> str:
    claims = {
        "sub": user_id,
        "aud": audience,
        "exp": int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def webhook_body(event: str, reference: str, amount_minor: int, order_id: str | None = None) -> bytes:
    data = {
        "reference": reference,
        "amount": amount_minor,
        "currency": "XOF",
        "channel": "mobile_money",
        "paid_at": "2026-10-19T12:04:00.000Z",
        "metadata": {"order_id": order_id} if order_id else {},
    }
    return json.dumps({"event": event, "data": data}).encode("utf-8")
