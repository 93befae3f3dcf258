"""Initialize, verify and sweep flows against the fake gateway."""

import threading
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from conftest import CLIENT_ID, OTHER_CLIENT_ID, SECRET_KEY, fetch_order, webhook_body
from settlepay.common.auth import CallerIdentity
from settlepay.common.errors import (
    AuthorizationError,
    NotFoundError,
    UpstreamGatewayError,
    ValidationError,
)
from settlepay.services.settlement.models import Transaction
from settlepay.services.settlement.reconciler import SUCCESS, SettlementEvent
from settlepay.services.settlement.schemas import InitializeRequest
from settlepay.services.settlement.webhook import sign_payload

OWNER = CallerIdentity(user_id=CLIENT_ID)
STRANGER = CallerIdentity(user_id=OTHER_CLIENT_ID)


def _request(order_id="O1", amount="5000", callback_url=None) -> InitializeRequest:
    return InitializeRequest(
        order_id=order_id,
        email="payer@example.com",
        amount=Decimal(amount),
        callback_url=callback_url,
    )


def _ledger_rows(session_factory) -> list[Transaction]:
    with session_factory() as db:
        return list(db.execute(select(Transaction)).scalars())


def test_initialize_records_pending_row(session_factory, service, paystack, make_order, clock):
    make_order("O1")
    expected_ms = int(clock.now.timestamp() * 1000)

    resp = service.initialize(OWNER, _request(callback_url="https://app.example.com/paid"))

    assert resp.success is True
    assert resp.reference == f"order_O1_{expected_ms}"
    assert resp.authorization_url == f"https://checkout.paystack.com/{resp.reference}"
    sent = paystack.initialize_requests[0]
    assert sent["amount"] == 500000
    assert sent["currency"] == "XOF"
    assert sent["metadata"] == {"order_id": "O1"}
    row = service.ledger.get_by_reference(resp.reference)
    assert row.status == "pending"
    assert row.amount == Decimal("5000")
    assert row.provider_id == "provider-1"
    assert row.description == "Payment for order O1"
    assert fetch_order(session_factory, "O1").status == "pending"


def test_initialize_skips_references_already_used(service, make_order, clock):
    make_order("O1")
    taken_ms = int(clock.now.timestamp() * 1000)
    service.ledger.create_pending("O1", "provider-1", Decimal("10"), f"order_O1_{taken_ms}", "Payment for order O1")

    resp = service.initialize(OWNER, _request())

    assert resp.reference == f"order_O1_{taken_ms + 1}"


def test_each_initialize_gets_a_fresh_reference(session_factory, service, make_order):
    make_order("O1")

    first = service.initialize(OWNER, _request())
    second = service.initialize(OWNER, _request())

    assert first.reference != second.reference
    assert len(_ledger_rows(session_factory)) == 2


def test_initialize_gateway_failure_leaves_no_row(session_factory, service, paystack, make_order):
    make_order("O1")
    paystack.fail_initialize = True

    with pytest.raises(UpstreamGatewayError):
        service.initialize(OWNER, _request())

    assert _ledger_rows(session_factory) == []


def test_initialize_for_someone_elses_order_is_denied(session_factory, service, paystack, make_order):
    make_order("O1")

    with pytest.raises(AuthorizationError):
        service.initialize(STRANGER, _request())

    assert paystack.initialize_requests == []
    assert _ledger_rows(session_factory) == []


def test_initialize_unknown_order(service):
    with pytest.raises(NotFoundError):
        service.initialize(OWNER, _request(order_id="missing"))


def test_initialize_requires_pending_order(service, make_order):
    make_order("O1", status="confirmed")

    with pytest.raises(ValidationError):
        service.initialize(OWNER, _request())


def test_initialize_amount_cannot_exceed_total(service, paystack, make_order):
    make_order("O1", total_amount="4000")

    with pytest.raises(ValidationError):
        service.initialize(OWNER, _request(amount="4000.01"))

    assert paystack.initialize_requests == []


def test_verify_success_confirms_order(session_factory, service, paystack, make_order):
    make_order("O1")
    reference = service.initialize(OWNER, _request()).reference
    paystack.set_charge(reference, "success", 500000, order_id="O1", channel="card")

    resp = service.verify(OWNER, reference)

    assert resp.success is True
    assert resp.status == "success"
    assert resp.amount == Decimal("5000")
    assert resp.channel == "card"
    assert resp.currency == "XOF"
    order = fetch_order(session_factory, "O1")
    assert order.status == "confirmed"
    assert order.deposit_paid == Decimal("5000")
    row = service.ledger.get_by_reference(reference)
    assert row.status == "success"
    assert row.payment_method == "card"


def test_verify_still_in_progress_changes_nothing(session_factory, service, make_order):
    make_order("O1")
    reference = service.initialize(OWNER, _request()).reference

    resp = service.verify(OWNER, reference)

    assert resp.success is False
    assert resp.status == "abandoned"
    assert fetch_order(session_factory, "O1").status == "pending"
    assert service.ledger.get_by_reference(reference).status == "pending"


def test_verify_failed_charge(session_factory, service, paystack, make_order):
    make_order("O1")
    reference = service.initialize(OWNER, _request()).reference
    paystack.set_charge(reference, "failed", 500000, order_id="O1")

    resp = service.verify(OWNER, reference)

    assert resp.success is False
    assert resp.status == "failed"
    assert service.ledger.get_by_reference(reference).status == "failed"
    assert fetch_order(session_factory, "O1").status == "pending"


def test_verify_by_non_owner_is_denied_without_mutation(session_factory, service, paystack, make_order):
    make_order("O1")
    reference = service.initialize(OWNER, _request()).reference
    paystack.set_charge(reference, "success", 500000, order_id="O1")

    with pytest.raises(AuthorizationError):
        service.verify(STRANGER, reference)

    assert fetch_order(session_factory, "O1").status == "pending"
    assert service.ledger.get_by_reference(reference).status == "pending"


def test_verify_falls_back_to_ledger_order(session_factory, service, paystack, make_order):
    make_order("O1")
    reference = service.initialize(OWNER, _request()).reference
    paystack.set_charge(reference, "success", 500000, order_id=None)

    service.verify(OWNER, reference)

    assert fetch_order(session_factory, "O1").status == "confirmed"


def test_verify_checks_ownership_of_ledger_order_too(session_factory, service, paystack, make_order):
    """Metadata pointing at the caller's order cannot unlock someone else's ledger row."""

    make_order("O1")
    make_order("O2", client_id=OTHER_CLIENT_ID)
    service.ledger.create_pending("O2", "provider-1", Decimal("5000"), "order_O2_1", "Payment for order O2")
    paystack.set_charge("order_O2_1", "success", 500000, order_id="O1")

    with pytest.raises(AuthorizationError):
        service.verify(OWNER, "order_O2_1")

    assert fetch_order(session_factory, "O1").status == "pending"
    assert service.ledger.get_by_reference("order_O2_1").status == "pending"


def test_verify_unresolvable_reference_is_not_found(service, paystack):
    paystack.set_charge("stray", "success", 100)

    with pytest.raises(NotFoundError):
        service.verify(OWNER, "stray")


def test_verify_reference_unknown_everywhere_is_not_found(service):
    with pytest.raises(NotFoundError):
        service.verify(OWNER, "order_O1_0")


def test_verify_ledger_reference_missing_at_gateway_is_upstream_error(service, make_order):
    make_order("O1")
    service.ledger.create_pending("O1", "provider-1", Decimal("5000"), "order_O1_0", "Payment for order O1")

    with pytest.raises(UpstreamGatewayError) as excinfo:
        service.verify(OWNER, "order_O1_0")

    assert excinfo.value.status_code == 502
    assert service.ledger.get_by_reference("order_O1_0").status == "pending"


@pytest.mark.parametrize("first", ["webhook", "verify"])
def test_webhook_and_verify_converge_in_either_order(session_factory, service, paystack, make_order, first):
    make_order("O1")
    reference = service.initialize(OWNER, _request()).reference
    paystack.set_charge(reference, "success", 500000, order_id="O1")
    body = webhook_body("charge.success", reference, 500000, order_id="O1")

    def deliver():
        service.handle_webhook(body, sign_payload(body, SECRET_KEY))

    def confirm():
        service.verify(OWNER, reference)

    steps = [deliver, confirm] if first == "webhook" else [confirm, deliver]
    steps[0]()
    settled = service.ledger.get_by_reference(reference)
    steps[1]()

    again = service.ledger.get_by_reference(reference)
    assert (again.status, again.payment_method, again.processed_at) == (
        settled.status,
        settled.payment_method,
        settled.processed_at,
    )
    order = fetch_order(session_factory, "O1")
    assert order.status == "confirmed"
    assert order.deposit_paid == Decimal("5000")


def test_failed_webhook_then_successful_verify_settles(session_factory, service, paystack, make_order):
    make_order("O1")
    reference = service.initialize(OWNER, _request()).reference
    body = webhook_body("charge.failed", reference, 500000, order_id="O1")
    service.handle_webhook(body, sign_payload(body, SECRET_KEY))
    paystack.set_charge(reference, "success", 500000, order_id="O1")

    service.verify(OWNER, reference)

    assert service.ledger.get_by_reference(reference).status == "success"
    assert fetch_order(session_factory, "O1").status == "confirmed"


def test_concurrent_settlements_write_once(session_factory, service, make_order):
    make_order("O1")
    service.ledger.create_pending("O1", "provider-1", Decimal("5000"), "order_O1_1", "Payment for order O1")
    event = SettlementEvent(
        reference="order_O1_1",
        outcome=SUCCESS,
        order_id="O1",
        amount=Decimal("5000.00"),
        channel="card",
    )
    barrier = threading.Barrier(4)
    results = []
    errors = []

    def settle(trigger):
        barrier.wait()
        try:
            results.append(service.reconciler.reconcile(event, trigger=trigger))
        except Exception as exc:  # surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=settle, args=(t,)) for t in ("webhook", "verify", "webhook", "sweep")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sum(r.order_updated for r in results) == 1
    assert sum(r.ledger_updated for r in results) == 1
    assert fetch_order(session_factory, "O1").status == "confirmed"
    assert service.ledger.get_by_reference("order_O1_1").status == "success"


def test_reconcile_pending_sweeps_stale_rows(session_factory, service, paystack, make_order):
    for order_id in ("O1", "O2", "O3", "O4", "O5"):
        make_order(order_id)
        service.ledger.create_pending(
            order_id, "provider-1", Decimal("5000"), f"order_{order_id}_1", f"Payment for order {order_id}"
        )
    with session_factory() as db:
        db.execute(update(Transaction).values(created_at=datetime(2026, 10, 19, 11, 0)))
        db.execute(
            update(Transaction)
            .where(Transaction.reference == "order_O5_1")
            .values(created_at=datetime(2026, 10, 19, 11, 55))
        )
        db.commit()
    paystack.set_charge("order_O1_1", "success", 500000, order_id="O1")
    paystack.set_charge("order_O2_1", "failed", 500000, order_id="O2")
    paystack.set_charge("order_O3_1", "abandoned", 500000, order_id="O3")
    # order_O4_1 is unknown to the gateway

    summary = service.reconcile_pending(older_than_minutes=30)

    assert summary == {"checked": 4, "settled": 1, "failed": 1, "unchanged": 1, "errors": 1}
    assert fetch_order(session_factory, "O1").status == "confirmed"
    assert service.ledger.get_by_reference("order_O2_1").status == "failed"
    assert service.ledger.get_by_reference("order_O3_1").status == "pending"
    assert service.ledger.get_by_reference("order_O5_1").status == "pending"


def test_transaction_stats(service, paystack, make_order):
    make_order("O1")
    reference = service.initialize(OWNER, _request()).reference
    paystack.set_charge(reference, "success", 500000, order_id="O1", channel="mobile_money")
    service.verify(OWNER, reference)

    stats = service.transaction_stats()

    assert stats.total_transactions == 1
    assert stats.total_revenue == Decimal("5000")
    assert stats.success_rate == pytest.approx(100.0)
    assert stats.total_commission == Decimal("250")
    assert stats.payment_methods == {"mobile_money": 1}
