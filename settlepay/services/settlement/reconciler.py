"""Settlement reconciliation.

Webhook deliveries, client verify calls and the pending sweep all funnel into
`SettlementReconciler.reconcile`. The decision itself is the pure pair
`merge_order` / `merge_ledger` (current state x event -> new state); the
reconciler only loads state, merges, and writes back with set-to-value updates
guarded on the status it read. Applying the same event twice leaves the second
merge equal to its input, so nothing is written.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from settlepay.common.logging import logger
from settlepay.common.metrics import (
    duplicate_settlements_skipped_total,
    ledger_write_failures_total,
    settlement_amount_mismatch_total,
    settlement_outcomes_total,
)
from settlepay.common.money import to_major_units
from settlepay.common.state_machine import ORDER_TRANSITIONS, TRANSACTION_TRANSITIONS, can_transition
from settlepay.services.settlement.ledger import TransactionLedger
from settlepay.services.settlement.models import Order
from settlepay.services.settlement.schemas import ChargeData

SUCCESS = "success"
FAILED = "failed"
PENDING = "pending"


def outcome_for_status(gateway_status: str | None) -> str:
    """Collapse a gateway charge status to success/failed/pending."""

    status = (gateway_status or "").lower()
    if status == SUCCESS:
        return SUCCESS
    if status == FAILED:
        return FAILED
    # abandoned, ongoing, processing, queued, reversed: nothing to settle yet.
    return PENDING


def parse_paid_at(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("unparseable paid_at value=%s", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class SettlementEvent:
    """Gateway-reported outcome for one reference, in major units."""

    reference: str
    outcome: str
    order_id: str | None
    amount: Decimal
    channel: str | None = None
    paid_at: datetime | None = None

    @classmethod
    def from_charge(cls, charge: ChargeData, outcome: str, order_id: str | None = None) -> "SettlementEvent":
        return cls(
            reference=charge.reference,
            outcome=outcome,
            order_id=order_id if order_id is not None else charge.order_id,
            amount=to_major_units(charge.amount),
            channel=charge.channel,
            paid_at=parse_paid_at(charge.paid_at),
        )


@dataclass(frozen=True)
class OrderState:
    status: str
    deposit_paid: Decimal | None = None


@dataclass(frozen=True)
class LedgerState:
    status: str
    payment_method: str | None = None
    processed_at: datetime | None = None


@dataclass(frozen=True)
class ReconcileResult:
    order_updated: bool
    ledger_updated: bool


def merge_order(current: OrderState, event: SettlementEvent) -> OrderState:
    """Order state after applying `event`.

    Only a successful charge touches the order. `pending` moves to
    `confirmed`; an already confirmed order keeps its status and has its
    deposit set to the charged amount. Orders past confirmation or cancelled
    are never regressed.
    """

    if event.outcome != SUCCESS:
        return current
    if current.status == "confirmed" or can_transition(current.status, "confirmed", ORDER_TRANSITIONS):
        return OrderState(status="confirmed", deposit_paid=event.amount)
    return current


def merge_ledger(current: LedgerState, event: SettlementEvent, now: datetime) -> LedgerState:
    """Ledger row state after applying `event`; terminal repeats are no-ops."""

    if event.outcome == SUCCESS and can_transition(current.status, SUCCESS, TRANSACTION_TRANSITIONS):
        return LedgerState(status=SUCCESS, payment_method=event.channel, processed_at=event.paid_at or now)
    if event.outcome == FAILED and can_transition(current.status, FAILED, TRANSACTION_TRANSITIONS):
        return replace(current, status=FAILED, processed_at=now)
    return current


def _same_amount(left: Decimal | None, right: Decimal | None) -> bool:
    if left is None or right is None:
        return left is right
    return Decimal(left) == Decimal(right)


class SettlementReconciler:
    """Applies settlement events to orders first, then to the ledger."""

    def __init__(
        self,
        session_factory,
        ledger: TransactionLedger,
        clock: Callable[[], datetime] | None = None,
        service_name: str = "settlement",
    ) -> None:
        self.session_factory = session_factory
        self.ledger = ledger
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.service_name = service_name

    def _settle_order(self, event: SettlementEvent, now: datetime) -> bool:
        with self.session_factory() as db:
            order = db.get(Order, event.order_id)
            if order is None:
                logger.warning("settlement_order_missing order_id=%s reference=%s", event.order_id, event.reference)
                return False
            current = OrderState(status=order.status, deposit_paid=order.deposit_paid)
            merged = merge_order(current, event)
            if merged.status == current.status and _same_amount(merged.deposit_paid, current.deposit_paid):
                if current.status != "confirmed":
                    logger.warning(
                        "settlement_order_not_confirmable order_id=%s status=%s reference=%s",
                        order.id,
                        current.status,
                        event.reference,
                    )
                return False
            result = db.execute(
                update(Order)
                .where(Order.id == order.id, Order.status == current.status)
                .values(status=merged.status, deposit_paid=merged.deposit_paid, updated_at=now)
            )
            db.commit()
            if result.rowcount != 1:
                logger.info("settlement_order_changed_concurrently order_id=%s", order.id)
                return False
            logger.info(
                "order_confirmed order_id=%s from=%s deposit_paid=%s",
                order.id,
                current.status,
                merged.deposit_paid,
            )
            return True

    def _settle_ledger(self, event: SettlementEvent, now: datetime) -> bool:
        row = self.ledger.get_by_reference(event.reference)
        if row is None:
            logger.warning("settlement_ledger_row_missing reference=%s", event.reference)
            return False
        current = LedgerState(status=row.status, payment_method=row.payment_method, processed_at=row.processed_at)
        merged = merge_ledger(current, event, now)
        if merged == current:
            return False
        if event.outcome == SUCCESS and not _same_amount(row.amount, event.amount):
            logger.warning(
                "settlement_amount_mismatch reference=%s ledger_amount=%s charged_amount=%s",
                event.reference,
                row.amount,
                event.amount,
            )
            settlement_amount_mismatch_total.labels(service=self.service_name).inc()
        return self.ledger.update_by_reference(
            event.reference,
            {
                "status": merged.status,
                "payment_method": merged.payment_method,
                "processed_at": merged.processed_at,
            },
            expected_status=current.status,
        )

    def reconcile(self, event: SettlementEvent, trigger: str) -> ReconcileResult:
        """Converge order and ledger state on `event`.

        The order write is the priority: its failures propagate so the trigger
        can be retried. A ledger failure is logged and counted without failing
        the caller only when this call confirmed the order; otherwise it
        propagates too.
        """

        if event.outcome not in (SUCCESS, FAILED):
            return ReconcileResult(order_updated=False, ledger_updated=False)

        now = self.clock()
        order_settled = event.outcome == SUCCESS and event.order_id is not None
        order_updated = self._settle_order(event, now) if order_settled else False
        try:
            ledger_updated = self._settle_ledger(event, now)
        except SQLAlchemyError as exc:
            if not order_updated:
                raise
            logger.error("ledger_update_failed reference=%s error=%s", event.reference, exc)
            ledger_write_failures_total.labels(service=self.service_name).inc()
            ledger_updated = False

        if order_updated or ledger_updated:
            settlement_outcomes_total.labels(
                service=self.service_name,
                outcome=event.outcome,
                trigger=trigger,
            ).inc()
            logger.info(
                "settlement_applied reference=%s outcome=%s trigger=%s order_updated=%s ledger_updated=%s",
                event.reference,
                event.outcome,
                trigger,
                order_updated,
                ledger_updated,
            )
        else:
            logger.info(
                "duplicate settlement skipped reference=%s outcome=%s trigger=%s",
                event.reference,
                event.outcome,
                trigger,
            )
            duplicate_settlements_skipped_total.labels(service=self.service_name, trigger=trigger).inc()
        return ReconcileResult(order_updated=order_updated, ledger_updated=ledger_updated)
