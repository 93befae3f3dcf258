"""Payment settlement use cases.

Initialize and verify act for an explicit caller; the webhook acts for the
gateway once its signature checks out. All three share one reconciler.
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from settlepay.common.auth import CallerIdentity
from settlepay.common.errors import (
    AuthenticationError,
    AuthorizationError,
    GatewayReferenceNotFound,
    NotFoundError,
    UpstreamGatewayError,
    ValidationError,
)
from settlepay.common.logging import log_context, logger
from settlepay.common.metrics import payment_initializations_total, webhook_signature_rejections_total
from settlepay.common.money import to_major_units, to_minor_units
from settlepay.services.settlement.gateway import PaystackClient
from settlepay.services.settlement.ledger import TransactionLedger
from settlepay.services.settlement.models import Order
from settlepay.services.settlement.reconciler import (
    PENDING,
    SUCCESS,
    SettlementEvent,
    SettlementReconciler,
    outcome_for_status,
)
from settlepay.services.settlement.schemas import (
    ChargeData,
    InitializeRequest,
    InitializeResponse,
    TransactionStats,
    VerifyResponse,
    WebhookAck,
    WebhookEvent,
)
from settlepay.services.settlement.webhook import CHARGE_EVENTS, verify_signature


class SettlementService:
    """Owns the initialize -> verify/webhook -> reconcile flow."""

    def __init__(
        self,
        session_factory,
        gateway: PaystackClient,
        webhook_secret: str,
        currency: str = "XOF",
        allow_unsigned_webhooks: bool = False,
        clock: Callable[[], datetime] | None = None,
        service_name: str = "settlement",
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.allow_unsigned_webhooks = allow_unsigned_webhooks
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.service_name = service_name
        self.ledger = TransactionLedger(session_factory)
        self.reconciler = SettlementReconciler(session_factory, self.ledger, self.clock, service_name)

    def _owned_order(self, order_id: str, caller: CallerIdentity) -> Order:
        with self.session_factory() as db:
            order = db.get(Order, order_id)
        if order is None:
            raise NotFoundError("order not found")
        if order.client_id != caller.user_id:
            logger.warning("order_ownership_denied order_id=%s caller=%s", order_id, caller.user_id)
            raise AuthorizationError()
        return order

    def mint_reference(self, order_id: str) -> str:
        """`order_<orderId>_<epoch ms>`, advanced past any reference already used."""

        timestamp = int(self.clock().timestamp() * 1000)
        reference = f"order_{order_id}_{timestamp}"
        while self.ledger.exists(reference):
            timestamp += 1
            reference = f"order_{order_id}_{timestamp}"
        return reference

    def initialize(self, caller: CallerIdentity, req: InitializeRequest) -> InitializeResponse:
        """Start a hosted checkout and record its `pending` ledger row."""

        order = self._owned_order(req.order_id, caller)
        if order.status != "pending":
            raise ValidationError("order is not awaiting payment")
        if req.amount > Decimal(order.total_amount):
            raise ValidationError("amount exceeds order total")

        reference = self.mint_reference(order.id)
        with log_context(reference=reference, order_id=order.id):
            try:
                checkout = self.gateway.initialize(
                    email=req.email,
                    amount_minor=to_minor_units(req.amount),
                    reference=reference,
                    currency=self.currency,
                    callback_url=req.callback_url,
                    metadata={"order_id": order.id},
                )
            except UpstreamGatewayError:
                payment_initializations_total.labels(service=self.service_name, outcome="failed").inc()
                raise

            self.ledger.create_pending(
                order_id=order.id,
                provider_id=order.provider_id,
                amount=req.amount,
                reference=checkout.reference,
                description=f"Payment for order {order.id}",
            )
            payment_initializations_total.labels(service=self.service_name, outcome="ok").inc()
            logger.info("payment_initialized reference=%s amount=%s", checkout.reference, req.amount)
        return InitializeResponse(
            authorization_url=checkout.authorization_url,
            access_code=checkout.access_code,
            reference=checkout.reference,
        )

    def verify(self, caller: CallerIdentity, reference: str) -> VerifyResponse:
        """Ask the gateway about `reference` and settle locally if it is final.

        Ownership of every order the reference resolves to is checked before
        anything is written or disclosed.
        """

        with log_context(reference=reference):
            try:
                charge = self.gateway.verify(reference)
            except GatewayReferenceNotFound as exc:
                if not self.ledger.exists(reference):
                    raise NotFoundError("transaction not found") from exc
                raise
            row = self.ledger.get_by_reference(reference)
            ledger_order_id = row.order_id if row is not None else None
            if charge.order_id and ledger_order_id and charge.order_id != ledger_order_id:
                logger.warning(
                    "verify_order_mismatch metadata_order_id=%s ledger_order_id=%s",
                    charge.order_id,
                    ledger_order_id,
                )
            order_ids = {oid for oid in (charge.order_id, ledger_order_id) if oid}
            if not order_ids:
                raise NotFoundError("transaction not found")
            for order_id in sorted(order_ids):
                self._owned_order(order_id, caller)

            order_id = charge.order_id or ledger_order_id
            outcome = outcome_for_status(charge.status)
            with log_context(order_id=order_id):
                if outcome != PENDING:
                    self.reconciler.reconcile(
                        SettlementEvent.from_charge(charge, outcome, order_id),
                        trigger="verify",
                    )
                logger.info("payment_verified status=%s", charge.status)
        return VerifyResponse(
            success=outcome == SUCCESS,
            status=charge.status or "unknown",
            amount=to_major_units(charge.amount),
            currency=charge.currency,
            reference=charge.reference,
            paid_at=charge.paid_at,
            channel=charge.channel,
        )

    def handle_webhook(self, raw_body: bytes, signature: str | None) -> WebhookAck:
        """Authenticate a gateway push and reconcile the charge it reports."""

        if signature is None:
            if not self.allow_unsigned_webhooks:
                webhook_signature_rejections_total.labels(service=self.service_name, reason="missing").inc()
                raise AuthenticationError("missing webhook signature")
            logger.warning("webhook_unsigned_accepted")
        elif not verify_signature(raw_body, signature, self.webhook_secret):
            webhook_signature_rejections_total.labels(service=self.service_name, reason="mismatch").inc()
            logger.warning("webhook_signature_mismatch")
            raise AuthenticationError("invalid webhook signature")

        try:
            envelope = WebhookEvent.model_validate(json.loads(raw_body))
            outcome = CHARGE_EVENTS.get(envelope.event)
            if outcome is None:
                logger.info("webhook_event_ignored event=%s", envelope.event)
                return WebhookAck()
            charge = ChargeData.model_validate(envelope.data)
        except ValueError as exc:
            raise ValidationError("malformed webhook payload") from exc

        # Metadata is optional on the charge; the ledger row knows the order too.
        order_id = charge.order_id
        if order_id is None:
            row = self.ledger.get_by_reference(charge.reference)
            order_id = row.order_id if row is not None else None
        with log_context(reference=charge.reference, order_id=order_id):
            logger.info("webhook_received event=%s", envelope.event)
            self.reconciler.reconcile(SettlementEvent.from_charge(charge, outcome, order_id), trigger="webhook")
        return WebhookAck()

    def reconcile_pending(self, older_than_minutes: int, limit: int = 100) -> dict:
        """Re-verify stale `pending` ledger rows and settle the final ones."""

        cutoff = self.clock() - timedelta(minutes=older_than_minutes)
        summary = {"checked": 0, "settled": 0, "failed": 0, "unchanged": 0, "errors": 0}
        for row in self.ledger.list_pending(cutoff, limit=limit):
            summary["checked"] += 1
            with log_context(reference=row.reference, order_id=row.order_id):
                try:
                    charge = self.gateway.verify(row.reference)
                except UpstreamGatewayError as exc:
                    logger.warning("sweep_verify_failed error=%s", exc.detail)
                    summary["errors"] += 1
                    continue
                outcome = outcome_for_status(charge.status)
                if outcome == PENDING:
                    summary["unchanged"] += 1
                    continue
                event = SettlementEvent.from_charge(charge, outcome, charge.order_id or row.order_id)
                self.reconciler.reconcile(event, trigger="sweep")
            summary["settled" if outcome == SUCCESS else "failed"] += 1
        logger.info("pending_sweep_done summary=%s", summary)
        return summary

    def transaction_stats(self) -> TransactionStats:
        return TransactionStats(**self.ledger.stats(self.clock().date()))
