"""Transaction ledger data access.

No business rules live here; the reconciler decides what to write. Updates are
always matched by the unique `reference`, so repeating one is harmless.
"""

from collections import Counter
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, update

from settlepay.services.settlement.models import Transaction

COMMISSION_RATE = Decimal("0.05")
_CENT = Decimal("0.01")


class TransactionLedger:
    """Create and update ledger rows, and compute reporting aggregates."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create_pending(
        self,
        order_id: str,
        provider_id: str | None,
        amount: Decimal,
        reference: str,
        description: str,
    ) -> Transaction:
        """Insert the `pending` row for a freshly initialized payment."""

        with self.session_factory() as db:
            row = Transaction(
                reference=reference,
                order_id=order_id,
                provider_id=provider_id,
                type="payment",
                amount=amount,
                status="pending",
                description=description,
            )
            db.add(row)
            db.commit()
            return row

    def get_by_reference(self, reference: str) -> Transaction | None:
        with self.session_factory() as db:
            return db.execute(
                select(Transaction).where(Transaction.reference == reference)
            ).scalar_one_or_none()

    def exists(self, reference: str) -> bool:
        with self.session_factory() as db:
            found = db.execute(
                select(Transaction.id).where(Transaction.reference == reference)
            ).scalar_one_or_none()
            return found is not None

    def update_by_reference(self, reference: str, fields: dict, expected_status: str | None = None) -> bool:
        """Apply `fields` to the row for `reference`.

        With `expected_status` the write only lands while the row still holds
        that status, so a concurrent settlement that got there first wins and
        this call reports `False` instead of overwriting it.
        """

        stmt = update(Transaction).where(Transaction.reference == reference)
        if expected_status is not None:
            stmt = stmt.where(Transaction.status == expected_status)
        with self.session_factory() as db:
            result = db.execute(stmt.values(**fields))
            db.commit()
            return result.rowcount == 1

    def list_pending(self, created_before: datetime, limit: int = 100) -> list[Transaction]:
        """Oldest-first pending rows created before `created_before`."""

        with self.session_factory() as db:
            return list(
                db.execute(
                    select(Transaction)
                    .where(Transaction.status == "pending", Transaction.created_at < created_before)
                    .order_by(Transaction.created_at)
                    .limit(limit)
                ).scalars()
            )

    def stats(self, today: date | None = None) -> dict:
        """Aggregate the ledger the way the transaction dashboards present it."""

        today = today or datetime.now(timezone.utc).date()
        with self.session_factory() as db:
            rows = db.execute(
                select(
                    Transaction.amount,
                    Transaction.status,
                    Transaction.payment_method,
                    Transaction.created_at,
                )
            ).all()

        successful = [row for row in rows if row.status == "success"]
        todays = [row for row in rows if row.created_at is not None and row.created_at.date() == today]
        total_revenue = sum((Decimal(row.amount) for row in successful), Decimal("0"))
        today_revenue = sum(
            (Decimal(row.amount) for row in todays if row.status == "success"),
            Decimal("0"),
        )
        methods = Counter(row.payment_method for row in successful if row.payment_method)
        return {
            "total_revenue": total_revenue,
            "total_transactions": len(rows),
            "success_rate": (len(successful) / len(rows) * 100) if rows else 0.0,
            "average_amount": (total_revenue / len(successful)).quantize(_CENT) if successful else Decimal("0"),
            "today_revenue": today_revenue,
            "today_count": len(todays),
            "pending_count": sum(1 for row in rows if row.status == "pending"),
            "failed_count": sum(1 for row in rows if row.status == "failed"),
            "total_commission": (total_revenue * COMMISSION_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP),
            "today_commission": (today_revenue * COMMISSION_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP),
            "payment_methods": dict(methods),
        }
