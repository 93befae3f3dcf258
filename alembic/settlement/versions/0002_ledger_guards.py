"""ledger guards: no deletes, fixed references, sweep index

Revision ID: 0002_ledger_guards
Revises: 0001_settlement
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_ledger_guards"
down_revision = "0001_settlement"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION guard_transaction_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION 'transactions rows are never deleted';
            END IF;
            IF NEW.reference <> OLD.reference THEN
                RAISE EXCEPTION 'transactions.reference is immutable';
            END IF;
            RETURN NEW;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_transactions_guard
        BEFORE UPDATE OR DELETE ON transactions
        FOR EACH ROW
        EXECUTE FUNCTION guard_transaction_mutation();
        """
    )
    op.create_index(
        "ix_transactions_status_created_at",
        "transactions",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_transactions_status_created_at", table_name="transactions")
    op.execute("DROP TRIGGER IF EXISTS trg_transactions_guard ON transactions;")
    op.execute("DROP FUNCTION IF EXISTS guard_transaction_mutation();")
