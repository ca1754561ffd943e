"""link reissued payouts to the failed payout they replace

Revision ID: 0002_payout_reissue
Revises: 0001_trm_schema
Create Date: 2026-10-18 12:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0002_payout_reissue"
down_revision = "0001_trm_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        "ALTER TABLE app.payment_transactions "
        "ADD COLUMN IF NOT EXISTS reissue_of uuid NULL REFERENCES app.payment_transactions(id);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_payment_transactions_reissue_of "
        "ON app.payment_transactions (reissue_of) WHERE reissue_of IS NOT NULL;"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS app.ix_payment_transactions_reissue_of;")
    op.execute("ALTER TABLE app.payment_transactions DROP COLUMN IF EXISTS reissue_of;")
