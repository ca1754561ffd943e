"""referral marketplace settlement schema

Revision ID: 0001_trm_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_trm_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute("CREATE SCHEMA IF NOT EXISTS users;")
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS users.users (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          role text NOT NULL CHECK (role IN ('referrer', 'company', 'admin')),
          email text NOT NULL UNIQUE,
          company_id uuid NULL,
          invite_code text NULL UNIQUE,
          invited_by uuid NULL REFERENCES users.users(id),
          payout_provider text NULL,
          payout_phone text NULL,
          available_balance bigint NOT NULL DEFAULT 0,
          pending_balance bigint NOT NULL DEFAULT 0,
          disbursed_balance bigint NOT NULL DEFAULT 0,
          total_earnings bigint NOT NULL DEFAULT 0,
          network_earnings bigint NOT NULL DEFAULT 0,
          direct_referrals integer NOT NULL DEFAULT 0,
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.jobs (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          company_id uuid NOT NULL,
          title text NOT NULL,
          referral_bonus_amount bigint NOT NULL DEFAULT 0 CHECK (referral_bonus_amount >= 0),
          referral_bonus_currency text NOT NULL DEFAULT 'MMK',
          created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_jobs_company ON app.jobs (company_id);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.referrals (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          referrer_id uuid NOT NULL REFERENCES users.users(id),
          job_id uuid NOT NULL REFERENCES app.jobs(id),
          person_name text NOT NULL,
          person_email text NOT NULL,
          person_phone text NULL,
          person_experience text NULL,
          notes text NULL,
          status text NOT NULL CHECK (status IN (
            'submitted', 'under_review', 'interview_scheduled', 'interview_completed',
            'offer_extended', 'hired', 'rejected', 'withdrawn'
          )),
          earnings_posted boolean NOT NULL DEFAULT FALSE,
          earnings_posted_at timestamptz NULL,
          rejection_reason text NULL,
          withdrawn_at timestamptz NULL,
          withdrawn_by uuid NULL,
          paid_at timestamptz NULL,
          paid_amount bigint NULL,
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now(),
          CONSTRAINT referrals_earnings_require_hired CHECK (NOT earnings_posted OR status = 'hired')
        );
        """
    )
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_referrals_candidate "
        "ON app.referrals (job_id, referrer_id, lower(person_email));"
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_referrals_referrer ON app.referrals (referrer_id, created_at DESC);")
    op.execute("CREATE INDEX IF NOT EXISTS ix_referrals_job ON app.referrals (job_id, created_at DESC);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.referral_status_history (
          id bigserial PRIMARY KEY,
          referral_id uuid NOT NULL REFERENCES app.referrals(id) ON DELETE CASCADE,
          status text NOT NULL,
          changed_by uuid NOT NULL,
          changed_by_role text NOT NULL,
          note text NULL,
          created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_referral_status_history_referral "
        "ON app.referral_status_history (referral_id, id);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payment_transactions (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          transaction_number text NOT NULL,
          order_id text NOT NULL,
          type text NOT NULL CHECK (type IN ('commission_payout', 'success_fee', 'platform_commission')),
          provider text NOT NULL CHECK (provider IN ('KBZPay', 'WavePay', 'AYAPay', 'bank_transfer')),
          amount bigint NOT NULL CHECK (amount > 0),
          fees bigint NOT NULL DEFAULT 0 CHECK (fees >= 0),
          net_amount bigint NOT NULL,
          currency text NOT NULL DEFAULT 'MMK',
          status text NOT NULL CHECK (status IN ('pending', 'processing', 'completed', 'failed', 'reversed')),
          referral_id uuid NULL REFERENCES app.referrals(id),
          recipient_id uuid NULL REFERENCES users.users(id),
          recipient_phone text NULL,
          provider_reference text NULL,
          provider_status text NULL,
          last_error text NULL,
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now(),
          last_checked_at timestamptz NULL,
          completed_at timestamptz NULL,
          reversed_at timestamptz NULL,
          reversal_reason text NULL,
          CONSTRAINT payment_transactions_transaction_number_key UNIQUE (transaction_number),
          CONSTRAINT payment_transactions_order_id_key UNIQUE (order_id),
          CONSTRAINT payment_transactions_net_amount_check CHECK (net_amount = amount - fees)
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_payment_transactions_open "
        "ON app.payment_transactions (created_at) WHERE status IN ('pending', 'processing');"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_payment_transactions_provider_ref "
        "ON app.payment_transactions (provider, provider_reference);"
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_payment_transactions_referral ON app.payment_transactions (referral_id);")
    op.execute("CREATE INDEX IF NOT EXISTS ix_payment_transactions_recipient ON app.payment_transactions (recipient_id);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.audit_log (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          actor_user_id uuid NULL,
          action text NOT NULL,
          target_id text NULL,
          metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
          created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_audit_log_created_at ON app.audit_log (created_at DESC);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.reconcile_reports (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          run_at timestamptz NOT NULL DEFAULT now(),
          summary jsonb NOT NULL,
          items jsonb NOT NULL
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.reconcile_reports;")
    op.execute("DROP TABLE IF EXISTS app.audit_log;")
    op.execute("DROP TABLE IF EXISTS app.payment_transactions;")
    op.execute("DROP TABLE IF EXISTS app.referral_status_history;")
    op.execute("DROP TABLE IF EXISTS app.referrals;")
    op.execute("DROP TABLE IF EXISTS app.jobs;")
    op.execute("DROP TABLE IF EXISTS users.users;")
