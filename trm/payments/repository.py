# trm/payments/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import psycopg2.errors
from psycopg2.extras import RealDictCursor

from trm.payments.model import PaymentTransaction
from trm.storage.base import DuplicateKey

_TX_COLUMNS = """
  id, transaction_number, order_id, type, provider,
  amount, fees, net_amount, currency, status,
  referral_id, recipient_id, recipient_phone,
  provider_reference, provider_status, last_error,
  created_at, updated_at, last_checked_at, completed_at,
  reversed_at, reversal_reason, reissue_of
"""

_UNIQUE_CONSTRAINTS = {
    "payment_transactions_transaction_number_key": "transaction_number",
    "payment_transactions_order_id_key": "order_id",
}


def _row_to_tx(row: dict[str, Any]) -> PaymentTransaction:
    return PaymentTransaction(
        id=row["id"],
        transaction_number=row["transaction_number"],
        order_id=row["order_id"],
        type=row["type"],
        provider=row["provider"],
        amount=int(row["amount"]),
        fees=int(row["fees"]),
        net_amount=int(row["net_amount"]),
        currency=row["currency"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        referral_id=row["referral_id"],
        recipient_id=row["recipient_id"],
        recipient_phone=row["recipient_phone"],
        provider_reference=row["provider_reference"],
        provider_status=row["provider_status"],
        last_error=row["last_error"],
        last_checked_at=row["last_checked_at"],
        completed_at=row["completed_at"],
        reversed_at=row["reversed_at"],
        reversal_reason=row["reversal_reason"],
        reissue_of=row["reissue_of"],
    )


class PgPaymentRepository:
    def __init__(self, conn):
        self.conn = conn

    # ==========================================================
    # Writes
    # ==========================================================

    def insert(self, tx: PaymentTransaction) -> None:
        try:
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO app.payment_transactions (
                      id, transaction_number, order_id, type, provider,
                      amount, fees, net_amount, currency, status,
                      referral_id, recipient_id, recipient_phone,
                      created_at, updated_at, reissue_of
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        tx.id, tx.transaction_number, tx.order_id, tx.type, tx.provider,
                        tx.amount, tx.fees, tx.net_amount, tx.currency, tx.status,
                        tx.referral_id, tx.recipient_id, tx.recipient_phone,
                        tx.created_at, tx.updated_at, tx.reissue_of,
                    ),
                )
        except psycopg2.errors.UniqueViolation as exc:
            constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
            key = _UNIQUE_CONSTRAINTS.get(constraint, constraint or "unknown")
            value = tx.order_id if key == "order_id" else tx.transaction_number
            raise DuplicateKey(key, value) from exc

    def update_status(
        self,
        transaction_id: UUID,
        *,
        from_status: str,
        new_status: str,
        now: datetime,
        provider_reference: Optional[str] = None,
        provider_status: Optional[str] = None,
        last_error: Optional[str] = None,
        reversal_reason: Optional[str] = None,
    ) -> bool:
        # check-and-set: only applies if nobody moved the row since it was read
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.payment_transactions
                SET
                  status = %s,
                  provider_reference = COALESCE(%s, provider_reference),
                  provider_status = COALESCE(%s, provider_status),
                  last_error = %s,
                  reversal_reason = COALESCE(%s, reversal_reason),
                  completed_at = CASE WHEN %s = 'completed' AND status <> 'completed' THEN %s ELSE completed_at END,
                  reversed_at = CASE WHEN %s = 'reversed' THEN %s ELSE reversed_at END,
                  last_checked_at = %s,
                  updated_at = %s
                WHERE id = %s
                  AND status = %s
                """,
                (
                    new_status,
                    provider_reference,
                    provider_status,
                    last_error,
                    reversal_reason,
                    new_status, now,
                    new_status, now,
                    now,
                    now,
                    transaction_id,
                    from_status,
                ),
            )
            return cur.rowcount == 1

    # ==========================================================
    # Claims
    # ==========================================================

    def claim(self, transaction_id: UUID, *, expected_status: str, lease_before: datetime, now: datetime) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.payment_transactions
                SET last_checked_at = %s
                WHERE id = %s
                  AND status = %s
                  AND (last_checked_at IS NULL OR last_checked_at <= %s)
                """,
                (now, transaction_id, expected_status, lease_before),
            )
            return cur.rowcount == 1

    def claim_dispatchable(self, *, limit: int, lease_before: datetime, now: datetime) -> list[PaymentTransaction]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                WITH picked AS (
                  SELECT p.id
                  FROM app.payment_transactions p
                  WHERE p.status = 'pending'
                    AND p.type = 'commission_payout'
                    AND p.provider_reference IS NULL
                    AND (p.last_checked_at IS NULL OR p.last_checked_at <= %s)
                  ORDER BY p.created_at
                  LIMIT %s
                  FOR UPDATE SKIP LOCKED
                )
                UPDATE app.payment_transactions p
                SET last_checked_at = %s
                FROM picked
                WHERE p.id = picked.id
                RETURNING {", ".join("p." + c.strip() for c in _TX_COLUMNS.split(","))}
                """,
                (lease_before, limit, now),
            )
            rows = cur.fetchall()
        return sorted((_row_to_tx(r) for r in rows), key=lambda t: t.created_at)

    # ==========================================================
    # Reads
    # ==========================================================

    def _one(self, where_sql: str, params: tuple, *, lock: bool = False) -> Optional[PaymentTransaction]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_TX_COLUMNS}
                FROM app.payment_transactions
                WHERE {where_sql}
                LIMIT 1
                {"FOR UPDATE" if lock else ""}
                """,
                params,
            )
            row = cur.fetchone()
        return _row_to_tx(row) if row else None

    def get(self, transaction_id: UUID) -> Optional[PaymentTransaction]:
        return self._one("id = %s", (transaction_id,))

    def get_for_update(self, transaction_id: UUID) -> Optional[PaymentTransaction]:
        return self._one("id = %s", (transaction_id,), lock=True)

    def get_by_provider_reference(self, provider: str, reference: str) -> Optional[PaymentTransaction]:
        return self._one("provider = %s AND provider_reference = %s", (provider, reference))

    def get_by_transaction_number(self, transaction_number: str) -> Optional[PaymentTransaction]:
        return self._one("transaction_number = %s", (transaction_number,))

    def list(
        self,
        *,
        referral_id: Optional[UUID] = None,
        recipient_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[PaymentTransaction]:
        where = []
        params: list[Any] = []
        if referral_id is not None:
            where.append("referral_id = %s")
            params.append(referral_id)
        if recipient_id is not None:
            where.append("recipient_id = %s")
            params.append(recipient_id)
        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        params.append(limit)

        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_TX_COLUMNS}
                FROM app.payment_transactions
                {where_sql}
                ORDER BY created_at, transaction_number
                LIMIT %s
                """,
                tuple(params),
            )
            return [_row_to_tx(r) for r in cur.fetchall()]

    def list_stale(self, *, created_before: datetime, limit: int) -> list[PaymentTransaction]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_TX_COLUMNS}
                FROM app.payment_transactions
                WHERE status IN ('pending', 'processing')
                  AND created_at <= %s
                  AND NOT (type IN ('success_fee', 'platform_commission') AND provider_reference IS NULL)
                ORDER BY created_at
                LIMIT %s
                """,
                (created_before, limit),
            )
            return [_row_to_tx(r) for r in cur.fetchall()]

    def summarize(self, *, created_since: Optional[datetime] = None) -> list[dict[str, Any]]:
        """Count and amount totals per (type, provider, status)."""
        where_sql = "WHERE created_at >= %s" if created_since is not None else ""
        params = (created_since,) if created_since is not None else ()
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT
                  type, provider, status,
                  COUNT(*) AS count,
                  COALESCE(SUM(amount), 0) AS amount,
                  COALESCE(SUM(fees), 0) AS fees,
                  COALESCE(SUM(net_amount), 0) AS net_amount
                FROM app.payment_transactions
                {where_sql}
                GROUP BY type, provider, status
                ORDER BY type, provider, status
                """,
                params,
            )
            return [
                {
                    "type": r["type"],
                    "provider": r["provider"],
                    "status": r["status"],
                    "count": int(r["count"]),
                    "amount": int(r["amount"]),
                    "fees": int(r["fees"]),
                    "net_amount": int(r["net_amount"]),
                }
                for r in cur.fetchall()
            ]
