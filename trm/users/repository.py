# trm/users/repository.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from trm.users.model import BalanceDelta, User

_USER_COLUMNS = """
  id, role, email, company_id, invite_code, invited_by,
  payout_provider, payout_phone,
  available_balance, pending_balance, disbursed_balance,
  total_earnings, network_earnings, direct_referrals
"""


def _row_to_user(row: dict[str, Any]) -> User:
    return User(
        id=row["id"],
        role=row["role"],
        email=row["email"],
        company_id=row["company_id"],
        invite_code=row["invite_code"],
        invited_by=row["invited_by"],
        payout_provider=row["payout_provider"],
        payout_phone=row["payout_phone"],
        available_balance=int(row["available_balance"]),
        pending_balance=int(row["pending_balance"]),
        disbursed_balance=int(row["disbursed_balance"]),
        total_earnings=int(row["total_earnings"]),
        network_earnings=int(row["network_earnings"]),
        direct_referrals=int(row["direct_referrals"]),
    )


class PgUserRepository:
    def __init__(self, conn):
        self.conn = conn

    def get(self, user_id: UUID) -> Optional[User]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users.users WHERE id = %s", (user_id,))
            row = cur.fetchone()
        return _row_to_user(row) if row else None

    def list_referrers(self) -> list[User]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users.users WHERE role = 'referrer' ORDER BY id")
            return [_row_to_user(r) for r in cur.fetchall()]

    def apply_balance_delta(self, user_id: UUID, delta: BalanceDelta) -> bool:
        # increments are applied in SQL, never read-modify-write in Python
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE users.users
                SET
                  available_balance = available_balance + %s,
                  pending_balance = pending_balance + %s,
                  disbursed_balance = disbursed_balance + %s,
                  total_earnings = total_earnings + %s,
                  network_earnings = network_earnings + %s,
                  direct_referrals = direct_referrals + %s,
                  updated_at = now()
                WHERE id = %s
                """,
                (
                    delta.available,
                    delta.pending,
                    delta.disbursed,
                    delta.total,
                    delta.network,
                    delta.direct_referrals,
                    user_id,
                ),
            )
            return cur.rowcount == 1
