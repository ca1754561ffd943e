# trm/referrals/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from trm.referrals.model import Job, Referral, ReferralBonus, ReferredPerson, StatusHistoryEntry

_REFERRAL_COLUMNS = """
  r.id, r.referrer_id, r.job_id,
  r.person_name, r.person_email, r.person_phone, r.person_experience,
  r.notes, r.status, r.earnings_posted, r.earnings_posted_at,
  r.rejection_reason, r.withdrawn_at, r.withdrawn_by,
  r.paid_at, r.paid_amount, r.created_at, r.updated_at
"""


def _row_to_entry(row: dict[str, Any]) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        status=row["status"],
        changed_by=row["changed_by"],
        changed_by_role=row["changed_by_role"],
        timestamp=row["created_at"],
        note=row["note"],
    )


def _row_to_referral(row: dict[str, Any], history: list[StatusHistoryEntry]) -> Referral:
    return Referral(
        id=row["id"],
        referrer_id=row["referrer_id"],
        job_id=row["job_id"],
        referred_person=ReferredPerson(
            name=row["person_name"],
            email=row["person_email"],
            phone=row["person_phone"],
            experience=row["person_experience"],
        ),
        status=row["status"],
        status_history=tuple(history),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        notes=row["notes"],
        earnings_posted=bool(row["earnings_posted"]),
        earnings_posted_at=row["earnings_posted_at"],
        rejection_reason=row["rejection_reason"],
        withdrawn_at=row["withdrawn_at"],
        withdrawn_by=row["withdrawn_by"],
        paid_at=row["paid_at"],
        paid_amount=row["paid_amount"],
    )


class PgReferralRepository:
    def __init__(self, conn):
        self.conn = conn

    def _history(self, cur, referral_id: UUID) -> list[StatusHistoryEntry]:
        cur.execute(
            """
            SELECT status, changed_by, changed_by_role, note, created_at
            FROM app.referral_status_history
            WHERE referral_id = %s
            ORDER BY id
            """,
            (referral_id,),
        )
        return [_row_to_entry(r) for r in cur.fetchall()]

    def _fetch(self, referral_id: UUID, *, lock: bool) -> Optional[Referral]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_REFERRAL_COLUMNS}
                FROM app.referrals r
                WHERE r.id = %s
                {"FOR UPDATE" if lock else ""}
                """,
                (referral_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return _row_to_referral(row, self._history(cur, referral_id))

    def get(self, referral_id: UUID) -> Optional[Referral]:
        return self._fetch(referral_id, lock=False)

    def get_for_update(self, referral_id: UUID) -> Optional[Referral]:
        # row lock held until the unit of work commits: serializes transitions per referral
        return self._fetch(referral_id, lock=True)

    def insert(self, referral: Referral) -> None:
        p = referral.referred_person
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO app.referrals (
                  id, referrer_id, job_id,
                  person_name, person_email, person_phone, person_experience,
                  notes, status, earnings_posted, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, FALSE, %s, %s)
                """,
                (
                    referral.id, referral.referrer_id, referral.job_id,
                    p.name, p.email, p.phone, p.experience,
                    referral.notes, referral.status, referral.created_at, referral.updated_at,
                ),
            )
            for entry in referral.status_history:
                self._insert_history(cur, referral.id, entry)

    @staticmethod
    def _insert_history(cur, referral_id: UUID, entry: StatusHistoryEntry) -> None:
        cur.execute(
            """
            INSERT INTO app.referral_status_history (referral_id, status, changed_by, changed_by_role, note, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (referral_id, entry.status, entry.changed_by, entry.changed_by_role, entry.note, entry.timestamp),
        )

    def find_by_candidate(self, *, job_id: UUID, referrer_id: UUID, email: str) -> Optional[Referral]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id
                FROM app.referrals
                WHERE job_id = %s
                  AND referrer_id = %s
                  AND lower(btrim(person_email)) = lower(btrim(%s))
                LIMIT 1
                """,
                (job_id, referrer_id, email),
            )
            row = cur.fetchone()
        return self.get(row["id"]) if row else None

    def list(
        self,
        *,
        referrer_id: Optional[UUID] = None,
        company_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> list[Referral]:
        where = []
        params: list[Any] = []
        if referrer_id is not None:
            where.append("r.referrer_id = %s")
            params.append(referrer_id)
        if company_id is not None:
            where.append("j.company_id = %s")
            params.append(company_id)
        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        params.append(limit)

        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_REFERRAL_COLUMNS}
                FROM app.referrals r
                JOIN app.jobs j ON j.id = r.job_id
                {where_sql}
                ORDER BY r.created_at DESC
                LIMIT %s
                """,
                tuple(params),
            )
            rows = cur.fetchall()
            return [_row_to_referral(row, self._history(cur, row["id"])) for row in rows]

    def apply_transition(self, referral_id: UUID, *, from_status: str, entry: StatusHistoryEntry) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.referrals
                SET
                  status = %s,
                  rejection_reason = CASE WHEN %s = 'rejected' THEN %s ELSE rejection_reason END,
                  withdrawn_at = CASE WHEN %s = 'withdrawn' THEN %s ELSE withdrawn_at END,
                  withdrawn_by = CASE WHEN %s = 'withdrawn' THEN %s ELSE withdrawn_by END,
                  updated_at = %s
                WHERE id = %s
                  AND status = %s
                """,
                (
                    entry.status,
                    entry.status, entry.note,
                    entry.status, entry.timestamp,
                    entry.status, entry.changed_by,
                    entry.timestamp,
                    referral_id,
                    from_status,
                ),
            )
            if cur.rowcount != 1:
                return False
            self._insert_history(cur, referral_id, entry)
        return True

    def mark_earnings_posted(self, referral_id: UUID, *, at: datetime) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.referrals
                SET earnings_posted = TRUE, earnings_posted_at = %s, updated_at = %s
                WHERE id = %s
                  AND earnings_posted = FALSE
                """,
                (at, at, referral_id),
            )
            return cur.rowcount == 1

    def mark_paid(self, referral_id: UUID, *, amount: int, at: datetime) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.referrals
                SET paid_at = %s, paid_amount = %s, updated_at = %s
                WHERE id = %s
                """,
                (at, amount, at, referral_id),
            )


class PgJobRepository:
    def __init__(self, conn):
        self.conn = conn

    def get(self, job_id: UUID) -> Optional[Job]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, company_id, title, referral_bonus_amount, referral_bonus_currency
                FROM app.jobs
                WHERE id = %s
                """,
                (job_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return Job(
            id=row["id"],
            company_id=row["company_id"],
            title=row["title"],
            referral_bonus=ReferralBonus(
                amount=int(row["referral_bonus_amount"] or 0),
                currency=row["referral_bonus_currency"] or "MMK",
            ),
        )
