# trm/storage/postgres.py
from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional
from uuid import UUID

from psycopg2.extras import Json, RealDictCursor

from db import get_conn
from services.audit_log import write_audit_log
from trm.payments.repository import PgPaymentRepository
from trm.referrals.repository import PgJobRepository, PgReferralRepository
from trm.users.repository import PgUserRepository


def _adapt_json(value: Any) -> Json:
    return Json(value, dumps=lambda v: json.dumps(v, default=str))


class PgAuditRepository:
    def __init__(self, conn):
        self.conn = conn

    def write(
        self,
        *,
        actor_id: Optional[UUID],
        action: str,
        target_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        write_audit_log(self.conn, actor_user_id=actor_id, action=action, target_id=target_id, metadata=metadata)


class PgReportRepository:
    def __init__(self, conn):
        self.conn = conn

    def insert(self, *, run_at: datetime, summary: dict[str, Any], items: list[dict[str, Any]]) -> str:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO app.reconcile_reports (run_at, summary, items)
                VALUES (%s, %s::jsonb, %s::jsonb)
                RETURNING id::text
                """,
                (run_at, _adapt_json(summary), _adapt_json(items)),
            )
            return cur.fetchone()["id"]

    def list(self, *, limit: int) -> list[dict[str, Any]]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id::text AS id, run_at, summary, items
                FROM app.reconcile_reports
                ORDER BY run_at DESC
                LIMIT %s
                """,
                (limit,),
            )
            return [dict(r) for r in cur.fetchall()]

    def get(self, report_id: str) -> Optional[dict[str, Any]]:
        try:
            rid = UUID(str(report_id))
        except ValueError:
            return None
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id::text AS id, run_at, summary, items
                FROM app.reconcile_reports
                WHERE id = %s
                """,
                (rid,),
            )
            row = cur.fetchone()
        return dict(row) if row else None


class PgUnitOfWork:
    def __init__(self, conn):
        self.conn = conn
        self.referrals = PgReferralRepository(conn)
        self.jobs = PgJobRepository(conn)
        self.users = PgUserRepository(conn)
        self.payments = PgPaymentRepository(conn)
        self.audit = PgAuditRepository(conn)
        self.reports = PgReportRepository(conn)


class PgStore:
    """
    PostgreSQL-backed store. Each `begin()` is one pooled connection / transaction.
    """

    @contextmanager
    def begin(self) -> Iterator[PgUnitOfWork]:
        with get_conn() as conn:
            yield PgUnitOfWork(conn)
