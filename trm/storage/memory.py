# trm/storage/memory.py
from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterator, Optional
from uuid import UUID

from trm.payments.model import PLATFORM_TYPES, PaymentTransaction
from trm.referrals.model import Job, Referral, StatusHistoryEntry
from trm.storage.base import DuplicateKey
from trm.users.model import BalanceDelta, User


def _normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class _State:
    def __init__(self):
        self.referrals: dict[UUID, Referral] = {}
        self.jobs: dict[UUID, Job] = {}
        self.users: dict[UUID, User] = {}
        self.payments: dict[UUID, PaymentTransaction] = {}
        self.audit: list[dict[str, Any]] = []
        self.reports: dict[str, dict[str, Any]] = {}

    def snapshot(self) -> "_State":
        # rows are frozen dataclasses, so copying the containers is enough
        s = _State()
        s.referrals = dict(self.referrals)
        s.jobs = dict(self.jobs)
        s.users = dict(self.users)
        s.payments = dict(self.payments)
        s.audit = list(self.audit)
        s.reports = dict(self.reports)
        return s

    def restore(self, other: "_State") -> None:
        self.referrals = other.referrals
        self.jobs = other.jobs
        self.users = other.users
        self.payments = other.payments
        self.audit = other.audit
        self.reports = other.reports


class MemoryReferralRepository:
    def __init__(self, state: _State):
        self.state = state

    def get(self, referral_id: UUID) -> Optional[Referral]:
        return self.state.referrals.get(referral_id)

    def get_for_update(self, referral_id: UUID) -> Optional[Referral]:
        # the store lock already serializes units of work
        return self.state.referrals.get(referral_id)

    def insert(self, referral: Referral) -> None:
        self.state.referrals[referral.id] = referral

    def find_by_candidate(self, *, job_id: UUID, referrer_id: UUID, email: str) -> Optional[Referral]:
        wanted = _normalize_email(email)
        for r in self.state.referrals.values():
            if (
                r.job_id == job_id
                and r.referrer_id == referrer_id
                and _normalize_email(r.referred_person.email) == wanted
            ):
                return r
        return None

    def list(
        self,
        *,
        referrer_id: Optional[UUID] = None,
        company_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> list[Referral]:
        out = []
        for r in self.state.referrals.values():
            if referrer_id is not None and r.referrer_id != referrer_id:
                continue
            if company_id is not None:
                job = self.state.jobs.get(r.job_id)
                if job is None or job.company_id != company_id:
                    continue
            out.append(r)
        out.sort(key=lambda r: r.created_at, reverse=True)
        return out[:limit]

    def apply_transition(self, referral_id: UUID, *, from_status: str, entry: StatusHistoryEntry) -> bool:
        current = self.state.referrals.get(referral_id)
        if current is None or current.status != from_status:
            return False
        self.state.referrals[referral_id] = current.with_transition(entry)
        return True

    def mark_earnings_posted(self, referral_id: UUID, *, at: datetime) -> bool:
        current = self.state.referrals.get(referral_id)
        if current is None or current.earnings_posted:
            return False
        self.state.referrals[referral_id] = replace(
            current, earnings_posted=True, earnings_posted_at=at, updated_at=at
        )
        return True

    def mark_paid(self, referral_id: UUID, *, amount: int, at: datetime) -> None:
        current = self.state.referrals.get(referral_id)
        if current is not None:
            self.state.referrals[referral_id] = replace(current, paid_at=at, paid_amount=amount, updated_at=at)


class MemoryJobRepository:
    def __init__(self, state: _State):
        self.state = state

    def get(self, job_id: UUID) -> Optional[Job]:
        return self.state.jobs.get(job_id)


class MemoryUserRepository:
    def __init__(self, state: _State):
        self.state = state

    def get(self, user_id: UUID) -> Optional[User]:
        return self.state.users.get(user_id)

    def list_referrers(self) -> list[User]:
        return sorted(
            (u for u in self.state.users.values() if u.role == "referrer"),
            key=lambda u: str(u.id),
        )

    def apply_balance_delta(self, user_id: UUID, delta: BalanceDelta) -> bool:
        u = self.state.users.get(user_id)
        if u is None:
            return False
        self.state.users[user_id] = replace(
            u,
            available_balance=u.available_balance + delta.available,
            pending_balance=u.pending_balance + delta.pending,
            disbursed_balance=u.disbursed_balance + delta.disbursed,
            total_earnings=u.total_earnings + delta.total,
            network_earnings=u.network_earnings + delta.network,
            direct_referrals=u.direct_referrals + delta.direct_referrals,
        )
        return True


class MemoryPaymentRepository:
    def __init__(self, state: _State):
        self.state = state

    def insert(self, tx: PaymentTransaction) -> None:
        for existing in self.state.payments.values():
            if existing.transaction_number == tx.transaction_number:
                raise DuplicateKey("transaction_number", tx.transaction_number)
            if existing.order_id == tx.order_id:
                raise DuplicateKey("order_id", tx.order_id)
        self.state.payments[tx.id] = tx

    def get(self, transaction_id: UUID) -> Optional[PaymentTransaction]:
        return self.state.payments.get(transaction_id)

    def get_for_update(self, transaction_id: UUID) -> Optional[PaymentTransaction]:
        return self.state.payments.get(transaction_id)

    def get_by_provider_reference(self, provider: str, reference: str) -> Optional[PaymentTransaction]:
        for tx in self.state.payments.values():
            if tx.provider == provider and tx.provider_reference == reference:
                return tx
        return None

    def get_by_transaction_number(self, transaction_number: str) -> Optional[PaymentTransaction]:
        for tx in self.state.payments.values():
            if tx.transaction_number == transaction_number:
                return tx
        return None

    def list(
        self,
        *,
        referral_id: Optional[UUID] = None,
        recipient_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[PaymentTransaction]:
        out = [
            tx
            for tx in self.state.payments.values()
            if (referral_id is None or tx.referral_id == referral_id)
            and (recipient_id is None or tx.recipient_id == recipient_id)
        ]
        out.sort(key=lambda t: (t.created_at, t.transaction_number))
        return out[:limit]

    def list_stale(self, *, created_before: datetime, limit: int) -> list[PaymentTransaction]:
        out = [
            tx
            for tx in self.state.payments.values()
            if tx.status in ("pending", "processing")
            and tx.created_at <= created_before
            and not (tx.type in PLATFORM_TYPES and tx.provider_reference is None)
        ]
        out.sort(key=lambda t: t.created_at)
        return out[:limit]

    def summarize(self, *, created_since: Optional[datetime] = None) -> list[dict[str, Any]]:
        groups: dict[tuple[str, str, str], dict[str, Any]] = {}
        for tx in self.state.payments.values():
            if created_since is not None and tx.created_at < created_since:
                continue
            key = (tx.type, tx.provider, tx.status)
            g = groups.setdefault(
                key,
                {"type": key[0], "provider": key[1], "status": key[2], "count": 0, "amount": 0, "fees": 0, "net_amount": 0},
            )
            g["count"] += 1
            g["amount"] += tx.amount
            g["fees"] += tx.fees
            g["net_amount"] += tx.net_amount
        return [groups[k] for k in sorted(groups)]

    def claim(self, transaction_id: UUID, *, expected_status: str, lease_before: datetime, now: datetime) -> bool:
        tx = self.state.payments.get(transaction_id)
        if tx is None or tx.status != expected_status:
            return False
        if tx.last_checked_at is not None and tx.last_checked_at > lease_before:
            return False
        self.state.payments[transaction_id] = replace(tx, last_checked_at=now)
        return True

    def claim_dispatchable(self, *, limit: int, lease_before: datetime, now: datetime) -> list[PaymentTransaction]:
        picked = [
            tx
            for tx in sorted(self.state.payments.values(), key=lambda t: t.created_at)
            if tx.status == "pending"
            and tx.type == "commission_payout"
            and tx.provider_reference is None
            and (tx.last_checked_at is None or tx.last_checked_at <= lease_before)
        ][:limit]
        claimed = []
        for tx in picked:
            updated = replace(tx, last_checked_at=now)
            self.state.payments[tx.id] = updated
            claimed.append(updated)
        return claimed

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
        tx = self.state.payments.get(transaction_id)
        if tx is None or tx.status != from_status:
            return False
        completed_at = tx.completed_at
        if new_status == "completed" and tx.status != "completed":
            completed_at = now
        self.state.payments[transaction_id] = replace(
            tx,
            status=new_status,
            provider_reference=provider_reference or tx.provider_reference,
            provider_status=provider_status or tx.provider_status,
            last_error=last_error,
            reversal_reason=reversal_reason or tx.reversal_reason,
            completed_at=completed_at,
            reversed_at=now if new_status == "reversed" else tx.reversed_at,
            last_checked_at=now,
            updated_at=now,
        )
        return True


class MemoryAuditRepository:
    def __init__(self, state: _State):
        self.state = state

    def write(
        self,
        *,
        actor_id: Optional[UUID],
        action: str,
        target_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self.state.audit.append(
            {"actor_user_id": actor_id, "action": action, "target_id": target_id, "metadata": metadata or {}}
        )


class MemoryReportRepository:
    def __init__(self, state: _State):
        self.state = state

    def insert(self, *, run_at: datetime, summary: dict[str, Any], items: list[dict[str, Any]]) -> str:
        report_id = str(uuid.uuid4())
        self.state.reports[report_id] = {"id": report_id, "run_at": run_at, "summary": summary, "items": items}
        return report_id

    def list(self, *, limit: int) -> list[dict[str, Any]]:
        rows = sorted(self.state.reports.values(), key=lambda r: r["run_at"], reverse=True)
        return rows[:limit]

    def get(self, report_id: str) -> Optional[dict[str, Any]]:
        return self.state.reports.get(report_id)


class MemoryUnitOfWork:
    def __init__(self, state: _State):
        self.referrals = MemoryReferralRepository(state)
        self.jobs = MemoryJobRepository(state)
        self.users = MemoryUserRepository(state)
        self.payments = MemoryPaymentRepository(state)
        self.audit = MemoryAuditRepository(state)
        self.reports = MemoryReportRepository(state)


class InMemoryStore:
    """
    Store with the same contract as PgStore, kept in process memory.
    Units of work are fully serialized and roll back on error.
    Used by tests and by local development (STORE_BACKEND=memory).
    """

    def __init__(self):
        self._state = _State()
        self._lock = threading.RLock()

    @contextmanager
    def begin(self) -> Iterator[MemoryUnitOfWork]:
        with self._lock:
            snapshot = self._state.snapshot()
            try:
                yield MemoryUnitOfWork(self._state)
            except BaseException:
                self._state.restore(snapshot)
                raise

    # --- seeding helpers (users and jobs are owned by other services) ---

    def add_user(self, user: User) -> User:
        with self._lock:
            self._state.users[user.id] = user
        return user

    def add_job(self, job: Job) -> Job:
        with self._lock:
            self._state.jobs[job.id] = job
        return job

    @property
    def audit_entries(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._state.audit)
