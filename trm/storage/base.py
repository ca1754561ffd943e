# trm/storage/base.py
from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Optional, Protocol
from uuid import UUID

from trm.payments.model import PaymentTransaction
from trm.referrals.model import Job, Referral, StatusHistoryEntry
from trm.users.model import BalanceDelta, User


class DuplicateKey(Exception):
    """
    A unique index (transaction_number, order_id) rejected an insert.
    """

    def __init__(self, key: str, value: str):
        super().__init__(f"duplicate {key}: {value}")
        self.key = key
        self.value = value


class ReferralRepository(Protocol):
    def get(self, referral_id: UUID) -> Optional[Referral]: ...
    def get_for_update(self, referral_id: UUID) -> Optional[Referral]: ...
    def insert(self, referral: Referral) -> None: ...
    def find_by_candidate(self, *, job_id: UUID, referrer_id: UUID, email: str) -> Optional[Referral]: ...
    def list(
        self,
        *,
        referrer_id: Optional[UUID] = None,
        company_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> list[Referral]: ...
    def apply_transition(self, referral_id: UUID, *, from_status: str, entry: StatusHistoryEntry) -> bool: ...
    def mark_earnings_posted(self, referral_id: UUID, *, at: datetime) -> bool: ...
    def mark_paid(self, referral_id: UUID, *, amount: int, at: datetime) -> None: ...


class JobRepository(Protocol):
    def get(self, job_id: UUID) -> Optional[Job]: ...


class UserRepository(Protocol):
    def get(self, user_id: UUID) -> Optional[User]: ...
    def list_referrers(self) -> list[User]: ...
    def apply_balance_delta(self, user_id: UUID, delta: BalanceDelta) -> bool: ...


class PaymentRepository(Protocol):
    def insert(self, tx: PaymentTransaction) -> None: ...
    def get(self, transaction_id: UUID) -> Optional[PaymentTransaction]: ...
    def get_for_update(self, transaction_id: UUID) -> Optional[PaymentTransaction]: ...
    def get_by_provider_reference(self, provider: str, reference: str) -> Optional[PaymentTransaction]: ...
    def get_by_transaction_number(self, transaction_number: str) -> Optional[PaymentTransaction]: ...
    def list(
        self,
        *,
        referral_id: Optional[UUID] = None,
        recipient_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[PaymentTransaction]: ...
    def list_stale(self, *, created_before: datetime, limit: int) -> list[PaymentTransaction]: ...
    def summarize(self, *, created_since: Optional[datetime] = None) -> list[dict[str, Any]]: ...
    def claim(self, transaction_id: UUID, *, expected_status: str, lease_before: datetime, now: datetime) -> bool: ...
    def claim_dispatchable(self, *, limit: int, lease_before: datetime, now: datetime) -> list[PaymentTransaction]: ...
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
    ) -> bool: ...


class AuditRepository(Protocol):
    def write(
        self,
        *,
        actor_id: Optional[UUID],
        action: str,
        target_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...


class ReportRepository(Protocol):
    def insert(self, *, run_at: datetime, summary: dict[str, Any], items: list[dict[str, Any]]) -> str: ...
    def list(self, *, limit: int) -> list[dict[str, Any]]: ...
    def get(self, report_id: str) -> Optional[dict[str, Any]]: ...


class UnitOfWork(Protocol):
    referrals: ReferralRepository
    jobs: JobRepository
    users: UserRepository
    payments: PaymentRepository
    audit: AuditRepository
    reports: ReportRepository


class Store(Protocol):
    def begin(self) -> AbstractContextManager[UnitOfWork]:
        """
        One database transaction. Commits on clean exit, rolls back on error.
        """
        ...
