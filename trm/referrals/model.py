from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Optional
from uuid import UUID
from datetime import datetime


@dataclass(frozen=True)
class ReferredPerson:
    name: str
    email: str
    phone: Optional[str] = None
    experience: Optional[str] = None


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: str
    changed_by: UUID
    changed_by_role: str
    timestamp: datetime
    note: Optional[str] = None


@dataclass(frozen=True)
class Referral:
    id: UUID
    referrer_id: UUID
    job_id: UUID
    referred_person: ReferredPerson
    status: str
    status_history: tuple[StatusHistoryEntry, ...]
    created_at: datetime
    updated_at: datetime
    notes: Optional[str] = None
    earnings_posted: bool = False
    earnings_posted_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    withdrawn_by: Optional[UUID] = None
    paid_at: Optional[datetime] = None
    paid_amount: Optional[int] = None

    def with_transition(self, entry: StatusHistoryEntry) -> "Referral":
        changes: dict = {
            "status": entry.status,
            "status_history": self.status_history + (entry,),
            "updated_at": entry.timestamp,
        }
        if entry.status == "rejected":
            changes["rejection_reason"] = entry.note
        if entry.status == "withdrawn":
            changes["withdrawn_at"] = entry.timestamp
            changes["withdrawn_by"] = entry.changed_by
        return replace(self, **changes)


@dataclass(frozen=True)
class ReferralBonus:
    amount: int
    currency: str = "MMK"


@dataclass(frozen=True)
class Job:
    id: UUID
    company_id: UUID
    title: str
    referral_bonus: ReferralBonus = field(default_factory=lambda: ReferralBonus(amount=0))
