# schemas.py
from __future__ import annotations

from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional, List, Literal, Any

from trm.payments.model import PaymentTransaction
from trm.referrals.model import Referral
from trm.users.model import User

ReferralStatus = Literal[
    "submitted",
    "under_review",
    "interview_scheduled",
    "interview_completed",
    "offer_extended",
    "hired",
    "rejected",
    "withdrawn",
]
ProviderStatus = Literal["pending", "processing", "completed", "failed"]


# -------- REFERRALS --------
class ReferredPersonIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=320)
    phone: Optional[str] = Field(default=None, max_length=32)
    experience: Optional[str] = Field(default=None, max_length=2000)


class CreateReferralRequest(BaseModel):
    job_id: UUID
    referred_person: ReferredPersonIn
    notes: Optional[str] = Field(default=None, max_length=2000)


class UpdateStatusRequest(BaseModel):
    status: ReferralStatus
    note: Optional[str] = Field(default=None, max_length=2000)


class StatusHistoryItem(BaseModel):
    status: str
    changed_by: UUID
    changed_by_role: str
    timestamp: datetime
    note: Optional[str] = None


class ReferralResponse(BaseModel):
    id: UUID
    referrer_id: UUID
    job_id: UUID
    referred_person: ReferredPersonIn
    status: str
    status_history: List[StatusHistoryItem]
    notes: Optional[str] = None
    earnings_posted: bool
    rejection_reason: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    paid_amount: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, r: Referral) -> "ReferralResponse":
        return cls(
            id=r.id,
            referrer_id=r.referrer_id,
            job_id=r.job_id,
            referred_person=ReferredPersonIn(
                name=r.referred_person.name,
                email=r.referred_person.email,
                phone=r.referred_person.phone,
                experience=r.referred_person.experience,
            ),
            status=r.status,
            status_history=[
                StatusHistoryItem(
                    status=e.status,
                    changed_by=e.changed_by,
                    changed_by_role=e.changed_by_role,
                    timestamp=e.timestamp,
                    note=e.note,
                )
                for e in r.status_history
            ],
            notes=r.notes,
            earnings_posted=r.earnings_posted,
            rejection_reason=r.rejection_reason,
            withdrawn_at=r.withdrawn_at,
            paid_at=r.paid_at,
            paid_amount=r.paid_amount,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )


class ReferralListResponse(BaseModel):
    referrals: List[ReferralResponse]
    count: int


# -------- PAYMENTS --------
class TransactionResponse(BaseModel):
    id: UUID
    transaction_number: str
    order_id: str
    type: str
    provider: str
    amount: int
    fees: int
    net_amount: int
    currency: str
    status: str
    referral_id: Optional[UUID] = None
    recipient_id: Optional[UUID] = None
    provider_reference: Optional[str] = None
    provider_status: Optional[str] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_checked_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None
    reissue_of: Optional[UUID] = None

    @classmethod
    def from_domain(cls, tx: PaymentTransaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            transaction_number=tx.transaction_number,
            order_id=tx.order_id,
            type=tx.type,
            provider=tx.provider,
            amount=tx.amount,
            fees=tx.fees,
            net_amount=tx.net_amount,
            currency=tx.currency,
            status=tx.status,
            referral_id=tx.referral_id,
            recipient_id=tx.recipient_id,
            provider_reference=tx.provider_reference,
            provider_status=tx.provider_status,
            last_error=tx.last_error,
            created_at=tx.created_at,
            updated_at=tx.updated_at,
            last_checked_at=tx.last_checked_at,
            completed_at=tx.completed_at,
            reversed_at=tx.reversed_at,
            reversal_reason=tx.reversal_reason,
            reissue_of=tx.reissue_of,
        )


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    count: int


class BalanceResponse(BaseModel):
    user_id: UUID
    available_balance: int
    pending_balance: int
    disbursed_balance: int
    total_earnings: int
    network_earnings: int
    direct_referrals: int

    @classmethod
    def from_domain(cls, u: User) -> "BalanceResponse":
        return cls(
            user_id=u.id,
            available_balance=u.available_balance,
            pending_balance=u.pending_balance,
            disbursed_balance=u.disbursed_balance,
            total_earnings=u.total_earnings,
            network_earnings=u.network_earnings,
            direct_referrals=u.direct_referrals,
        )


# -------- ADMIN --------
class ReverseRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)


class ProviderResultRequest(BaseModel):
    status: ProviderStatus
    provider_reference: Optional[str] = Field(default=None, max_length=200)
    note: Optional[str] = Field(default=None, max_length=500)


class ReissueRequest(BaseModel):
    provider: Optional[Literal["KBZPay", "WavePay", "AYAPay", "bank_transfer"]] = None
    recipient_phone: Optional[str] = Field(default=None, max_length=32)


class ReconcileRunRequest(BaseModel):
    stale_after_seconds: Optional[int] = Field(default=None, ge=0)
    batch_size: Optional[int] = Field(default=None, ge=1, le=1000)


class ReconcileReportResponse(BaseModel):
    id: str
    run_at: Any
    summary: dict[str, Any]
    items: List[dict[str, Any]]


class PaymentStatsResponse(BaseModel):
    generated_at: datetime
    by_status: dict[str, dict[str, int]]
    periods: dict[str, dict[str, Any]]
    by_provider: List[dict[str, Any]]
    by_type: dict[str, dict[str, int]]
