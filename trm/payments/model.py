from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Literal
from uuid import UUID
from datetime import datetime

TransactionType = Literal["commission_payout", "success_fee", "platform_commission"]
TransactionStatus = Literal["pending", "processing", "completed", "failed", "reversed"]

PROVIDERS = ("KBZPay", "WavePay", "AYAPay", "bank_transfer")
PLATFORM_TYPES = ("success_fee", "platform_commission")


@dataclass(frozen=True)
class Recipient:
    user_id: Optional[UUID]
    phone: Optional[str] = None

    @property
    def is_platform(self) -> bool:
        return self.user_id is None


@dataclass(frozen=True)
class PaymentTransaction:
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
    created_at: datetime
    updated_at: datetime
    referral_id: Optional[UUID] = None
    recipient_id: Optional[UUID] = None
    recipient_phone: Optional[str] = None
    provider_reference: Optional[str] = None
    provider_status: Optional[str] = None
    last_error: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None
    reissue_of: Optional[UUID] = None

    @property
    def is_platform_revenue(self) -> bool:
        return self.type in PLATFORM_TYPES


def canonical_provider(name: str | None) -> Optional[str]:
    """
    Map loose provider spellings (kbz_pay, KBZPAY, wave pay...) to the stored enum value.
    """
    key = (name or "").strip().upper().replace("-", "").replace("_", "").replace(" ", "")
    return {
        "KBZPAY": "KBZPay",
        "KBZ": "KBZPay",
        "WAVEPAY": "WavePay",
        "WAVE": "WavePay",
        "WAVEMONEY": "WavePay",
        "AYAPAY": "AYAPay",
        "AYA": "AYAPay",
        "BANKTRANSFER": "bank_transfer",
        "BANK": "bank_transfer",
    }.get(key)
