from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from uuid import UUID


@dataclass(frozen=True)
class User:
    id: UUID
    role: str
    email: str
    company_id: Optional[UUID] = None
    invite_code: Optional[str] = None
    invited_by: Optional[UUID] = None
    payout_provider: Optional[str] = None
    payout_phone: Optional[str] = None
    available_balance: int = 0
    pending_balance: int = 0
    disbursed_balance: int = 0
    total_earnings: int = 0
    network_earnings: int = 0
    direct_referrals: int = 0

    @property
    def balance_identity_holds(self) -> bool:
        return self.available_balance + self.pending_balance + self.disbursed_balance == self.total_earnings


@dataclass(frozen=True)
class BalanceDelta:
    """
    Increments applied atomically to a user's balance columns.
    """

    available: int = 0
    pending: int = 0
    disbursed: int = 0
    total: int = 0
    network: int = 0
    direct_referrals: int = 0

    def is_zero(self) -> bool:
        return not any(
            (self.available, self.pending, self.disbursed, self.total, self.network, self.direct_referrals)
        )
