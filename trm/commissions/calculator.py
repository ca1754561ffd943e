# trm/commissions/calculator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from services.metrics import increment_earnings_posted
from settings import settings
from trm.errors import DoubleSettlement, NotFound
from trm.payments.ledger import create_transaction
from trm.payments.model import PaymentTransaction, Recipient
from trm.referrals.model import Referral
from trm.storage.base import UnitOfWork
from trm.users.model import BalanceDelta, User

logger = logging.getLogger("trm.commissions")


@dataclass(frozen=True)
class CommissionSplit:
    bonus: int
    direct: int
    network: int
    platform: int
    success_fee: int


@dataclass
class EarningsPosting:
    referral_id: str
    split: CommissionSplit
    upstream_id: Optional[str] = None
    transactions: list[PaymentTransaction] = field(default_factory=list)


def split_bonus(bonus: int, *, has_upstream: bool) -> CommissionSplit:
    """
    Integer split of a referral bonus. Percentages floor; the network bonus is
    computed on the full bonus, independently of the direct share.
    """
    bonus = int(bonus)
    direct = bonus * (100 - int(settings.PLATFORM_COMMISSION_PERCENT)) // 100
    network = bonus * int(settings.NETWORK_BONUS_PERCENT) // 100 if has_upstream else 0
    return CommissionSplit(
        bonus=bonus,
        direct=direct,
        network=network,
        platform=bonus - direct,
        success_fee=int(settings.SUCCESS_FEE_AMOUNT),
    )


def _payout_recipient(user: User) -> tuple[Recipient, str]:
    provider = user.payout_provider or settings.DEFAULT_PAYOUT_PROVIDER
    return Recipient(user_id=user.id, phone=user.payout_phone), provider


def post_earnings(uow: UnitOfWork, referral: Referral, *, now: datetime) -> EarningsPosting:
    """
    Credit the direct referrer (and their upstream referrer, if any) for a hire
    and record the platform's revenue. Runs inside the caller's unit of work so
    the status change and the postings commit together.
    """
    job = uow.jobs.get(referral.job_id)
    if job is None:
        raise NotFound(f"Job {referral.job_id} not found")

    referrer = uow.users.get(referral.referrer_id)
    if referrer is None:
        raise NotFound(f"Referrer {referral.referrer_id} not found")

    if not uow.referrals.mark_earnings_posted(referral.id, at=now):
        increment_earnings_posted("duplicate")
        logger.critical("earnings already posted referral_id=%s", referral.id)
        raise DoubleSettlement(f"Earnings already posted for referral {referral.id}")

    upstream = uow.users.get(referrer.invited_by) if referrer.invited_by else None
    split = split_bonus(job.referral_bonus.amount, has_upstream=upstream is not None)
    currency = job.referral_bonus.currency
    posting = EarningsPosting(referral_id=str(referral.id), split=split)
    order_prefix = f"REF-{referral.id}"

    uow.users.apply_balance_delta(
        referrer.id,
        BalanceDelta(pending=split.direct, total=split.direct, direct_referrals=1),
    )
    if split.direct > 0:
        recipient, provider = _payout_recipient(referrer)
        posting.transactions.append(
            create_transaction(
                uow,
                type="commission_payout",
                amount=split.direct,
                recipient=recipient,
                provider=provider,
                referral_id=referral.id,
                order_id=f"{order_prefix}-DIRECT",
                currency=currency,
                now=now,
            )
        )

    if upstream is not None and split.network > 0:
        posting.upstream_id = str(upstream.id)
        uow.users.apply_balance_delta(
            upstream.id,
            BalanceDelta(pending=split.network, total=split.network, network=split.network),
        )
        recipient, provider = _payout_recipient(upstream)
        posting.transactions.append(
            create_transaction(
                uow,
                type="commission_payout",
                amount=split.network,
                recipient=recipient,
                provider=provider,
                referral_id=referral.id,
                order_id=f"{order_prefix}-NETWORK",
                currency=currency,
                now=now,
            )
        )

    platform = Recipient(user_id=None)
    if split.platform > 0:
        posting.transactions.append(
            create_transaction(
                uow,
                type="platform_commission",
                amount=split.platform,
                recipient=platform,
                provider=settings.PLATFORM_SETTLEMENT_PROVIDER,
                referral_id=referral.id,
                order_id=f"{order_prefix}-PLATFORM",
                currency=currency,
                now=now,
            )
        )
    if split.success_fee > 0:
        posting.transactions.append(
            create_transaction(
                uow,
                type="success_fee",
                amount=split.success_fee,
                recipient=platform,
                provider=settings.PLATFORM_SETTLEMENT_PROVIDER,
                referral_id=referral.id,
                order_id=f"{order_prefix}-FEE",
                currency=currency,
                now=now,
            )
        )

    increment_earnings_posted("posted")
    logger.info(
        "earnings posted referral_id=%s bonus=%s direct=%s network=%s upstream=%s",
        referral.id, split.bonus, split.direct, split.network, posting.upstream_id,
    )
    return posting
