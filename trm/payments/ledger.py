# trm/payments/ledger.py
from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from services.metrics import increment_payment_status, increment_provider_call
from settings import settings
from trm.errors import (
    DoubleSettlement,
    Forbidden,
    InvalidTransition,
    NotFound,
    ProviderUnavailable,
    UnknownTransaction,
)
from trm.payments.model import PLATFORM_TYPES, PaymentTransaction, Recipient, canonical_provider
from trm.payments.state_machine import assert_transition, is_stale_report
from trm.providers.base import PaymentProvider, ProviderResult
from trm.providers.factory import get_provider as default_get_provider
from trm.roles import Actor, Role
from trm.storage.base import DuplicateKey, UnitOfWork
from trm.users.model import BalanceDelta, User

logger = logging.getLogger("trm.ledger")

PROVIDER_STATUSES = ("pending", "processing", "completed", "failed")

ProviderLookup = Callable[[str], Optional[PaymentProvider]]

_REISSUE_SUFFIX_RE = re.compile(r"^(.*)-R(\d+)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_transaction_number(now: datetime) -> str:
    return f"TRM-{now:%Y%m%d}-{uuid.uuid4().hex[:12].upper()}"


def default_fees(tx_type: str, amount: int) -> int:
    if tx_type in PLATFORM_TYPES:
        return 0
    return int(amount) * int(settings.PAYOUT_FEE_PERCENT) // 100


# ==========================================================
# Writes
# ==========================================================

def create_transaction(
    uow: UnitOfWork,
    *,
    type: str,
    amount: int,
    recipient: Recipient,
    provider: str,
    fees: Optional[int] = None,
    referral_id: Optional[UUID] = None,
    order_id: Optional[str] = None,
    currency: Optional[str] = None,
    reissue_of: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    now = now or _utcnow()
    provider_name = canonical_provider(provider)
    if provider_name is None:
        raise ValueError(f"Unsupported provider: {provider}")
    if int(amount) <= 0:
        raise ValueError("amount must be positive")

    fee = default_fees(type, amount) if fees is None else int(fees)
    if fee < 0 or fee > int(amount):
        raise ValueError("fees must be between 0 and amount")

    number = new_transaction_number(now)
    tx = PaymentTransaction(
        id=uuid.uuid4(),
        transaction_number=number,
        order_id=order_id or number,
        type=type,
        provider=provider_name,
        amount=int(amount),
        fees=fee,
        net_amount=int(amount) - fee,
        currency=currency or settings.DEFAULT_CURRENCY,
        status="pending",
        created_at=now,
        updated_at=now,
        referral_id=referral_id,
        recipient_id=recipient.user_id,
        recipient_phone=recipient.phone,
        reissue_of=reissue_of,
    )

    try:
        uow.payments.insert(tx)
    except DuplicateKey as exc:
        if exc.key == "order_id":
            logger.critical("double settlement blocked order_id=%s referral_id=%s", tx.order_id, referral_id)
            raise DoubleSettlement(f"Order {tx.order_id} already recorded") from exc
        raise

    logger.info(
        "transaction created number=%s type=%s amount=%s provider=%s referral_id=%s",
        tx.transaction_number, tx.type, tx.amount, tx.provider, referral_id,
    )
    return tx


def record_provider_result(
    uow: UnitOfWork,
    transaction_id: UUID,
    provider_status: str,
    provider_reference: Optional[str] = None,
    *,
    expected_status: Optional[str] = None,
    raw_status: Optional[str] = None,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Apply a provider-reported status to a transaction.

    - with expected_status, a row that moved since it was claimed is left alone
    - same status twice is a no-op (balances move once)
    - `completed` redelivered after a reversal is a no-op
    - a non-terminal report arriving after a later status is ignored
    - a terminal result contradicting another terminal status raises InvalidTransition
    - entering `completed` on a commission payout moves pending -> disbursed
    """
    now = now or _utcnow()
    new_status = (provider_status or "").strip().lower()
    if new_status not in PROVIDER_STATUSES:
        raise InvalidTransition(f"Unsupported provider status: {provider_status}")

    tx = uow.payments.get_for_update(transaction_id)
    if tx is None:
        raise UnknownTransaction(f"Transaction {transaction_id} not found")

    if expected_status and tx.status != expected_status:
        logger.info(
            "transaction moved since claim number=%s expected=%s current=%s reported=%s",
            tx.transaction_number, expected_status, tx.status, new_status,
        )
        return tx

    if tx.status == "reversed" and new_status == "completed":
        # provider redelivering the completion an operator already reversed
        logger.info("completion after reversal ignored number=%s ref=%s", tx.transaction_number, provider_reference)
        return tx

    if new_status == tx.status:
        if provider_reference and not tx.provider_reference:
            uow.payments.update_status(
                tx.id,
                from_status=tx.status,
                new_status=tx.status,
                now=now,
                provider_reference=provider_reference,
                provider_status=raw_status,
                last_error=tx.last_error,
            )
            return uow.payments.get(tx.id) or tx
        return tx

    if is_stale_report(tx.status, new_status):
        logger.debug(
            "stale provider report ignored number=%s current=%s reported=%s",
            tx.transaction_number, tx.status, new_status,
        )
        return tx

    assert_transition(tx.status, new_status)

    ok = uow.payments.update_status(
        tx.id,
        from_status=tx.status,
        new_status=new_status,
        now=now,
        provider_reference=provider_reference,
        provider_status=raw_status or provider_status,
        last_error=error if new_status == "failed" else None,
    )
    if not ok:
        raise InvalidTransition(f"Transaction {tx.transaction_number} changed concurrently")

    if new_status == "completed" and tx.type == "commission_payout" and tx.recipient_id is not None:
        uow.users.apply_balance_delta(tx.recipient_id, BalanceDelta(pending=-tx.amount, disbursed=tx.amount))
        if tx.referral_id is not None:
            referral = uow.referrals.get(tx.referral_id)
            if referral is not None and referral.referrer_id == tx.recipient_id:
                uow.referrals.mark_paid(tx.referral_id, amount=tx.amount, at=now)

    increment_payment_status(tx.type, new_status)
    log = logger.warning if new_status == "failed" else logger.info
    log(
        "transaction %s number=%s from=%s ref=%s error=%s",
        new_status, tx.transaction_number, tx.status, provider_reference or tx.provider_reference, error,
    )
    return uow.payments.get(tx.id) or tx


def record_provider_result_by_reference(
    uow: UnitOfWork,
    provider: str,
    provider_reference: Optional[str],
    provider_status: str,
    *,
    merchant_reference: Optional[str] = None,
    raw_status: Optional[str] = None,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    provider_name = canonical_provider(provider) or provider
    tx = None
    if provider_reference:
        tx = uow.payments.get_by_provider_reference(provider_name, provider_reference)
    if tx is None and merchant_reference:
        tx = uow.payments.get_by_transaction_number(merchant_reference)
        if tx is not None and tx.provider != provider_name:
            tx = None
    if tx is None:
        raise UnknownTransaction(
            f"No {provider} transaction with reference {provider_reference or merchant_reference}"
        )
    return record_provider_result(
        uow,
        tx.id,
        provider_status,
        provider_reference,
        raw_status=raw_status,
        error=error,
        now=now,
    )


def mark_reversed(
    uow: UnitOfWork,
    transaction_id: UUID,
    reason: str,
    *,
    actor_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    now = now or _utcnow()
    tx = uow.payments.get_for_update(transaction_id)
    if tx is None:
        raise UnknownTransaction(f"Transaction {transaction_id} not found")

    assert_transition(tx.status, "reversed")

    ok = uow.payments.update_status(
        tx.id,
        from_status=tx.status,
        new_status="reversed",
        now=now,
        reversal_reason=reason,
    )
    if not ok:
        raise InvalidTransition(f"Transaction {tx.transaction_number} changed concurrently")

    if tx.type == "commission_payout" and tx.recipient_id is not None:
        uow.users.apply_balance_delta(tx.recipient_id, BalanceDelta(pending=tx.amount, disbursed=-tx.amount))

    uow.audit.write(
        actor_id=actor_id,
        action="payment.reversed",
        target_id=str(tx.id),
        metadata={"transaction_number": tx.transaction_number, "amount": tx.amount, "reason": reason},
    )
    increment_payment_status(tx.type, "reversed")
    logger.warning("transaction reversed number=%s amount=%s reason=%s", tx.transaction_number, tx.amount, reason)
    return uow.payments.get(tx.id) or tx


def reissue_order_id(order_id: str) -> str:
    """REF-x-DIRECT -> REF-x-DIRECT-R1 -> REF-x-DIRECT-R2"""
    m = _REISSUE_SUFFIX_RE.match(order_id)
    if m:
        return f"{m.group(1)}-R{int(m.group(2)) + 1}"
    return f"{order_id}-R1"


def reissue_failed_payout(
    uow: UnitOfWork,
    transaction_id: UUID,
    *,
    provider: Optional[str] = None,
    recipient_phone: Optional[str] = None,
    actor_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Open a fresh commission payout for a failed one. The amount is still in the
    recipient's pending_balance, so no balance moves. The new order_id is derived
    from the failed row's, so reissuing the same row twice is a DoubleSettlement.
    """
    now = now or _utcnow()
    failed = uow.payments.get_for_update(transaction_id)
    if failed is None:
        raise UnknownTransaction(f"Transaction {transaction_id} not found")
    if failed.type != "commission_payout" or failed.status != "failed":
        raise InvalidTransition(
            f"Only failed commission payouts can be reissued ({failed.type} is {failed.status})"
        )

    tx = create_transaction(
        uow,
        type=failed.type,
        amount=failed.amount,
        fees=failed.fees,
        recipient=Recipient(failed.recipient_id, recipient_phone or failed.recipient_phone),
        provider=provider or failed.provider,
        referral_id=failed.referral_id,
        order_id=reissue_order_id(failed.order_id),
        currency=failed.currency,
        reissue_of=failed.id,
        now=now,
    )

    uow.audit.write(
        actor_id=actor_id,
        action="payment.reissued",
        target_id=str(failed.id),
        metadata={"transaction_number": failed.transaction_number, "reissued_as": tx.transaction_number},
    )
    increment_payment_status(tx.type, "reissued")
    logger.warning(
        "payout reissued number=%s as=%s amount=%s provider=%s",
        failed.transaction_number, tx.transaction_number, tx.amount, tx.provider,
    )
    return tx


def submit_to_provider(
    uow: UnitOfWork,
    transaction_id: UUID,
    *,
    get_provider: ProviderLookup = default_get_provider,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Send a pending transaction to its provider. The transaction_number is the
    merchant reference, so a retried submission is deduplicated provider-side.
    """
    tx = uow.payments.get_for_update(transaction_id)
    if tx is None:
        raise UnknownTransaction(f"Transaction {transaction_id} not found")
    if tx.status != "pending" or tx.provider_reference:
        return tx

    provider = get_provider(tx.provider)
    if provider is None:
        raise ProviderUnavailable(f"Provider {tx.provider} is not enabled")

    try:
        result: ProviderResult = provider.initiate_payment(
            amount=tx.net_amount,
            currency=tx.currency,
            recipient_phone=tx.recipient_phone,
            merchant_reference=tx.transaction_number,
        )
    except ProviderUnavailable:
        increment_provider_call(tx.provider, "initiate", "unavailable")
        raise
    increment_provider_call(tx.provider, "initiate", result.status)

    if result.status == "pending":
        uow.payments.update_status(
            tx.id,
            from_status="pending",
            new_status="pending",
            now=now or _utcnow(),
            provider_reference=result.provider_reference,
            provider_status=result.raw_status,
        )
        return uow.payments.get(tx.id) or tx

    return record_provider_result(
        uow,
        tx.id,
        result.status,
        result.provider_reference,
        raw_status=result.raw_status,
        error=result.error,
        now=now,
    )


# ==========================================================
# Reads
# ==========================================================

def _ensure_can_view(uow: UnitOfWork, actor: Actor, tx: PaymentTransaction) -> None:
    if actor.role is Role.ADMIN:
        return
    if actor.role is Role.REFERRER and tx.recipient_id == actor.user_id:
        return
    if actor.role is Role.COMPANY and tx.referral_id is not None and not tx.is_platform_revenue:
        referral = uow.referrals.get(tx.referral_id)
        job = uow.jobs.get(referral.job_id) if referral else None
        if job is not None and job.company_id == actor.company_id:
            return
    raise Forbidden("Not allowed to view this transaction")


def get_transaction(uow: UnitOfWork, actor: Actor, transaction_id: UUID) -> PaymentTransaction:
    tx = uow.payments.get(transaction_id)
    if tx is None:
        raise UnknownTransaction(f"Transaction {transaction_id} not found")
    _ensure_can_view(uow, actor, tx)
    return tx


def list_transactions(
    uow: UnitOfWork,
    actor: Actor,
    *,
    referral_id: Optional[UUID] = None,
    limit: int = 100,
) -> list[PaymentTransaction]:
    if actor.role is Role.REFERRER:
        return uow.payments.list(referral_id=referral_id, recipient_id=actor.user_id, limit=limit)

    if actor.role is Role.COMPANY:
        if referral_id is None:
            raise Forbidden("Companies must filter by referral_id")
        referral = uow.referrals.get(referral_id)
        job = uow.jobs.get(referral.job_id) if referral else None
        if job is None or job.company_id != actor.company_id:
            raise Forbidden("Not allowed to view these transactions")
        return [tx for tx in uow.payments.list(referral_id=referral_id, limit=limit) if not tx.is_platform_revenue]

    return uow.payments.list(referral_id=referral_id, limit=limit)


def get_balance(uow: UnitOfWork, user_id: UUID) -> User:
    user = uow.users.get(user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user
