# routes/payments.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from deps.auth import get_current_actor
from deps.store import get_store
from schemas import BalanceResponse, TransactionListResponse, TransactionResponse
from trm.payments import ledger
from trm.roles import Actor, Role
from trm.storage.base import Store

router = APIRouter(tags=["payments"])


@router.get("/v1/payments/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: UUID,
    actor: Actor = Depends(get_current_actor),
    store: Store = Depends(get_store),
):
    with store.begin() as uow:
        tx = ledger.get_transaction(uow, actor, transaction_id)
    return TransactionResponse.from_domain(tx)


@router.get("/v1/payments/transactions", response_model=TransactionListResponse)
def list_transactions(
    referral_id: Optional[UUID] = None,
    limit: int = 100,
    actor: Actor = Depends(get_current_actor),
    store: Store = Depends(get_store),
):
    limit = max(1, min(limit, 500))
    with store.begin() as uow:
        rows = ledger.list_transactions(uow, actor, referral_id=referral_id, limit=limit)
    return TransactionListResponse(
        transactions=[TransactionResponse.from_domain(tx) for tx in rows],
        count=len(rows),
    )


@router.get("/v1/referrers/me/balance", response_model=BalanceResponse)
def my_balance(
    actor: Actor = Depends(get_current_actor),
    store: Store = Depends(get_store),
):
    if actor.role is not Role.REFERRER:
        raise HTTPException(status_code=403, detail="REFERRER_REQUIRED")
    with store.begin() as uow:
        user = ledger.get_balance(uow, actor.user_id)
    return BalanceResponse.from_domain(user)
