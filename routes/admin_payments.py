# routes/admin_payments.py
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from deps.admin import require_admin
from deps.store import get_store
from schemas import (
    PaymentStatsResponse,
    ProviderResultRequest,
    ReissueRequest,
    ReverseRequest,
    TransactionResponse,
)
from services.payment_stats import payment_stats
from trm.payments import ledger
from trm.roles import Actor
from trm.storage.base import Store

router = APIRouter(prefix="/v1/admin/payments", tags=["admin-payments"])
logger = logging.getLogger("trm.admin")


@router.post("/{transaction_id}/reverse", response_model=TransactionResponse)
def reverse_payment(
    transaction_id: UUID,
    req: ReverseRequest,
    admin: Actor = Depends(require_admin),
    store: Store = Depends(get_store),
):
    with store.begin() as uow:
        tx = ledger.mark_reversed(uow, transaction_id, req.reason, actor_id=admin.user_id)
    return TransactionResponse.from_domain(tx)


@router.post("/{transaction_id}/provider-result", response_model=TransactionResponse)
def record_provider_result(
    transaction_id: UUID,
    req: ProviderResultRequest,
    admin: Actor = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Operator settlement, e.g. a bank transfer confirmed out of band."""
    with store.begin() as uow:
        before = uow.payments.get(transaction_id)
        tx = ledger.record_provider_result(
            uow,
            transaction_id,
            req.status,
            req.provider_reference,
            raw_status="MANUAL",
            error=req.note if req.status == "failed" else None,
        )
        uow.audit.write(
            actor_id=admin.user_id,
            action="payment.provider_result",
            target_id=str(transaction_id),
            metadata={
                "from": before.status if before else None,
                "to": tx.status,
                "provider_reference": req.provider_reference,
                "note": req.note,
            },
        )
    logger.info("manual provider result tx=%s status=%s by=%s", transaction_id, tx.status, admin.user_id)
    return TransactionResponse.from_domain(tx)


@router.post("/{transaction_id}/reissue", response_model=TransactionResponse, status_code=201)
def reissue_payment(
    transaction_id: UUID,
    req: Optional[ReissueRequest] = None,
    admin: Actor = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """New pending payout for a failed one; the payout worker sends it on its next pass."""
    req = req or ReissueRequest()
    with store.begin() as uow:
        tx = ledger.reissue_failed_payout(
            uow,
            transaction_id,
            provider=req.provider,
            recipient_phone=req.recipient_phone,
            actor_id=admin.user_id,
        )
    return TransactionResponse.from_domain(tx)


@router.get("/stats", response_model=PaymentStatsResponse)
def get_payment_stats(
    admin: Actor = Depends(require_admin),
    store: Store = Depends(get_store),
):
    return payment_stats(store)
