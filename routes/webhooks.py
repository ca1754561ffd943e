# routes/webhooks.py
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from deps.store import get_store
from services.metrics import increment_webhook_event
from services.redaction import redact_dict
from trm.payments.ledger import record_provider_result_by_reference
from trm.payments.model import canonical_provider
from trm.providers.base import map_provider_status
from trm.providers.config import provider_enabled, webhook_secret
from trm.storage.base import Store

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("trm.webhooks")


def _unwrap_payload(payload: Any) -> Any:
    """
    Providers wrap payloads differently: {"data": {...}} (WavePay),
    {"Request": {...}} / {"Response": {...}} (KBZPay).
    """
    if isinstance(payload, dict):
        for key in ("data", "Request", "Response"):
            inner = payload.get(key)
            if isinstance(inner, dict):
                return inner
    return payload


def _extract_refs(payload: dict) -> tuple[str | None, str | None, str]:
    """
    Normalize provider payload shapes into (provider_ref, merchant_ref, status).
    """
    provider_ref = (
        payload.get("provider_reference")
        or payload.get("payout_id")
        or payload.get("payoutId")
        or payload.get("OrderId")
        or payload.get("transaction_id")
        or payload.get("transactionId")
        or payload.get("reference")
        or ""
    )
    provider_ref = str(provider_ref).strip() or None

    merchant_ref = (
        payload.get("merchant_reference")
        or payload.get("merchant_reference_id")
        or payload.get("merch_order_id")
        or payload.get("externalTransactionId")
        or ""
    )
    merchant_ref = str(merchant_ref).strip() or None

    status = (
        payload.get("status")
        or payload.get("transactionStatus")
        or payload.get("TransStatus")
        or payload.get("trade_status")
        or ""
    )
    return provider_ref, merchant_ref, str(status).strip()


def _verify_signature(*, raw: bytes, signature_header: str | None, secret: str | None) -> tuple[bool, str | None]:
    if not secret or not secret.strip():
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"

    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"

    sig = signature_header.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, sig):
        return False, "INVALID_SIGNATURE"

    return True, None


@router.post("/{provider}")
async def provider_webhook(provider: str, req: Request, store: Store = Depends(get_store)):
    name = canonical_provider(provider)
    if name is None:
        raise HTTPException(status_code=404, detail="UNKNOWN_PROVIDER")
    if not provider_enabled(name):
        increment_webhook_event(name, False, False)
        raise HTTPException(status_code=403, detail="PROVIDER_DISABLED")

    raw = await req.body()
    request_id = getattr(req.state, "request_id", None)

    sig_ok, sig_err = _verify_signature(
        raw=raw,
        signature_header=req.headers.get("X-Signature"),
        secret=webhook_secret(name),
    )
    if not sig_ok:
        increment_webhook_event(name, False, False)
        logger.warning("webhook rejected request_id=%s provider=%s reason=%s", request_id, name, sig_err)
        raise HTTPException(status_code=401, detail={"error": sig_err})

    try:
        parsed = json.loads(raw.decode("utf-8"))
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "INVALID_JSON"})

    payload = _unwrap_payload(parsed)
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail={"error": "INVALID_JSON_OBJECT"})

    provider_ref, merchant_ref, status_raw = _extract_refs(payload)
    if not status_raw:
        raise HTTPException(status_code=400, detail={"error": "MISSING_STATUS"})
    if not provider_ref and not merchant_ref:
        raise HTTPException(status_code=400, detail={"error": "MISSING_REFERENCE"})

    status = map_provider_status(status_raw)
    logger.info(
        "webhook received request_id=%s provider=%s provider_ref=%s merchant_ref=%s status=%s payload=%s",
        request_id, name, provider_ref, merchant_ref, status_raw, redact_dict(payload),
    )

    def _apply():
        with store.begin() as uow:
            return record_provider_result_by_reference(
                uow,
                name,
                provider_ref,
                status,
                merchant_reference=merchant_ref,
                raw_status=status_raw,
                error=status_raw if status == "failed" else None,
            )

    try:
        tx = await run_in_threadpool(_apply)
    except Exception:
        increment_webhook_event(name, True, False)
        raise

    increment_webhook_event(name, True, True)
    return {"ok": True, "transaction_id": str(tx.id), "status": tx.status}
