# trm/workers/reconcile_worker.py
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from services.metrics import increment_provider_call, increment_reconcile_result
from settings import settings
from trm.errors import ProviderUnavailable, TrmError
from trm.payments.ledger import ProviderLookup, record_provider_result, submit_to_provider
from trm.payments.model import PaymentTransaction
from trm.providers.factory import get_provider as default_get_provider
from trm.storage.base import Store

logger = logging.getLogger("trm.reconcile")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _item(tx: PaymentTransaction, outcome: str, **extra: Any) -> dict[str, Any]:
    out = {
        "transaction_id": str(tx.id),
        "transaction_number": tx.transaction_number,
        "type": tx.type,
        "provider": tx.provider,
        "status_before": tx.status,
        "outcome": outcome,
    }
    out.update(extra)
    return out


def _reconcile_one(
    store: Store,
    tx: PaymentTransaction,
    *,
    now: datetime,
    lease_before: datetime,
    get_provider: ProviderLookup,
) -> dict[str, Any]:
    with store.begin() as uow:
        if not uow.payments.claim(tx.id, expected_status=tx.status, lease_before=lease_before, now=now):
            return _item(tx, "skipped", reason="claimed_elsewhere")

    if not tx.provider_reference:
        with store.begin() as uow:
            after = submit_to_provider(uow, tx.id, get_provider=get_provider, now=now)
        return _item(tx, "updated" if after.status != tx.status else "unchanged", status_after=after.status)

    provider = get_provider(tx.provider)
    if provider is None:
        raise ProviderUnavailable(f"Provider {tx.provider} is not enabled")

    try:
        result = provider.query_status(tx.provider_reference)
    except ProviderUnavailable:
        increment_provider_call(tx.provider, "query", "unavailable")
        raise
    increment_provider_call(tx.provider, "query", result.status)

    with store.begin() as uow:
        current = uow.payments.get_for_update(tx.id)
        if current is None or current.status != tx.status:
            # a webhook or operator settled it while the provider was being queried
            return _item(
                tx, "skipped", reason="moved_since_claim", status_after=current.status if current else None
            )
        after = record_provider_result(
            uow,
            tx.id,
            result.status,
            result.provider_reference or tx.provider_reference,
            expected_status=tx.status,
            raw_status=result.raw_status,
            error=result.error,
            now=now,
        )
    return _item(tx, "updated" if after.status != tx.status else "unchanged", status_after=after.status)


def run_reconciliation(
    store: Store,
    *,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
    get_provider: ProviderLookup = default_get_provider,
    stale_after_seconds: Optional[int] = None,
    delay_seconds: Optional[float] = None,
    batch_size: Optional[int] = None,
) -> dict[str, Any]:
    """
    Re-poll providers for transactions stuck in pending/processing.

    Each transaction is claimed and settled in its own unit of work, so one
    failure never aborts the batch and a crash loses at most one item.
    The run is persisted as a reconcile report.
    """
    run_at = now or _utcnow()
    stale_after = int(settings.RECONCILE_STALE_SECONDS if stale_after_seconds is None else stale_after_seconds)
    delay = float(settings.RECONCILE_DELAY_SECONDS if delay_seconds is None else delay_seconds)
    limit = int(settings.RECONCILE_BATCH_SIZE if batch_size is None else batch_size)

    threshold = run_at - timedelta(seconds=stale_after)
    summary = {"checked": 0, "updated": 0, "failed": 0, "skipped": 0}
    items: list[dict[str, Any]] = []

    with store.begin() as uow:
        candidates = uow.payments.list_stale(created_before=threshold, limit=limit)

    logger.info("reconcile start candidates=%s stale_after=%ss", len(candidates), stale_after)

    for i, tx in enumerate(candidates):
        if i > 0 and delay > 0:
            sleep(delay)

        try:
            item = _reconcile_one(store, tx, now=run_at, lease_before=threshold, get_provider=get_provider)
        except TrmError as exc:
            summary["checked"] += 1
            summary["failed"] += 1
            logger.warning("reconcile failed number=%s code=%s error=%s", tx.transaction_number, exc.code, exc.message)
            items.append(_item(tx, "failed", error=exc.code, message=exc.message))
            continue
        except Exception as exc:
            summary["checked"] += 1
            summary["failed"] += 1
            logger.exception("reconcile crashed number=%s", tx.transaction_number)
            items.append(_item(tx, "failed", error=type(exc).__name__, message=str(exc)))
            continue

        if item["outcome"] == "skipped":
            summary["skipped"] += 1
        else:
            summary["checked"] += 1
            if item["outcome"] == "updated":
                summary["updated"] += 1
        if item["outcome"] != "unchanged":
            items.append(item)

    for key in ("updated", "failed", "skipped"):
        increment_reconcile_result(key, summary[key])

    with store.begin() as uow:
        report_id = uow.reports.insert(run_at=run_at, summary=summary, items=items)

    logger.info("reconcile done report_id=%s summary=%s", report_id, summary)
    return {"id": report_id, "run_at": run_at.isoformat(), "summary": summary, "items": items}
