# trm/workers/payout_worker.py
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from settings import settings
from trm.errors import TrmError
from trm.payments.ledger import ProviderLookup, submit_to_provider
from trm.providers.factory import get_provider as default_get_provider
from trm.storage.base import Store
from trm.storage.factory import get_store

logger = logging.getLogger("trm.payouts")

# a claimed row is not picked again until its lease expires
LEASE_SECONDS = 60


def _now() -> datetime:
    return datetime.now(timezone.utc)


def process_once(
    store: Store,
    *,
    batch_size: Optional[int] = None,
    get_provider: ProviderLookup = default_get_provider,
    now: Optional[datetime] = None,
) -> int:
    """
    Forward pending commission payouts to their provider. Returns the number
    of transactions submitted without error.
    """
    now = now or _now()
    limit = int(settings.PAYOUT_BATCH_SIZE if batch_size is None else batch_size)

    with store.begin() as uow:
        claimed = uow.payments.claim_dispatchable(
            limit=limit,
            lease_before=now - timedelta(seconds=LEASE_SECONDS),
            now=now,
        )

    if claimed:
        logger.info("payout dispatch claimed=%s", len(claimed))

    submitted = 0
    for tx in claimed:
        try:
            with store.begin() as uow:
                after = submit_to_provider(uow, tx.id, get_provider=get_provider, now=now)
        except TrmError as exc:
            logger.warning("payout submit failed number=%s code=%s error=%s", tx.transaction_number, exc.code, exc.message)
            continue
        submitted += 1
        logger.info("payout submitted number=%s status=%s ref=%s", tx.transaction_number, after.status, after.provider_reference)
    return submitted


def run_forever(poll_seconds: Optional[float] = None) -> None:
    interval = float(settings.PAYOUT_POLL_SECONDS if poll_seconds is None else poll_seconds)
    store = get_store()
    logger.info("payout worker started interval=%ss", interval)
    while True:
        try:
            process_once(store)
        except Exception:
            logger.exception("payout worker iteration failed")
        time.sleep(interval)


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    run_forever()
