# scripts/reconcile_daemon.py
from __future__ import annotations

import logging
import time

from settings import settings
from trm.storage.factory import get_store
from trm.workers.reconcile_worker import run_reconciliation


logger = logging.getLogger("trm.reconcile.daemon")


def _interval_seconds() -> int:
    return max(1, int(settings.RECONCILE_INTERVAL_SECONDS))


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    interval = _interval_seconds()
    store = get_store()
    logger.info("Reconcile daemon starting; interval=%ss", interval)

    while True:
        try:
            result = run_reconciliation(store)
        except KeyboardInterrupt:
            logger.info("Reconcile daemon exiting")
            raise
        except Exception:
            # the next cycle picks up whatever this one left behind
            logger.exception("Reconcile run failed")
        else:
            summary = result.get("summary") or {}
            logger.info(
                "Reconcile report %s | checked=%s updated=%s failed=%s skipped=%s",
                result.get("id"),
                summary.get("checked"),
                summary.get("updated"),
                summary.get("failed"),
                summary.get("skipped"),
            )
        time.sleep(interval)


if __name__ == "__main__":
    main()
