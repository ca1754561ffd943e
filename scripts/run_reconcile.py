from __future__ import annotations

import argparse
import logging

from settings import settings
from trm.storage.factory import get_store
from trm.workers.reconcile_worker import run_reconciliation


def main() -> None:
    parser = argparse.ArgumentParser(description="Run payment reconciliation once.")
    parser.add_argument("--stale-seconds", type=int, default=settings.RECONCILE_STALE_SECONDS)
    parser.add_argument("--delay-seconds", type=float, default=settings.RECONCILE_DELAY_SECONDS)
    parser.add_argument("--batch-size", type=int, default=settings.RECONCILE_BATCH_SIZE)
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    result = run_reconciliation(
        get_store(),
        stale_after_seconds=args.stale_seconds,
        delay_seconds=args.delay_seconds,
        batch_size=args.batch_size,
    )
    summary = result["summary"]

    print("reconcile_report_id:", result["id"])
    print(
        "counts:",
        f"checked={summary['checked']}",
        f"updated={summary['updated']}",
        f"failed={summary['failed']}",
        f"skipped={summary['skipped']}",
    )


if __name__ == "__main__":
    main()
