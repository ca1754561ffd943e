from __future__ import annotations

import argparse
import json
import logging

from services.payment_stats import payment_stats
from settings import settings
from trm.storage.factory import get_store


def _ks(amount: int) -> str:
    return f"{amount:,} Ks"


def main() -> None:
    parser = argparse.ArgumentParser(description="Print payment statistics.")
    parser.add_argument("--json", action="store_true", help="emit the raw report as JSON")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    stats = payment_stats(get_store())

    if args.json:
        print(json.dumps(stats, default=str, indent=2))
        return

    print("== by status ==")
    for status, s in sorted(stats["by_status"].items()):
        print(f"{status}: count={s['count']} amount={_ks(s['amount'])} fees={_ks(s['fees'])} net={_ks(s['net_amount'])}")

    for name, p in stats["periods"].items():
        print(f"== {name} (since {p['since']}) ==")
        print(
            f"count={p['count']} amount={_ks(p['amount'])} fees={_ks(p['fees'])} "
            f"completed={p['completed_count']} ({p['success_rate']}%) completed_amount={_ks(p['completed_amount'])}"
        )

    print("== by provider ==")
    for p in stats["by_provider"]:
        print(f"{p['provider']}: count={p['count']} volume={_ks(p['amount'])} success_rate={p['success_rate']}%")

    print("== by type ==")
    for tx_type, t in sorted(stats["by_type"].items()):
        print(f"{tx_type}: count={t['count']} amount={_ks(t['amount'])}")


if __name__ == "__main__":
    main()
