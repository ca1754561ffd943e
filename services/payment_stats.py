from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from trm.storage.base import Store

# windows start at UTC midnight of the reporting day
_PERIODS = (("today", 0), ("week", 7), ("month", 30))


def _success_rate(completed: int, count: int) -> float:
    return round(completed * 100.0 / count, 1) if count else 0.0


def _by_status(rows: Iterable[dict[str, Any]]) -> dict[str, dict[str, int]]:
    out: dict[str, dict[str, int]] = {}
    for r in rows:
        s = out.setdefault(r["status"], {"count": 0, "amount": 0, "fees": 0, "net_amount": 0})
        for key in s:
            s[key] += r[key]
    return out


def _period(rows: list[dict[str, Any]], since: datetime) -> dict[str, Any]:
    count = sum(r["count"] for r in rows)
    completed = [r for r in rows if r["status"] == "completed"]
    completed_count = sum(r["count"] for r in completed)
    return {
        "since": since.isoformat(),
        "count": count,
        "amount": sum(r["amount"] for r in rows),
        "fees": sum(r["fees"] for r in rows),
        "completed_count": completed_count,
        "completed_amount": sum(r["amount"] for r in completed),
        "success_rate": _success_rate(completed_count, count),
    }


def _by_provider(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for r in rows:
        p = out.setdefault(r["provider"], {"provider": r["provider"], "count": 0, "amount": 0, "completed_count": 0})
        p["count"] += r["count"]
        p["amount"] += r["amount"]
        if r["status"] == "completed":
            p["completed_count"] += r["count"]
    for p in out.values():
        p["success_rate"] = _success_rate(p["completed_count"], p["count"])
    return sorted(out.values(), key=lambda p: (-p["amount"], p["provider"]))


def _by_type(rows: Iterable[dict[str, Any]]) -> dict[str, dict[str, int]]:
    out: dict[str, dict[str, int]] = {}
    for r in rows:
        t = out.setdefault(r["type"], {"count": 0, "amount": 0})
        t["count"] += r["count"]
        t["amount"] += r["amount"]
    return out


def payment_stats(store: Store, *, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Payment volume report for operators: totals per status, today/week/month
    windows, per-provider volume and success rate, and per-type totals.
    Amounts are in minor units of the ledger currency.
    """
    now = now or datetime.now(timezone.utc)
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    with store.begin() as uow:
        overall = uow.payments.summarize()
        windows = {}
        for name, days in _PERIODS:
            since = day_start - timedelta(days=days)
            windows[name] = _period(uow.payments.summarize(created_since=since), since)

    return {
        "generated_at": now,
        "by_status": _by_status(overall),
        "periods": windows,
        "by_provider": _by_provider(overall),
        "by_type": _by_type(overall),
    }
