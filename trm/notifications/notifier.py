# trm/notifications/notifier.py
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from services.redaction import redact_dict
from settings import settings
from trm.referrals.model import Referral, StatusHistoryEntry

logger = logging.getLogger("trm.notifications")


class Notifier(Protocol):
    def referral_status_changed(self, referral: Referral, entry: StatusHistoryEntry) -> None: ...


def _payload(referral: Referral, entry: StatusHistoryEntry) -> dict[str, Any]:
    return redact_dict(
        {
            "event": "referral.status_changed",
            "referral_id": str(referral.id),
            "job_id": str(referral.job_id),
            "referrer_id": str(referral.referrer_id),
            "status": entry.status,
            "changed_by_role": entry.changed_by_role,
            "note": entry.note,
            "candidate_email": referral.referred_person.email,
            "at": entry.timestamp.isoformat(),
        }
    )


class LoggingNotifier:
    def referral_status_changed(self, referral: Referral, entry: StatusHistoryEntry) -> None:
        logger.info("notify %s", _payload(referral, entry))


class HttpNotifier:
    def __init__(self, url: str, timeout_s: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout_s)

    def referral_status_changed(self, referral: Referral, entry: StatusHistoryEntry) -> None:
        resp = self._client.post(self.url, json=_payload(referral, entry))
        resp.raise_for_status()


_NOTIFIER: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _NOTIFIER
    if _NOTIFIER is None:
        url = (settings.NOTIFY_WEBHOOK_URL or "").strip()
        if url:
            _NOTIFIER = HttpNotifier(url, timeout_s=float(settings.NOTIFY_HTTP_TIMEOUT_S))
        else:
            _NOTIFIER = LoggingNotifier()
    return _NOTIFIER


def set_notifier(notifier: Optional[Notifier]) -> None:
    global _NOTIFIER
    _NOTIFIER = notifier
