from __future__ import annotations

import re
from typing import Any


REDACTED = "[REDACTED]"

_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
# +959... international and 09... local Myanmar mobile numbers
_MM_PHONE_RE = re.compile(r"\+\d{6,15}|\b09\d{7,9}\b")
_BEARER_RE = re.compile(r"\b(bearer|access_token|refresh_token)\b", re.IGNORECASE)

# dict keys whose values are dropped entirely (credentials, gateway signatures)
_SECRET_KEY_PARTS = ("token", "authorization", "secret", "signature", "password", "api_key", "apikey")


def mask_phone(value: str) -> str:
    """+959123456789 -> +9591****89; short values are left as they are."""
    if len(value) <= 8:
        return value
    return f"{value[:5]}****{value[-2:]}"


def mask_email(value: str) -> str:
    return _EMAIL_RE.sub(lambda m: f"{m.group(1)}***{m.group(2)}", value)


def redact_text(value: str) -> str:
    if _BEARER_RE.search(value):
        return REDACTED
    masked = mask_email(value)
    return _MM_PHONE_RE.sub(lambda m: mask_phone(m.group(0)), masked)


def _is_secret_key(key: str) -> bool:
    k = (key or "").lower().replace("-", "_")
    # KBZPay envelopes carry their request signature under "sign"
    return k == "sign" or any(part in k for part in _SECRET_KEY_PARTS)


def redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, (list, tuple)):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Copy of a provider request/response or notification payload that is safe to log.
    Candidate and payee emails/phones are masked, credentials are dropped.
    """
    return {k: REDACTED if _is_secret_key(k) else redact_value(v) for k, v in payload.items()}
