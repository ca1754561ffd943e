# trm/providers/config.py
from __future__ import annotations

from dataclasses import dataclass

from settings import settings
from trm.payments.model import canonical_provider


def payment_mode() -> str:
    return (settings.PAYMENT_MODE or "sandbox").strip().lower()


def enabled_providers() -> set[str]:
    raw = settings.PAYMENT_ENABLED_PROVIDERS or ""
    out = set()
    for p in raw.split(","):
        name = canonical_provider(p)
        if name:
            out.add(name)
    return out


def provider_enabled(provider: str) -> bool:
    name = canonical_provider(provider)
    return bool(name) and name in enabled_providers()


@dataclass(frozen=True)
class ProviderConfig:
    mode: str  # "sandbox" | "real"
    base_url: str
    merchant_id: str
    api_key: str
    app_id: str = ""


def kbzpay_config() -> ProviderConfig:
    return ProviderConfig(
        mode=payment_mode(),
        base_url=(settings.KBZPAY_BASE_URL or "").strip().rstrip("/"),
        merchant_id=(settings.KBZPAY_MERCHANT_CODE or "").strip(),
        api_key=(settings.KBZPAY_API_KEY or "").strip(),
        app_id=(settings.KBZPAY_APP_ID or "").strip(),
    )


def wavepay_config() -> ProviderConfig:
    return ProviderConfig(
        mode=payment_mode(),
        base_url=(settings.WAVEPAY_BASE_URL or "").strip().rstrip("/"),
        merchant_id=(settings.WAVEPAY_MERCHANT_ID or "").strip(),
        api_key=(settings.WAVEPAY_API_KEY or "").strip(),
    )


def ayapay_config() -> ProviderConfig:
    return ProviderConfig(
        mode=payment_mode(),
        base_url=(settings.AYAPAY_BASE_URL or "").strip().rstrip("/"),
        merchant_id=(settings.AYAPAY_MERCHANT_ID or "").strip(),
        api_key=(settings.AYAPAY_API_KEY or "").strip(),
    )


def webhook_secret(provider: str) -> str | None:
    name = canonical_provider(provider)
    key = {
        "KBZPay": "KBZPAY_WEBHOOK_SECRET",
        "WavePay": "WAVEPAY_WEBHOOK_SECRET",
        "AYAPay": "AYAPAY_WEBHOOK_SECRET",
        "bank_transfer": "BANK_TRANSFER_WEBHOOK_SECRET",
    }.get(name or "")
    if not key:
        return None
    value = (getattr(settings, key, "") or "").strip()
    return value or None
