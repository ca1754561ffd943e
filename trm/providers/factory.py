# trm/providers/factory.py
from __future__ import annotations

from typing import Dict, Optional

from trm.payments.model import canonical_provider
from trm.providers.base import PaymentProvider
from trm.providers.config import payment_mode, provider_enabled

_PROVIDER_CACHE: Dict[str, PaymentProvider] = {}


def get_provider(name: str) -> Optional[PaymentProvider]:
    key = canonical_provider(name)
    if not key or not provider_enabled(key):
        return None

    mode = payment_mode()
    cache_key = f"{mode}:{key}"
    if cache_key in _PROVIDER_CACHE:
        return _PROVIDER_CACHE[cache_key]

    provider: PaymentProvider
    if key == "bank_transfer":
        from trm.providers.bank_transfer import BankTransferProvider
        provider = BankTransferProvider()

    elif mode == "sandbox":
        from trm.providers.sandbox import SandboxProvider
        provider = SandboxProvider(key)

    elif key == "KBZPay":
        from trm.providers.kbzpay import KBZPayProvider
        provider = KBZPayProvider()

    elif key == "WavePay":
        from trm.providers.wavepay import WavePayProvider
        provider = WavePayProvider()

    elif key == "AYAPay":
        from trm.providers.ayapay import AYAPayProvider
        provider = AYAPayProvider()

    else:
        return None

    _PROVIDER_CACHE[cache_key] = provider
    return provider


def reset_provider_cache() -> None:
    _PROVIDER_CACHE.clear()
