# trm/providers/sandbox.py
from __future__ import annotations

from typing import Optional

from trm.providers.base import ProviderResult


class SandboxProvider:
    """
    Deterministic test/dev gateway used when PAYMENT_MODE=sandbox.

    - a merchant reference or phone containing "fail" is rejected at initiation
    - otherwise initiation returns `processing` with reference SBX-<merchant_reference>
    - status queries report `completed`, unless the reference contains "fail" / "hold"
    """

    def __init__(self, name: str):
        self.name = name

    def initiate_payment(
        self,
        *,
        amount: int,
        currency: str,
        recipient_phone: Optional[str],
        merchant_reference: str,
    ) -> ProviderResult:
        ref = f"SBX-{merchant_reference}"
        haystack = f"{merchant_reference} {recipient_phone or ''}".lower()
        if "fail" in haystack or amount <= 0:
            return ProviderResult(
                status="failed",
                provider_reference=ref,
                response={"sandbox": True, "provider": self.name},
                error="Sandbox rejection",
                raw_status="FAILED",
            )
        return ProviderResult(
            status="processing",
            provider_reference=ref,
            response={"sandbox": True, "provider": self.name, "amount": amount, "currency": currency},
            raw_status="PROCESSING",
        )

    def query_status(self, provider_reference: str) -> ProviderResult:
        ref = (provider_reference or "").lower()
        if "fail" in ref:
            return ProviderResult(status="failed", provider_reference=provider_reference, raw_status="FAILED")
        if "hold" in ref:
            return ProviderResult(status="processing", provider_reference=provider_reference, raw_status="PROCESSING")
        return ProviderResult(status="completed", provider_reference=provider_reference, raw_status="SUCCESS")
