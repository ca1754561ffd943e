# trm/providers/bank_transfer.py
from __future__ import annotations

from typing import Optional

from trm.providers.base import ProviderResult


class BankTransferProvider:
    """Manual rail: an operator settles these through the admin provider-result endpoint."""

    name = "bank_transfer"

    def initiate_payment(
        self,
        *,
        amount: int,
        currency: str,
        recipient_phone: Optional[str],
        merchant_reference: str,
    ) -> ProviderResult:
        return ProviderResult(
            status="processing",
            provider_reference=f"BANK-{merchant_reference}",
            response={"manual": True, "amount": int(amount), "currency": currency},
            raw_status="AWAITING_OPERATOR",
        )

    def query_status(self, provider_reference: str) -> ProviderResult:
        return ProviderResult(
            status="processing",
            provider_reference=provider_reference,
            raw_status="AWAITING_OPERATOR",
        )
