# trm/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Literal

ProviderStatus = Literal["pending", "processing", "completed", "failed"]

_COMPLETED = {"SUCCESS", "SUCCESSFUL", "SUCCEEDED", "COMPLETED", "COMPLETE", "PAID", "CONFIRMED"}
_FAILED = {"FAIL", "FAILED", "FAILURE", "REJECTED", "CANCELLED", "CANCELED", "CLOSED", "EXPIRED", "DECLINED"}
_PENDING = {"PENDING", "CREATED", "INITIATED", "NEW", "WAITING"}


@dataclass(frozen=True)
class ProviderResult:
    status: ProviderStatus
    provider_reference: Optional[str] = None
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    raw_status: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


class PaymentProvider(Protocol):
    name: str

    def initiate_payment(
        self,
        *,
        amount: int,
        currency: str,
        recipient_phone: Optional[str],
        merchant_reference: str,
    ) -> ProviderResult: ...

    def query_status(self, provider_reference: str) -> ProviderResult: ...


def map_provider_status(raw: str | None) -> ProviderStatus:
    """
    Normalize the many provider spellings into the ledger's vocabulary.
    Unknown values are treated as in-flight so reconciliation keeps polling.
    """
    status = (raw or "").strip().upper().replace(" ", "_")
    if status in _COMPLETED:
        return "completed"
    if status in _FAILED:
        return "failed"
    if status in _PENDING:
        return "pending"
    return "processing"
