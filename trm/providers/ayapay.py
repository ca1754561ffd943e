# trm/providers/ayapay.py
from __future__ import annotations

from typing import Optional

from settings import settings
from trm.errors import ProviderUnavailable
from trm.providers.base import ProviderResult, map_provider_status
from trm.providers.config import ayapay_config
from trm.providers.http import HttpClient, HttpResponse, raise_for_query_error, raise_for_retryable

SUCCESS_CODE = "0000"


class AYAPayProvider:
    name = "AYAPay"

    def __init__(self, http: Optional[HttpClient] = None):
        self.http = http or HttpClient(timeout_s=float(settings.PAYMENT_HTTP_TIMEOUT_S))

    def initiate_payment(
        self,
        *,
        amount: int,
        currency: str,
        recipient_phone: Optional[str],
        merchant_reference: str,
    ) -> ProviderResult:
        cfg = _require_config()
        if not recipient_phone:
            return ProviderResult(status="failed", error="Missing recipient phone")

        body = {
            "merchantId": cfg.merchant_id,
            "externalTransactionId": merchant_reference,
            "amount": int(amount),
            "currency": currency,
            "recipientAccount": recipient_phone,
        }
        resp = self.http.post(
            f"{cfg.base_url}/merchant/payout",
            headers={"x-api-key": cfg.api_key, "Content-Type": "application/json"},
            json_body=body,
        )
        raise_for_retryable(self.name, resp)
        return _parse(resp, fallback_reference=None)

    def query_status(self, provider_reference: str) -> ProviderResult:
        cfg = _require_config()
        resp = self.http.get(
            f"{cfg.base_url}/merchant/payout/{provider_reference}",
            headers={"x-api-key": cfg.api_key},
        )
        raise_for_query_error(self.name, resp)
        return _parse(resp, fallback_reference=provider_reference, query=True)


def _require_config():
    cfg = ayapay_config()
    if not (cfg.base_url and cfg.merchant_id and cfg.api_key):
        raise ProviderUnavailable("AYAPay is not configured")
    return cfg


def _parse(resp: HttpResponse, *, fallback_reference: Optional[str], query: bool = False) -> ProviderResult:
    body = resp.json or {}
    code = str(body.get("statusCode") or "")
    reference = body.get("payoutId") or body.get("transactionId") or fallback_reference

    if resp.status_code >= 400 or code != SUCCESS_CODE:
        if query:
            reason = body.get("statusMessage") or code or resp.status_code
            raise ProviderUnavailable(f"AYAPay status query rejected: {reason}")
        return ProviderResult(
            status="failed",
            provider_reference=reference,
            response={"http_status": resp.status_code, "body": body},
            error=body.get("statusMessage") or f"statusCode {code or resp.status_code}",
            raw_status=code or None,
        )

    raw = body.get("transactionStatus") or body.get("status")
    status = map_provider_status(raw) if raw else "processing"
    return ProviderResult(status=status, provider_reference=reference, response=body, raw_status=raw)
