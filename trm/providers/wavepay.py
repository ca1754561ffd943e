# trm/providers/wavepay.py
from __future__ import annotations

from typing import Optional

from settings import settings
from trm.errors import ProviderUnavailable
from trm.providers.base import ProviderResult, map_provider_status
from trm.providers.config import wavepay_config
from trm.providers.http import HttpClient, HttpResponse, raise_for_query_error, raise_for_retryable


class WavePayProvider:
    name = "WavePay"

    def __init__(self, http: Optional[HttpClient] = None):
        self.http = http or HttpClient(timeout_s=float(settings.PAYMENT_HTTP_TIMEOUT_S))

    def _headers(self, api_key: str, merchant_id: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "X-Merchant-Id": merchant_id,
            "Content-Type": "application/json",
        }

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
            "merchant_reference_id": merchant_reference,
            "amount": int(amount),
            "currency": currency,
            "recipient_phone": recipient_phone,
        }
        resp = self.http.post(
            f"{cfg.base_url}/v2/payouts",
            headers=self._headers(cfg.api_key, cfg.merchant_id),
            json_body=body,
        )
        raise_for_retryable(self.name, resp)
        return _parse(resp, fallback_reference=None)

    def query_status(self, provider_reference: str) -> ProviderResult:
        cfg = _require_config()
        resp = self.http.get(
            f"{cfg.base_url}/v2/payouts/{provider_reference}",
            headers=self._headers(cfg.api_key, cfg.merchant_id),
        )
        raise_for_query_error(self.name, resp)
        return _parse(resp, fallback_reference=provider_reference, query=True)


def _require_config():
    cfg = wavepay_config()
    if not (cfg.base_url and cfg.merchant_id and cfg.api_key):
        raise ProviderUnavailable("WavePay is not configured")
    return cfg


def _parse(resp: HttpResponse, *, fallback_reference: Optional[str], query: bool = False) -> ProviderResult:
    body = resp.json or {}
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    reference = data.get("payout_id") or data.get("transaction_id") or fallback_reference

    if resp.status_code >= 400 or (body.get("status") or "").lower() != "success":
        if query:
            raise ProviderUnavailable(f"WavePay status query rejected: {body.get('message') or resp.status_code}")
        return ProviderResult(
            status="failed",
            provider_reference=reference,
            response={"http_status": resp.status_code, "body": body},
            error=body.get("message") or f"HTTP {resp.status_code}",
            raw_status=body.get("status"),
        )

    raw = data.get("status")
    status = map_provider_status(raw) if raw else "processing"
    return ProviderResult(status=status, provider_reference=reference, response=body, raw_status=raw)
