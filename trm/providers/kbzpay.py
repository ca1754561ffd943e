# trm/providers/kbzpay.py
from __future__ import annotations

import hashlib
import logging
import time
import uuid
from typing import Any, Optional

from settings import settings
from trm.errors import ProviderUnavailable
from trm.providers.base import ProviderResult, map_provider_status
from trm.providers.config import kbzpay_config
from trm.providers.http import HttpClient, HttpResponse, raise_for_query_error, raise_for_retryable

logger = logging.getLogger("trm.providers.kbzpay")

PAYOUT_PATH = "/payment/gateway/payout"
QUERY_PATH = "/payment/gateway/queryorder"
API_VERSION = "1.0"


class KBZPayProvider:
    name = "KBZPay"

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

        biz = {
            "merch_order_id": merchant_reference,
            "merch_code": cfg.merchant_id,
            "appid": cfg.app_id,
            "trade_type": "PAYOUT",
            "total_amount": str(int(amount)),
            "trans_currency": currency,
            "payee_msisdn": recipient_phone,
        }
        resp = self.http.post(
            f"{cfg.base_url}{PAYOUT_PATH}",
            headers={"Content-Type": "application/json"},
            json_body=_envelope("kbz.payment.payout", biz, cfg.api_key),
        )
        raise_for_retryable(self.name, resp)
        return _parse(resp, fallback_reference=merchant_reference, default_status="processing")

    def query_status(self, provider_reference: str) -> ProviderResult:
        cfg = _require_config()
        biz = {
            "merch_order_id": provider_reference,
            "merch_code": cfg.merchant_id,
            "appid": cfg.app_id,
        }
        resp = self.http.post(
            f"{cfg.base_url}{QUERY_PATH}",
            headers={"Content-Type": "application/json"},
            json_body=_envelope("kbz.payment.queryorder", biz, cfg.api_key),
        )
        raise_for_query_error(self.name, resp)
        return _parse(resp, fallback_reference=provider_reference, default_status="processing", query=True)


def _require_config():
    cfg = kbzpay_config()
    if not (cfg.base_url and cfg.merchant_id and cfg.api_key):
        raise ProviderUnavailable("KBZPay is not configured")
    return cfg


def _envelope(method: str, biz: dict[str, Any], api_key: str) -> dict[str, Any]:
    request = {
        "timestamp": str(int(time.time())),
        "method": method,
        "nonce_str": uuid.uuid4().hex,
        "version": API_VERSION,
        "sign_type": "SHA256",
        "biz_content": biz,
    }
    request["sign"] = _sign(request, biz, api_key)
    return {"Request": request}


def _sign(request: dict[str, Any], biz: dict[str, Any], api_key: str) -> str:
    # sorted key=value pairs of the flattened request, followed by &key=<api key>
    flat = {k: v for k, v in request.items() if k not in ("biz_content", "sign", "sign_type")}
    flat.update(biz)
    joined = "&".join(f"{k}={flat[k]}" for k in sorted(flat) if flat[k] not in (None, ""))
    return hashlib.sha256(f"{joined}&key={api_key}".encode("utf-8")).hexdigest().upper()


def _parse(resp: HttpResponse, *, fallback_reference: str, default_status: str, query: bool = False) -> ProviderResult:
    body = resp.json or {}
    envelope = body.get("Response") if isinstance(body.get("Response"), dict) else None
    if resp.status_code >= 400 or envelope is None:
        if query:
            raise ProviderUnavailable(f"KBZPay status query returned HTTP {resp.status_code} without a Response envelope")
        return ProviderResult(
            status="failed",
            provider_reference=fallback_reference,
            response={"http_status": resp.status_code, "body": body},
            error=f"HTTP {resp.status_code}",
        )

    result_code = str(envelope.get("ResultCode") or "")
    reference = envelope.get("OrderId") or envelope.get("merch_order_id") or fallback_reference
    if result_code != "0":
        if query:
            raise ProviderUnavailable(f"KBZPay status query rejected: {envelope.get('ResultMsg') or result_code}")
        return ProviderResult(
            status="failed",
            provider_reference=reference,
            response=envelope,
            error=envelope.get("ResultMsg") or f"ResultCode {result_code}",
            raw_status=result_code,
        )

    raw = envelope.get("TransStatus")
    status = map_provider_status(raw) if raw else default_status
    return ProviderResult(status=status, provider_reference=reference, response=envelope, raw_status=raw)
