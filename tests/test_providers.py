from __future__ import annotations

import httpx
import pytest

from settings import settings
from trm.errors import ProviderUnavailable
from trm.providers.ayapay import AYAPayProvider
from trm.providers.bank_transfer import BankTransferProvider
from trm.providers.base import map_provider_status
from trm.providers.factory import get_provider, reset_provider_cache
from trm.providers.http import HttpClient, HttpResponse
from trm.providers.kbzpay import KBZPayProvider
from trm.providers.sandbox import SandboxProvider
from trm.providers.wavepay import WavePayProvider


class FakeHttp:
    def __init__(self, *responses: HttpResponse):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, *, headers, json_body=None):
        self.calls.append(("POST", url, headers, json_body))
        return self.responses.pop(0)

    def get(self, url, *, headers):
        self.calls.append(("GET", url, headers, None))
        return self.responses.pop(0)


def _resp(status_code: int, body=None) -> HttpResponse:
    return HttpResponse(status_code=status_code, json=body, text="")


@pytest.fixture
def real_gateways(monkeypatch):
    monkeypatch.setattr(settings, "KBZPAY_BASE_URL", "https://kbz.test/")
    monkeypatch.setattr(settings, "KBZPAY_MERCHANT_CODE", "M100")
    monkeypatch.setattr(settings, "KBZPAY_APP_ID", "app-1")
    monkeypatch.setattr(settings, "KBZPAY_API_KEY", "kbz-key")
    monkeypatch.setattr(settings, "WAVEPAY_BASE_URL", "https://wave.test")
    monkeypatch.setattr(settings, "WAVEPAY_MERCHANT_ID", "W200")
    monkeypatch.setattr(settings, "WAVEPAY_API_KEY", "wave-key")
    monkeypatch.setattr(settings, "AYAPAY_BASE_URL", "https://aya.test")
    monkeypatch.setattr(settings, "AYAPAY_MERCHANT_ID", "A300")
    monkeypatch.setattr(settings, "AYAPAY_API_KEY", "aya-key")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("SUCCESS", "completed"),
        ("paid", "completed"),
        ("Rejected", "failed"),
        ("EXPIRED", "failed"),
        ("created", "pending"),
        ("IN_PROGRESS", "processing"),
        (None, "processing"),
    ],
)
def test_map_provider_status(raw, expected):
    assert map_provider_status(raw) == expected


def test_kbzpay_payout_is_signed_and_parsed(real_gateways):
    http = FakeHttp(_resp(200, {"Response": {"ResultCode": "0", "OrderId": "KBZ-991", "TransStatus": "PROCESSING"}}))
    result = KBZPayProvider(http=http).initiate_payment(
        amount=127500, currency="MMK", recipient_phone="+959123456789", merchant_reference="TRM-1"
    )

    assert result.status == "processing"
    assert result.provider_reference == "KBZ-991"
    method, url, _, body = http.calls[0]
    assert (method, url) == ("POST", "https://kbz.test/payment/gateway/payout")
    request = body["Request"]
    assert request["biz_content"]["merch_order_id"] == "TRM-1"
    assert request["biz_content"]["total_amount"] == "127500"
    assert len(request["sign"]) == 64 and request["sign"] == request["sign"].upper()


def test_kbzpay_error_code_is_a_failed_payout(real_gateways):
    http = FakeHttp(_resp(200, {"Response": {"ResultCode": "2001", "ResultMsg": "Payee not found"}}))
    result = KBZPayProvider(http=http).initiate_payment(
        amount=1000, currency="MMK", recipient_phone="+959123456789", merchant_reference="TRM-2"
    )

    assert result.status == "failed"
    assert result.error == "Payee not found"
    assert result.provider_reference == "TRM-2"


def test_kbzpay_query_success(real_gateways):
    http = FakeHttp(_resp(200, {"Response": {"ResultCode": "0", "OrderId": "KBZ-991", "TransStatus": "SUCCESS"}}))
    result = KBZPayProvider(http=http).query_status("KBZ-991")

    assert result.status == "completed"
    assert http.calls[0][1] == "https://kbz.test/payment/gateway/queryorder"


def test_gateway_outage_is_provider_unavailable(real_gateways):
    with pytest.raises(ProviderUnavailable):
        KBZPayProvider(http=FakeHttp(_resp(503))).query_status("KBZ-1")
    with pytest.raises(ProviderUnavailable):
        WavePayProvider(http=FakeHttp(_resp(429))).query_status("WV-1")
    with pytest.raises(ProviderUnavailable):
        AYAPayProvider(http=FakeHttp(_resp(504))).query_status("AYA-1")


def test_rejected_status_query_is_provider_unavailable(real_gateways):
    with pytest.raises(ProviderUnavailable):
        WavePayProvider(http=FakeHttp(_resp(401, {"status": "error"}))).query_status("WV-1")
    with pytest.raises(ProviderUnavailable):
        WavePayProvider(http=FakeHttp(_resp(200, {"status": "error", "message": "bad key"}))).query_status("WV-1")
    with pytest.raises(ProviderUnavailable):
        KBZPayProvider(http=FakeHttp(_resp(404))).query_status("KBZ-1")
    with pytest.raises(ProviderUnavailable):
        KBZPayProvider(
            http=FakeHttp(_resp(200, {"Response": {"ResultCode": "9001", "ResultMsg": "sign error"}}))
        ).query_status("KBZ-1")
    with pytest.raises(ProviderUnavailable):
        AYAPayProvider(http=FakeHttp(_resp(403, {"statusCode": "E401"}))).query_status("AYA-1")
    with pytest.raises(ProviderUnavailable):
        AYAPayProvider(http=FakeHttp(_resp(200, None))).query_status("AYA-1")


def test_failed_status_reported_by_query_is_a_failed_payout(real_gateways):
    http = FakeHttp(_resp(200, {"statusCode": "0000", "payoutId": "AYA-9", "transactionStatus": "FAILED"}))
    result = AYAPayProvider(http=http).query_status("AYA-9")
    assert (result.status, result.provider_reference) == ("failed", "AYA-9")


def test_missing_credentials_is_provider_unavailable(monkeypatch):
    monkeypatch.setattr(settings, "KBZPAY_API_KEY", "")
    http = FakeHttp()
    with pytest.raises(ProviderUnavailable):
        KBZPayProvider(http=http).query_status("KBZ-1")
    assert http.calls == []


def test_wavepay_payout_and_query(real_gateways):
    http = FakeHttp(
        _resp(201, {"status": "success", "data": {"payout_id": "WV-55", "status": "PENDING"}}),
        _resp(200, {"status": "success", "data": {"payout_id": "WV-55", "status": "COMPLETED"}}),
    )
    provider = WavePayProvider(http=http)

    started = provider.initiate_payment(
        amount=5000, currency="MMK", recipient_phone="+959400000001", merchant_reference="TRM-3"
    )
    settled = provider.query_status("WV-55")

    assert (started.status, started.provider_reference) == ("pending", "WV-55")
    assert settled.status == "completed"
    _, url, headers, body = http.calls[0]
    assert url == "https://wave.test/v2/payouts"
    assert headers["Authorization"] == "Bearer wave-key"
    assert headers["X-Merchant-Id"] == "W200"
    assert body["merchant_reference_id"] == "TRM-3"
    assert http.calls[1][:2] == ("GET", "https://wave.test/v2/payouts/WV-55")


def test_wavepay_rejection(real_gateways):
    http = FakeHttp(_resp(400, {"status": "error", "message": "invalid msisdn"}))
    result = WavePayProvider(http=http).initiate_payment(
        amount=5000, currency="MMK", recipient_phone="+95940", merchant_reference="TRM-4"
    )
    assert result.status == "failed"
    assert result.error == "invalid msisdn"


def test_ayapay_payout(real_gateways):
    http = FakeHttp(_resp(200, {"statusCode": "0000", "payoutId": "AYA-9", "transactionStatus": "SUCCESS"}))
    result = AYAPayProvider(http=http).initiate_payment(
        amount=7000, currency="MMK", recipient_phone="+959500000002", merchant_reference="TRM-5"
    )

    assert (result.status, result.provider_reference) == ("completed", "AYA-9")
    _, url, headers, body = http.calls[0]
    assert url == "https://aya.test/merchant/payout"
    assert headers["x-api-key"] == "aya-key"
    assert body["externalTransactionId"] == "TRM-5"


def test_ayapay_non_success_code(real_gateways):
    http = FakeHttp(_resp(200, {"statusCode": "E102", "statusMessage": "Insufficient float"}))
    result = AYAPayProvider(http=http).initiate_payment(
        amount=7000, currency="MMK", recipient_phone="+959500000002", merchant_reference="TRM-7"
    )
    assert result.status == "failed"
    assert result.error == "Insufficient float"


def test_missing_phone_fails_without_calling_gateway(real_gateways):
    http = FakeHttp()
    result = AYAPayProvider(http=http).initiate_payment(
        amount=7000, currency="MMK", recipient_phone=None, merchant_reference="TRM-6"
    )
    assert result.status == "failed"
    assert http.calls == []


def test_http_client_timeout_is_provider_unavailable():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    client = HttpClient(timeout_s=1.0)
    client._client = httpx.Client(transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderUnavailable):
        client.get("https://kbz.test/ping", headers={})


def test_http_client_wraps_json():
    client = HttpClient(timeout_s=1.0)
    client._client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": 1})))
    resp = client.post("https://kbz.test/x", headers={}, json_body={"a": 1})
    assert resp.status_code == 200
    assert resp.json == {"ok": 1}


def test_sandbox_is_deterministic():
    provider = SandboxProvider("KBZPay")

    ok = provider.initiate_payment(amount=100, currency="MMK", recipient_phone="+9591", merchant_reference="TRM-A")
    rejected = provider.initiate_payment(amount=100, currency="MMK", recipient_phone="+9591", merchant_reference="fail-1")

    assert (ok.status, ok.provider_reference) == ("processing", "SBX-TRM-A")
    assert rejected.status == "failed"
    assert provider.query_status("SBX-TRM-A").status == "completed"
    assert provider.query_status("SBX-hold-1").status == "processing"
    assert provider.query_status("SBX-fail-1").status == "failed"


def test_bank_transfer_waits_for_operator():
    provider = BankTransferProvider()
    started = provider.initiate_payment(amount=100, currency="MMK", recipient_phone=None, merchant_reference="TRM-B")
    assert (started.status, started.provider_reference) == ("processing", "BANK-TRM-B")
    assert provider.query_status("BANK-TRM-B").status == "processing"


def test_factory_uses_sandbox_in_sandbox_mode():
    provider = get_provider("kbz_pay")
    assert isinstance(provider, SandboxProvider)
    assert provider.name == "KBZPay"
    assert get_provider("KBZPay") is provider
    assert isinstance(get_provider("bank"), BankTransferProvider)
    assert get_provider("paypal") is None


def test_factory_real_mode(monkeypatch, real_gateways):
    monkeypatch.setattr(settings, "PAYMENT_MODE", "real")
    reset_provider_cache()
    assert isinstance(get_provider("KBZPay"), KBZPayProvider)
    assert isinstance(get_provider("WavePay"), WavePayProvider)
    assert isinstance(get_provider("AYAPay"), AYAPayProvider)


def test_disabled_provider_is_not_built(monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_ENABLED_PROVIDERS", "KBZPAY")
    assert get_provider("WavePay") is None
    assert get_provider("KBZPay") is not None
