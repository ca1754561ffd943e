# trm/providers/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from services.redaction import redact_dict
from trm.errors import ProviderUnavailable

logger = logging.getLogger("trm.providers.http")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str


class HttpClient:
    def __init__(self, timeout_s: float = 20.0, follow_redirects: bool = True):
        self._client = httpx.Client(timeout=timeout_s, follow_redirects=follow_redirects)

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
    ) -> HttpResponse:
        logger.debug("POST %s body=%s", url, redact_dict(json_body or {}))
        r = self._send("POST", url, headers=headers, json_body=json_body)
        return self._wrap(r)

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str],
    ) -> HttpResponse:
        logger.debug("GET %s", url)
        r = self._send("GET", url, headers=headers)
        return self._wrap(r)

    def _send(self, method: str, url: str, *, headers: dict[str, str], json_body: Any = None) -> httpx.Response:
        try:
            return self._client.request(method, url, headers=headers, json=json_body)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(f"Gateway timeout: {method} {url}") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Provider transport error: {type(exc).__name__}") from exc

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = None
        logger.debug("-> status=%s", r.status_code)
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)


def is_retryable_http(code: int) -> bool:
    # transient / throttling / gateway issues
    return code in (408, 425, 429, 500, 502, 503, 504)


def raise_for_retryable(provider: str, resp: HttpResponse) -> None:
    if is_retryable_http(resp.status_code):
        raise ProviderUnavailable(f"{provider} returned HTTP {resp.status_code}")


def raise_for_query_error(provider: str, resp: HttpResponse) -> None:
    # a status lookup that errors out says nothing about the payout itself
    if resp.status_code >= 400:
        raise ProviderUnavailable(f"{provider} status query returned HTTP {resp.status_code}")
    if resp.json is None:
        raise ProviderUnavailable(f"{provider} status query returned an unreadable body")
