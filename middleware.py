# middleware.py
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics import increment_http_requests
from services.observability import set_request_id

logger = logging.getLogger("trm.http")

REQUEST_ID_HEADER = "X-Request-Id"
# webhook signatures and bearer tokens never reach the logs
MASKED_HEADERS = frozenset({"authorization", "cookie", "x-signature"})


def _loggable_headers(request: Request) -> dict:
    return {k: ("***" if k.lower() in MASKED_HEADERS else v) for k, v in request.headers.items()}


def _route_template(request: Request) -> str:
    # /v1/referrals/{referral_id}/status rather than the concrete id, to keep metric cardinality flat
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = req_id
        set_request_id(req_id)
        started = time.perf_counter()

        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[REQUEST_ID_HEADER] = req_id
            return response
        finally:
            increment_http_requests(_route_template(request), status)
            log = logger.warning if status >= 500 else logger.info
            log(
                "http_request %s",
                {
                    "request_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status": status,
                    "duration_ms": int((time.perf_counter() - started) * 1000),
                    "client": request.client.host if request.client else None,
                    "headers": _loggable_headers(request),
                },
            )
            set_request_id(None)
