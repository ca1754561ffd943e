#main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from middleware import RequestContextMiddleware
from routes.admin_ledger import router as admin_ledger_router
from routes.admin_payments import router as admin_payments_router
from routes.admin_reconcile import router as admin_reconcile_router
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.payments import router as payments_router
from routes.referrals import router as referrals_router
from routes.webhooks import router as webhooks_router
from services.observability import configure_logging
from settings import settings
from trm.errors import DoubleSettlement, TrmError

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger("trm")


app = FastAPI(title="TRM Referral API", version="1.0.0")
app.add_middleware(RequestContextMiddleware)

# -----------------------------
# ROUTERS
# -----------------------------

app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(referrals_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(admin_payments_router)
app.include_router(admin_reconcile_router)
app.include_router(admin_ledger_router)


@app.exception_handler(TrmError)
async def trm_error_handler(request: Request, exc: TrmError):
    if isinstance(exc, DoubleSettlement):
        logger.critical("double settlement path=%s message=%s", request.url.path, exc.message)
    else:
        logger.info("request rejected path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.code, "message": exc.message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
