from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from db import fetch_migration_revision
from deps.store import get_store
from settings import settings
from trm.storage.base import Store

router = APIRouter(tags=["health"])
logger = logging.getLogger("trm.health")

MIGRATION_REVISION = "0002_payout_reissue"


def _check_store(store: Store) -> tuple[bool, str | None]:
    try:
        with store.begin() as uow:
            uow.reports.list(limit=1)
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _check_migrations() -> tuple[bool, str | None]:
    if settings.STORE_BACKEND == "memory":
        return True, MIGRATION_REVISION

    try:
        revision = fetch_migration_revision()
    except Exception:
        logger.warning("readyz: migration lookup failed", exc_info=True)
        return False, None
    return revision == MIGRATION_REVISION, revision


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "store_backend": settings.STORE_BACKEND,
        "payment_mode": settings.PAYMENT_MODE,
    }


@router.get("/readyz")
def readyz(store: Store = Depends(get_store)):
    store_ok, store_error = _check_store(store)
    migrations_ok, revision = _check_migrations()
    ready = bool(store_ok and migrations_ok)
    body = {
        "ready": ready,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "store_ok": store_ok,
        "store_error": store_error,
        "migrations_ok": migrations_ok,
        "migration_revision": revision,
        "expected_revision": MIGRATION_REVISION,
    }
    return JSONResponse(status_code=200 if ready else 503, content=body)
