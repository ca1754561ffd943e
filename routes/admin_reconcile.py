from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from deps.admin import require_admin
from deps.store import get_store
from schemas import ReconcileRunRequest
from trm.roles import Actor
from trm.storage.base import Store
from trm.workers.reconcile_worker import run_reconciliation


router = APIRouter(prefix="/v1/admin/reconcile", tags=["admin-reconcile"])


@router.post("/run")
def run_reconcile(
    req: Optional[ReconcileRunRequest] = Body(default=None),
    admin: Actor = Depends(require_admin),
    store: Store = Depends(get_store),
):
    req = req or ReconcileRunRequest()
    report = run_reconciliation(
        store,
        stale_after_seconds=req.stale_after_seconds,
        batch_size=req.batch_size,
    )
    with store.begin() as uow:
        uow.audit.write(
            actor_id=admin.user_id,
            action="reconcile.run",
            target_id=report["id"],
            metadata={"summary": report["summary"]},
        )
    return report


@router.get("/reports")
def list_reconcile_reports(
    limit: int = 20,
    admin: Actor = Depends(require_admin),
    store: Store = Depends(get_store),
):
    limit = max(1, min(limit, 200))
    with store.begin() as uow:
        rows = uow.reports.list(limit=limit)
    return {"reports": rows, "count": len(rows), "limit": limit}


@router.get("/reports/{report_id}")
def get_reconcile_report(
    report_id: str,
    admin: Actor = Depends(require_admin),
    store: Store = Depends(get_store),
):
    with store.begin() as uow:
        row = uow.reports.get(report_id)
    if not row:
        raise HTTPException(status_code=404, detail="REPORT_NOT_FOUND")
    return row
