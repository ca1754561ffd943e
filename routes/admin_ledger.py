# routes/admin_ledger.py
from fastapi import APIRouter, Depends

from deps.admin import require_admin
from deps.store import get_store
from services.ledger_invariants import list_referrer_balance_invariants
from trm.roles import Actor
from trm.storage.base import Store

router = APIRouter(prefix="/v1/admin/ledger", tags=["admin-ledger"])

@router.get("/invariants")
def ledger_invariants(
    only_failures: bool = False,
    admin: Actor = Depends(require_admin),
    store: Store = Depends(get_store),
):
    items = list_referrer_balance_invariants(store)
    mismatches = [i for i in items if not i["ok"]]
    return {
        "ok": not mismatches,
        "checked": len(items),
        "mismatches": len(mismatches),
        "items": mismatches if only_failures else items,
    }
