from __future__ import annotations

from typing import Any

from trm.payments.model import PaymentTransaction
from trm.storage.base import Store, UnitOfWork
from trm.users.model import User

# a failed or reversed payout is still owed, so it stays in pending_balance;
# a failed payout that was reissued is owed through its replacement instead
_OWED_STATUSES = ("pending", "processing", "failed", "reversed")


def _check_referrer_balance(uow: UnitOfWork, user: User) -> dict[str, Any]:
    payouts: list[PaymentTransaction] = [
        tx
        for tx in uow.payments.list(recipient_id=user.id, limit=100_000)
        if tx.type == "commission_payout"
    ]
    reissued = {tx.reissue_of for tx in payouts if tx.reissue_of is not None}
    owed = sum(tx.amount for tx in payouts if tx.status in _OWED_STATUSES and tx.id not in reissued)
    disbursed = sum(tx.amount for tx in payouts if tx.status == "completed")

    pending_diff = int(user.pending_balance) - int(owed)
    disbursed_diff = int(user.disbursed_balance) - int(disbursed)
    identity_ok = user.balance_identity_holds

    return {
        "user_id": str(user.id),
        "pending_balance": int(user.pending_balance),
        "ledger_pending": int(owed),
        "pending_diff": pending_diff,
        "disbursed_balance": int(user.disbursed_balance),
        "ledger_disbursed": int(disbursed),
        "disbursed_diff": disbursed_diff,
        "identity_ok": identity_ok,
        "ok": pending_diff == 0 and disbursed_diff == 0 and identity_ok,
    }


def assert_referrer_balance_matches_ledger(store: Store, user_id) -> dict[str, Any] | None:
    with store.begin() as uow:
        user = uow.users.get(user_id)
        if user is None:
            return None
        return _check_referrer_balance(uow, user)


def list_referrer_balance_invariants(store: Store) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    with store.begin() as uow:
        for user in uow.users.list_referrers():
            items.append(_check_referrer_balance(uow, user))
    return items
