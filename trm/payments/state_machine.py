# trm/payments/state_machine.py
from trm.errors import InvalidTransition

ALLOWED = {
    "pending": {"processing", "completed", "failed"},
    "processing": {"completed", "failed"},
    "completed": {"reversed"},
    "failed": set(),
    "reversed": set(),
}

TERMINAL_STATUSES = ("completed", "failed", "reversed")
OPEN_STATUSES = ("pending", "processing")

# pending < processing < terminal; used to drop late, stale provider reports
_RANK = {"pending": 0, "processing": 1, "completed": 2, "failed": 2, "reversed": 3}


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal payment transition: {old} -> {new}")


def is_stale_report(old: str, new: str) -> bool:
    """
    A provider report that would move the transaction backwards (e.g. `processing`
    arriving after `completed`) carries no new information.
    """
    return new in _RANK and old in _RANK and _RANK[new] < _RANK[old] and new in OPEN_STATUSES
