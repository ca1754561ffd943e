# trm/referrals/state_machine.py
from __future__ import annotations

from trm.errors import InvalidTransition

PIPELINE = (
    "submitted",
    "under_review",
    "interview_scheduled",
    "interview_completed",
    "offer_extended",
    "hired",
)
FAILURE_STATES = ("rejected", "withdrawn")
TERMINAL_STATES = frozenset({"hired", *FAILURE_STATES})
ALL_STATUSES = PIPELINE + FAILURE_STATES


def allowed_targets(old: str, *, allow_skip_ahead: bool = True) -> frozenset[str]:
    if old in TERMINAL_STATES or old not in PIPELINE:
        return frozenset()

    idx = PIPELINE.index(old)
    forward = PIPELINE[idx + 1:] if allow_skip_ahead else PIPELINE[idx + 1:idx + 2]
    return frozenset(forward) | frozenset(FAILURE_STATES)


def assert_transition(old: str, new: str, *, allow_skip_ahead: bool = True) -> None:
    if new not in allowed_targets(old, allow_skip_ahead=allow_skip_ahead):
        raise InvalidTransition(f"Illegal referral transition: {old} -> {new}")


def is_legal_history(statuses: list[str]) -> bool:
    """
    History starts at submitted and every consecutive pair is a legal edge.
    """
    if not statuses or statuses[0] != "submitted":
        return False
    for old, new in zip(statuses, statuses[1:]):
        if new not in allowed_targets(old):
            return False
    return True
