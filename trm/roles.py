# trm/roles.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID


class Role(str, Enum):
    REFERRER = "referrer"
    COMPANY = "company"
    ADMIN = "admin"


# Statuses each role may move a referral into.
# Ownership (company owns the job, referrer owns the referral) is checked separately.
CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.REFERRER: frozenset({"withdrawn"}),
    Role.COMPANY: frozenset(
        {
            "under_review",
            "interview_scheduled",
            "interview_completed",
            "offer_extended",
            "hired",
            "rejected",
        }
    ),
    Role.ADMIN: frozenset(
        {
            "under_review",
            "interview_scheduled",
            "interview_completed",
            "withdrawn",
        }
    ),
}


@dataclass(frozen=True)
class Actor:
    user_id: UUID
    role: Role
    company_id: Optional[UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def can_set(self, status: str) -> bool:
        return status in CAPABILITIES.get(self.role, frozenset())


def parse_role(value: str | None) -> Role:
    raw = (value or "").strip().lower()
    try:
        return Role(raw)
    except ValueError:
        raise ValueError(f"Unknown role: {value!r}")
