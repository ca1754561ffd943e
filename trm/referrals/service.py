# trm/referrals/service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from services.metrics import increment_referral_transition
from settings import settings
from trm.commissions.calculator import post_earnings
from trm.errors import DoubleSettlement, DuplicateReferral, Forbidden, InvalidTransition, NotFound
from trm.notifications.notifier import Notifier, get_notifier
from trm.referrals.model import Referral, ReferredPerson, StatusHistoryEntry
from trm.referrals.state_machine import ALL_STATUSES, assert_transition
from trm.roles import Actor, Role
from trm.storage.base import Store, UnitOfWork

logger = logging.getLogger("trm.referrals")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _owns_job(uow: UnitOfWork, actor: Actor, referral: Referral) -> bool:
    if actor.company_id is None:
        return False
    job = uow.jobs.get(referral.job_id)
    return job is not None and job.company_id == actor.company_id


def _ensure_can_view(uow: UnitOfWork, actor: Actor, referral: Referral) -> None:
    if actor.role is Role.ADMIN:
        return
    if actor.role is Role.REFERRER and referral.referrer_id == actor.user_id:
        return
    if actor.role is Role.COMPANY and _owns_job(uow, actor, referral):
        return
    raise Forbidden("Not allowed to access this referral")


def _ensure_can_set(uow: UnitOfWork, actor: Actor, referral: Referral, target: str) -> None:
    if not actor.can_set(target):
        raise Forbidden(f"Role {actor.role.value} may not set status {target}")
    if actor.role is Role.REFERRER and referral.referrer_id != actor.user_id:
        raise Forbidden("Referrers may only change their own referrals")
    if actor.role is Role.COMPANY and not _owns_job(uow, actor, referral):
        raise Forbidden("Company does not own this job")


def create_referral(
    store: Store,
    actor: Actor,
    *,
    job_id: UUID,
    referred_person: ReferredPerson,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Referral:
    if actor.role is not Role.REFERRER:
        raise Forbidden("Only referrers can submit referrals")

    now = now or _utcnow()
    with store.begin() as uow:
        if uow.jobs.get(job_id) is None:
            raise NotFound(f"Job {job_id} not found")
        if uow.referrals.find_by_candidate(job_id=job_id, referrer_id=actor.user_id, email=referred_person.email):
            raise DuplicateReferral("This candidate was already referred for the job")

        entry = StatusHistoryEntry(
            status="submitted",
            changed_by=actor.user_id,
            changed_by_role=actor.role.value,
            timestamp=now,
        )
        referral = Referral(
            id=uuid.uuid4(),
            referrer_id=actor.user_id,
            job_id=job_id,
            referred_person=referred_person,
            status="submitted",
            status_history=(entry,),
            created_at=now,
            updated_at=now,
            notes=notes,
        )
        uow.referrals.insert(referral)

    logger.info("referral submitted id=%s job_id=%s referrer_id=%s", referral.id, job_id, actor.user_id)
    return referral


def get_referral(store: Store, actor: Actor, referral_id: UUID) -> Referral:
    with store.begin() as uow:
        referral = uow.referrals.get(referral_id)
        if referral is None:
            raise NotFound(f"Referral {referral_id} not found")
        _ensure_can_view(uow, actor, referral)
        return referral


def list_referrals(store: Store, actor: Actor, *, limit: int = 50) -> list[Referral]:
    with store.begin() as uow:
        if actor.role is Role.REFERRER:
            return uow.referrals.list(referrer_id=actor.user_id, limit=limit)
        if actor.role is Role.COMPANY:
            if actor.company_id is None:
                return []
            return uow.referrals.list(company_id=actor.company_id, limit=limit)
        return uow.referrals.list(limit=limit)


def apply_transition(
    store: Store,
    referral_id: UUID,
    target_status: str,
    actor: Actor,
    note: Optional[str] = None,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> Referral:
    """
    Move a referral to `target_status` on behalf of `actor`.

    Checks run in order: referral exists, actor may set the target on this
    referral, the edge is legal. Entering `hired` posts earnings in the same
    unit of work; the notifier runs only after commit and never fails the call.
    """
    target = (target_status or "").strip().lower()
    now = now or _utcnow()

    with store.begin() as uow:
        referral = uow.referrals.get_for_update(referral_id)
        if referral is None:
            raise NotFound(f"Referral {referral_id} not found")
        if target not in ALL_STATUSES:
            raise InvalidTransition(f"Unknown referral status: {target_status}")

        _ensure_can_set(uow, actor, referral, target)

        if target == "hired" and (referral.status == "hired" or referral.earnings_posted):
            logger.critical(
                "second hire rejected referral_id=%s actor=%s earnings_posted=%s",
                referral_id, actor.user_id, referral.earnings_posted,
            )
            raise DoubleSettlement(f"Referral {referral_id} is already hired")

        assert_transition(referral.status, target, allow_skip_ahead=settings.REFERRAL_ALLOW_SKIP_AHEAD)

        entry = StatusHistoryEntry(
            status=target,
            changed_by=actor.user_id,
            changed_by_role=actor.role.value,
            timestamp=now,
            note=note,
        )
        if not uow.referrals.apply_transition(referral.id, from_status=referral.status, entry=entry):
            raise InvalidTransition(f"Referral {referral_id} changed concurrently")

        if target == "hired":
            post_earnings(uow, referral, now=now)

        if actor.role is Role.ADMIN:
            uow.audit.write(
                actor_id=actor.user_id,
                action="referral.status_changed",
                target_id=str(referral.id),
                metadata={"from": referral.status, "to": target, "note": note},
            )

        updated = uow.referrals.get(referral.id) or referral.with_transition(entry)

    increment_referral_transition(referral.status, target)
    logger.info(
        "referral transition id=%s %s -> %s by=%s role=%s",
        referral_id, referral.status, target, actor.user_id, actor.role.value,
    )

    try:
        (notifier or get_notifier()).referral_status_changed(updated, entry)
    except Exception:
        logger.exception("notification failed referral_id=%s status=%s", referral_id, target)

    return updated
