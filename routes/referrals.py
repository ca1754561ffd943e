# routes/referrals.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from deps.auth import get_current_actor
from deps.store import get_store
from schemas import (
    CreateReferralRequest,
    ReferralListResponse,
    ReferralResponse,
    UpdateStatusRequest,
)
from trm.referrals import service
from trm.referrals.model import ReferredPerson
from trm.roles import Actor
from trm.storage.base import Store

router = APIRouter(prefix="/v1/referrals", tags=["referrals"])


@router.post("", response_model=ReferralResponse, status_code=201)
def create_referral(
    req: CreateReferralRequest,
    actor: Actor = Depends(get_current_actor),
    store: Store = Depends(get_store),
):
    person = ReferredPerson(
        name=req.referred_person.name.strip(),
        email=req.referred_person.email.strip().lower(),
        phone=req.referred_person.phone,
        experience=req.referred_person.experience,
    )
    referral = service.create_referral(store, actor, job_id=req.job_id, referred_person=person, notes=req.notes)
    return ReferralResponse.from_domain(referral)


@router.get("", response_model=ReferralListResponse)
def list_referrals(
    limit: int = 50,
    actor: Actor = Depends(get_current_actor),
    store: Store = Depends(get_store),
):
    limit = max(1, min(limit, 200))
    rows = service.list_referrals(store, actor, limit=limit)
    return ReferralListResponse(referrals=[ReferralResponse.from_domain(r) for r in rows], count=len(rows))


@router.get("/{referral_id}", response_model=ReferralResponse)
def get_referral(
    referral_id: UUID,
    actor: Actor = Depends(get_current_actor),
    store: Store = Depends(get_store),
):
    return ReferralResponse.from_domain(service.get_referral(store, actor, referral_id))


@router.patch("/{referral_id}/status", response_model=ReferralResponse)
def update_status(
    referral_id: UUID,
    req: UpdateStatusRequest,
    actor: Actor = Depends(get_current_actor),
    store: Store = Depends(get_store),
):
    referral = service.apply_transition(store, referral_id, req.status, actor, req.note)
    return ReferralResponse.from_domain(referral)
