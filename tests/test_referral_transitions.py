import uuid

import pytest

from settings import settings
from trm.errors import DoubleSettlement, DuplicateReferral, Forbidden, InvalidTransition, NotFound
from trm.referrals import service
from trm.referrals.model import ReferredPerson
from trm.referrals.state_machine import is_legal_history
from trm.roles import Actor, Role
from tests.conftest import BONUS, T0, RecordingNotifier


def test_create_referral_starts_submitted(world):
    referral = world.submit()

    assert referral.status == "submitted"
    assert [e.status for e in referral.status_history] == ["submitted"]
    assert referral.status_history[0].changed_by == world.referrer.id
    assert referral.earnings_posted is False


def test_only_referrers_submit(world):
    with pytest.raises(Forbidden):
        service.create_referral(
            world.store,
            world.company,
            job_id=world.job.id,
            referred_person=ReferredPerson(name="Su Su", email="su.su@example.com"),
        )


def test_duplicate_candidate_for_same_job_rejected(world):
    world.submit(email="same@example.com")
    with pytest.raises(DuplicateReferral):
        world.submit(email="SAME@example.com")


def test_duplicate_candidate_ignores_stored_whitespace(world):
    world.submit(email=" padded@example.com ")
    with pytest.raises(DuplicateReferral):
        world.submit(email="Padded@Example.com")


def test_submit_for_missing_job(world):
    with pytest.raises(NotFound):
        service.create_referral(
            world.store,
            world.actor(world.referrer),
            job_id=uuid.uuid4(),
            referred_person=ReferredPerson(name="Su Su", email="su.su@example.com"),
        )


def test_hire_posts_direct_commission(world):
    referral = world.submit(referrer=world.loner)

    hired = world.advance(referral.id, "under_review", "interview_scheduled", "hired")

    assert hired.status == "hired"
    assert hired.earnings_posted is True
    assert is_legal_history([e.status for e in hired.status_history])

    loner = world.user(world.loner.id)
    assert loner.pending_balance == 127500
    assert loner.total_earnings == 127500
    assert loner.direct_referrals == 1
    assert loner.balance_identity_holds

    payouts = [tx for tx in world.payments(referral_id=referral.id) if tx.type == "commission_payout"]
    assert len(payouts) == 1
    assert payouts[0].amount == 127500
    assert payouts[0].status == "pending"
    assert payouts[0].recipient_id == world.loner.id
    assert payouts[0].provider == "AYAPay"


def test_rejection_posts_nothing(world):
    referral = world.submit()

    world.advance(referral.id, "under_review")
    rejected = service.apply_transition(world.store, referral.id, "rejected", world.company, "Not a fit", now=T0)

    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Not a fit"
    assert rejected.earnings_posted is False
    assert world.payments(referral_id=referral.id) == []
    assert world.user(world.referrer.id).pending_balance == 0


def test_referrer_can_withdraw_own_referral(world):
    referral = world.submit()

    withdrawn = world.advance(referral.id, "withdrawn", actor=world.actor(world.referrer))

    assert withdrawn.status == "withdrawn"
    assert withdrawn.withdrawn_by == world.referrer.id
    assert withdrawn.withdrawn_at == T0


def test_referrer_cannot_withdraw_someone_elses_referral(world):
    referral = world.submit()
    with pytest.raises(Forbidden):
        world.advance(referral.id, "withdrawn", actor=world.actor(world.loner))


def test_referrer_cannot_advance_pipeline(world):
    referral = world.submit()
    with pytest.raises(Forbidden):
        world.advance(referral.id, "under_review", actor=world.actor(world.referrer))


def test_company_limited_to_its_own_jobs(world):
    referral = world.submit()
    with pytest.raises(Forbidden):
        world.advance(referral.id, "under_review", actor=world.other_company)


def test_admin_cannot_hire(world):
    referral = world.submit()
    world.advance(referral.id, "under_review", actor=world.admin)
    with pytest.raises(Forbidden):
        world.advance(referral.id, "hired", actor=world.admin)
    assert world.store.audit_entries[-1]["action"] == "referral.status_changed"


def test_missing_referral_is_not_found_before_forbidden(world):
    stranger = Actor(user_id=uuid.uuid4(), role=Role.REFERRER)
    with pytest.raises(NotFound):
        service.apply_transition(world.store, uuid.uuid4(), "hired", stranger)


def test_forbidden_checked_before_transition_legality(world):
    referral = world.submit()
    world.advance(referral.id, "rejected")
    with pytest.raises(Forbidden):
        world.advance(referral.id, "under_review", actor=world.other_company)


def test_backward_transition_rejected_and_nothing_changes(world):
    referral = world.submit()
    world.advance(referral.id, "interview_scheduled")

    with pytest.raises(InvalidTransition):
        world.advance(referral.id, "under_review")

    current = service.get_referral(world.store, world.company, referral.id)
    assert current.status == "interview_scheduled"
    assert len(current.status_history) == 2


def test_skip_ahead_disabled(world, monkeypatch):
    monkeypatch.setattr(settings, "REFERRAL_ALLOW_SKIP_AHEAD", False)
    referral = world.submit()

    with pytest.raises(InvalidTransition):
        world.advance(referral.id, "hired")
    world.advance(referral.id, "under_review")


def test_second_hire_is_double_settlement(world):
    referral = world.submit()
    world.advance(referral.id, "hired")

    with pytest.raises(DoubleSettlement):
        world.advance(referral.id, "hired")

    payouts = [tx for tx in world.payments(referral_id=referral.id) if tx.type == "commission_payout"]
    assert len(payouts) == 2  # direct + network, posted once
    assert world.user(world.referrer.id).pending_balance == BONUS * 85 // 100


def test_notifier_called_after_commit(world, notifier):
    referral = world.submit()
    world.advance(referral.id, "under_review", "hired")
    assert notifier.events == [(referral.id, "under_review"), (referral.id, "hired")]


def test_notifier_failure_does_not_undo_transition(world):
    referral = world.submit()
    failing = RecordingNotifier(fail=True)

    hired = service.apply_transition(world.store, referral.id, "hired", world.company, notifier=failing, now=T0)

    assert hired.status == "hired"
    assert failing.events == [(referral.id, "hired")]
    assert world.user(world.referrer.id).pending_balance == 127500


def test_visibility_rules(world):
    referral = world.submit()

    assert service.get_referral(world.store, world.admin, referral.id).id == referral.id
    assert service.get_referral(world.store, world.company, referral.id).id == referral.id
    with pytest.raises(Forbidden):
        service.get_referral(world.store, world.other_company, referral.id)
    with pytest.raises(Forbidden):
        service.get_referral(world.store, world.actor(world.loner), referral.id)

    assert [r.id for r in service.list_referrals(world.store, world.actor(world.referrer))] == [referral.id]
    assert service.list_referrals(world.store, world.actor(world.loner)) == []
    assert service.list_referrals(world.store, world.other_company) == []
