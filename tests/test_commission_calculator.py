import uuid

import pytest

from settings import settings
from trm.commissions.calculator import post_earnings, split_bonus
from trm.errors import DoubleSettlement
from trm.referrals.model import Job, ReferralBonus
from tests.conftest import BONUS, T0


def test_split_floors_each_share_independently():
    split = split_bonus(99999, has_upstream=True)
    assert split.direct == 84999
    assert split.network == 4999
    assert split.platform == 99999 - 84999
    assert split.success_fee == settings.SUCCESS_FEE_AMOUNT


def test_split_without_upstream_has_no_network_share():
    split = split_bonus(BONUS, has_upstream=False)
    assert split.direct == 127500
    assert split.network == 0


def test_split_uses_configured_percentages(monkeypatch):
    monkeypatch.setattr(settings, "PLATFORM_COMMISSION_PERCENT", 20)
    monkeypatch.setattr(settings, "NETWORK_BONUS_PERCENT", 10)
    split = split_bonus(100000, has_upstream=True)
    assert (split.direct, split.network, split.platform) == (80000, 10000, 20000)


def test_hire_credits_upstream_network_bonus(world):
    referral = world.submit()
    world.advance(referral.id, "hired")

    direct = world.user(world.referrer.id)
    upstream = world.user(world.upstream.id)

    assert direct.pending_balance == 127500
    assert direct.network_earnings == 0
    assert upstream.pending_balance == 7500
    assert upstream.network_earnings == 7500
    assert upstream.total_earnings == 7500
    assert upstream.direct_referrals == 0
    assert direct.balance_identity_holds and upstream.balance_identity_holds


def test_hire_records_one_transaction_per_party(world):
    referral = world.submit()
    world.advance(referral.id, "hired")

    by_order = {tx.order_id: tx for tx in world.payments(referral_id=referral.id)}
    prefix = f"REF-{referral.id}"

    assert set(by_order) == {f"{prefix}-DIRECT", f"{prefix}-NETWORK", f"{prefix}-PLATFORM", f"{prefix}-FEE"}
    assert by_order[f"{prefix}-DIRECT"].recipient_id == world.referrer.id
    assert by_order[f"{prefix}-DIRECT"].provider == "KBZPay"
    assert by_order[f"{prefix}-NETWORK"].recipient_id == world.upstream.id
    assert by_order[f"{prefix}-NETWORK"].amount == 7500
    assert by_order[f"{prefix}-PLATFORM"].amount == 22500
    assert by_order[f"{prefix}-PLATFORM"].recipient_id is None
    assert by_order[f"{prefix}-FEE"].type == "success_fee"
    assert by_order[f"{prefix}-FEE"].amount == settings.SUCCESS_FEE_AMOUNT
    assert all(tx.status == "pending" for tx in by_order.values())


def test_no_upstream_no_network_transaction(world):
    referral = world.submit(referrer=world.loner)
    world.advance(referral.id, "hired")

    types = sorted(tx.order_id.rsplit("-", 1)[1] for tx in world.payments(referral_id=referral.id))
    assert types == ["DIRECT", "FEE", "PLATFORM"]


def test_posting_twice_is_double_settlement(world):
    referral = world.submit()
    world.advance(referral.id, "hired")

    with pytest.raises(DoubleSettlement):
        with world.store.begin() as uow:
            post_earnings(uow, uow.referrals.get(referral.id), now=T0)

    assert world.user(world.referrer.id).pending_balance == 127500
    assert len(world.payments(referral_id=referral.id)) == 4


def test_zero_bonus_posts_only_the_success_fee(world):
    job = world.store.add_job(
        Job(id=uuid.uuid4(), company_id=world.company.company_id, title="Intern", referral_bonus=ReferralBonus(0))
    )
    referral = world.submit(referrer=world.loner, job=job)
    world.advance(referral.id, "hired")

    txs = world.payments(referral_id=referral.id)
    assert [tx.type for tx in txs] == ["success_fee"]
    assert world.user(world.loner.id).direct_referrals == 1
