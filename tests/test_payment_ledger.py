import uuid
from datetime import timedelta

import pytest

from settings import settings
from trm.errors import DoubleSettlement, InvalidTransition, ProviderUnavailable, UnknownTransaction
from trm.payments import ledger
from trm.payments.model import Recipient
from trm.providers.base import ProviderResult
from trm.providers.sandbox import SandboxProvider
from tests.conftest import T0


class StubProvider:
    name = "KBZPay"

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def initiate_payment(self, *, amount, currency, recipient_phone, merchant_reference):
        self.calls.append((amount, currency, recipient_phone, merchant_reference))
        if self.error:
            raise self.error
        return self.result

    def query_status(self, provider_reference):
        return self.result


def _hired_payout(world, email="aung.aung@example.com"):
    referral = world.submit(referrer=world.loner, email=email)
    world.advance(referral.id, "hired")
    [tx] = [tx for tx in world.payments(referral_id=referral.id) if tx.type == "commission_payout"]
    return referral, tx


def _record(world, tx_id, status, ref=None, **kw):
    with world.store.begin() as uow:
        return ledger.record_provider_result(uow, tx_id, status, ref, now=T0 + timedelta(minutes=1), **kw)


def test_create_transaction_applies_fees(world, monkeypatch):
    monkeypatch.setattr(settings, "PAYOUT_FEE_PERCENT", 2)
    with world.store.begin() as uow:
        payout = ledger.create_transaction(
            uow,
            type="commission_payout",
            amount=10050,
            recipient=Recipient(world.loner.id, "+959500000002"),
            provider="kbz_pay",
        )
        fee = ledger.create_transaction(
            uow,
            type="success_fee",
            amount=50000,
            recipient=Recipient(None),
            provider="BANK_TRANSFER",
        )

    assert (payout.fees, payout.net_amount, payout.provider) == (201, 9849, "KBZPay")
    assert payout.transaction_number.startswith("TRM-")
    assert payout.order_id == payout.transaction_number
    assert (fee.fees, fee.net_amount, fee.provider) == (0, 50000, "bank_transfer")


def test_create_transaction_rejects_bad_input(world):
    with world.store.begin() as uow:
        with pytest.raises(ValueError):
            ledger.create_transaction(uow, type="commission_payout", amount=0, recipient=Recipient(None), provider="KBZPay")
        with pytest.raises(ValueError):
            ledger.create_transaction(uow, type="commission_payout", amount=10, recipient=Recipient(None), provider="PayPal")


def test_duplicate_order_id_is_double_settlement(world):
    with pytest.raises(DoubleSettlement):
        with world.store.begin() as uow:
            for _ in range(2):
                ledger.create_transaction(
                    uow,
                    type="commission_payout",
                    amount=1000,
                    recipient=Recipient(world.loner.id),
                    provider="KBZPay",
                    order_id="REF-x-DIRECT",
                )
    assert world.payments() == []


def test_completion_moves_pending_to_disbursed_once(world):
    referral, tx = _hired_payout(world)

    _record(world, tx.id, "processing", "KBZ-1")
    done = _record(world, tx.id, "completed", "KBZ-1")
    again = _record(world, tx.id, "completed", "KBZ-1")

    assert done.status == again.status == "completed"
    assert done.completed_at is not None
    user = world.user(world.loner.id)
    assert (user.pending_balance, user.disbursed_balance) == (0, 127500)
    assert user.balance_identity_holds

    with world.store.begin() as uow:
        r = uow.referrals.get(referral.id)
    assert r.paid_amount == 127500


def test_stale_report_after_terminal_is_ignored(world):
    _, tx = _hired_payout(world)
    _record(world, tx.id, "completed", "KBZ-2")

    after = _record(world, tx.id, "processing", "KBZ-2")

    assert after.status == "completed"
    assert world.user(world.loner.id).disbursed_balance == 127500


def test_contradicting_terminal_result_raises(world):
    _, tx = _hired_payout(world)
    _record(world, tx.id, "failed", "KBZ-3", error="insufficient float")

    with pytest.raises(InvalidTransition):
        _record(world, tx.id, "completed", "KBZ-3")

    user = world.user(world.loner.id)
    assert (user.pending_balance, user.disbursed_balance) == (127500, 0)


def test_failed_payout_keeps_balance_pending(world):
    _, tx = _hired_payout(world)
    failed = _record(world, tx.id, "failed", "KBZ-4", error="wallet closed")

    assert failed.last_error == "wallet closed"
    assert world.user(world.loner.id).pending_balance == 127500


def test_unknown_transaction(world):
    with pytest.raises(UnknownTransaction):
        _record(world, uuid.uuid4(), "completed")
    with world.store.begin() as uow:
        with pytest.raises(UnknownTransaction):
            ledger.record_provider_result_by_reference(uow, "KBZPay", "nope", "completed")


def test_record_by_reference_and_merchant_reference(world):
    _, tx = _hired_payout(world)
    _record(world, tx.id, "processing", "AYA-77")

    with world.store.begin() as uow:
        done = ledger.record_provider_result_by_reference(uow, "ayapay", "AYA-77", "completed")
    assert done.status == "completed"

    _, other = _hired_payout(world, "second@example.com")
    with world.store.begin() as uow:
        failed = ledger.record_provider_result_by_reference(
            uow, "AYAPay", None, "failed", merchant_reference=other.transaction_number
        )
    assert failed.status == "failed"


def test_reversal_only_from_completed(world):
    _, tx = _hired_payout(world)

    with world.store.begin() as uow:
        with pytest.raises(InvalidTransition):
            ledger.mark_reversed(uow, tx.id, "not yet paid")

    _record(world, tx.id, "completed", "KBZ-5")
    with world.store.begin() as uow:
        reversed_tx = ledger.mark_reversed(uow, tx.id, "chargeback", actor_id=world.admin.user_id)

    assert reversed_tx.status == "reversed"
    assert reversed_tx.reversal_reason == "chargeback"
    user = world.user(world.loner.id)
    assert (user.pending_balance, user.disbursed_balance) == (127500, 0)
    assert world.store.audit_entries[-1]["action"] == "payment.reversed"


def test_result_for_row_moved_since_claim_is_not_applied(world):
    _, tx = _hired_payout(world)
    _record(world, tx.id, "processing", "KBZ-X")

    after = _record(world, tx.id, "completed", "KBZ-X", expected_status="pending")

    assert after.status == "processing"
    user = world.user(world.loner.id)
    assert (user.pending_balance, user.disbursed_balance) == (127500, 0)


def test_completion_redelivered_after_reversal_is_a_no_op(world):
    _, tx = _hired_payout(world)
    _record(world, tx.id, "completed", "KBZ-6")
    with world.store.begin() as uow:
        ledger.mark_reversed(uow, tx.id, "chargeback")

    after = _record(world, tx.id, "completed", "KBZ-6")

    assert after.status == "reversed"
    user = world.user(world.loner.id)
    assert (user.pending_balance, user.disbursed_balance) == (127500, 0)
    with world.store.begin() as uow:
        with pytest.raises(InvalidTransition):
            ledger.record_provider_result(uow, tx.id, "failed", "KBZ-6")


def test_reissue_failed_payout(world):
    _, tx = _hired_payout(world)
    _record(world, tx.id, "failed", "KBZ-7", error="payee blocked")

    with world.store.begin() as uow:
        fresh = ledger.reissue_failed_payout(
            uow, tx.id, provider="WavePay", recipient_phone="+959500000099", actor_id=world.admin.user_id
        )

    assert (fresh.status, fresh.type, fresh.amount) == ("pending", "commission_payout", tx.amount)
    assert fresh.order_id == f"{tx.order_id}-R1"
    assert (fresh.provider, fresh.recipient_phone) == ("WavePay", "+959500000099")
    assert fresh.reissue_of == tx.id
    assert fresh.referral_id == tx.referral_id
    user = world.user(world.loner.id)
    assert (user.pending_balance, user.disbursed_balance) == (127500, 0)
    assert world.store.audit_entries[-1]["action"] == "payment.reissued"

    with world.store.begin() as uow:
        with pytest.raises(DoubleSettlement):
            ledger.reissue_failed_payout(uow, tx.id)

    _record(world, fresh.id, "failed", "WV-1")
    with world.store.begin() as uow:
        third = ledger.reissue_failed_payout(uow, fresh.id)
    assert third.order_id == f"{tx.order_id}-R2"
    assert (third.provider, third.recipient_phone) == ("WavePay", "+959500000099")


def test_only_failed_commission_payouts_are_reissued(world):
    referral, tx = _hired_payout(world)

    with world.store.begin() as uow:
        with pytest.raises(InvalidTransition):
            ledger.reissue_failed_payout(uow, tx.id)
        with pytest.raises(UnknownTransaction):
            ledger.reissue_failed_payout(uow, uuid.uuid4())

    [fee] = [t for t in world.payments(referral_id=referral.id) if t.type == "success_fee"]
    _record(world, fee.id, "failed")
    with world.store.begin() as uow:
        with pytest.raises(InvalidTransition):
            ledger.reissue_failed_payout(uow, fee.id)


def test_reissue_order_id():
    assert ledger.reissue_order_id("REF-1-DIRECT") == "REF-1-DIRECT-R1"
    assert ledger.reissue_order_id("REF-1-DIRECT-R1") == "REF-1-DIRECT-R2"
    assert ledger.reissue_order_id("REF-1-DIRECT-R9") == "REF-1-DIRECT-R10"


def test_submit_uses_transaction_number_as_merchant_reference(world):
    _, tx = _hired_payout(world)
    stub = StubProvider(ProviderResult(status="processing", provider_reference="AYA-9", raw_status="PROCESSING"))

    with world.store.begin() as uow:
        after = ledger.submit_to_provider(uow, tx.id, get_provider=lambda name: stub)

    assert stub.calls == [(127500, "MMK", "+959500000002", tx.transaction_number)]
    assert (after.status, after.provider_reference) == ("processing", "AYA-9")

    with world.store.begin() as uow:
        ledger.submit_to_provider(uow, tx.id, get_provider=lambda name: stub)
    assert len(stub.calls) == 1


def test_submit_propagates_provider_outage(world):
    _, tx = _hired_payout(world)
    stub = StubProvider(error=ProviderUnavailable("gateway down"))

    with pytest.raises(ProviderUnavailable):
        with world.store.begin() as uow:
            ledger.submit_to_provider(uow, tx.id, get_provider=lambda name: stub)

    [current] = [t for t in world.payments(referral_id=tx.referral_id) if t.id == tx.id]
    assert current.status == "pending"
    assert current.provider_reference is None


def test_submit_through_sandbox_gateway(world):
    _, tx = _hired_payout(world)
    with world.store.begin() as uow:
        after = ledger.submit_to_provider(uow, tx.id, get_provider=lambda name: SandboxProvider(name))
    assert after.status == "processing"
    assert after.provider_reference == f"SBX-{tx.transaction_number}"
