import threading

from trm.errors import DoubleSettlement
from trm.referrals import service


def test_two_concurrent_hires_post_once(world):
    referral = world.submit()
    world.advance(referral.id, "under_review", "offer_extended")

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def hire():
        barrier.wait()
        try:
            service.apply_transition(world.store, referral.id, "hired", world.company)
            result = "ok"
        except DoubleSettlement:
            result = "double"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=hire) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert sorted(outcomes) == ["double", "ok"]

    direct = [tx for tx in world.payments(referral_id=referral.id) if tx.order_id.endswith("-DIRECT")]
    assert len(direct) == 1
    assert world.user(world.referrer.id).pending_balance == 127500
    assert world.user(world.referrer.id).direct_referrals == 1
