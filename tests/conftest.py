# tests/conftest.py

import os

# settings are read once at import time
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("PAYMENT_MODE", "sandbox")
os.environ.setdefault("JWT_SECRET", "test-secret-0123456789abcdef")
os.environ.setdefault("KBZPAY_WEBHOOK_SECRET", "kbz-webhook-secret")
os.environ.setdefault("WAVEPAY_WEBHOOK_SECRET", "wave-webhook-secret")
os.environ.setdefault("AYAPAY_WEBHOOK_SECRET", "aya-webhook-secret")
os.environ.setdefault("NOTIFY_WEBHOOK_URL", "")

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

import deps.store
from main import app
from security import create_access_token
from services.metrics import reset_metrics
from trm.notifications.notifier import set_notifier
from trm.providers.factory import reset_provider_cache
from trm.referrals import service
from trm.referrals.model import Job, ReferralBonus, ReferredPerson
from trm.roles import Actor, Role
from trm.storage.memory import InMemoryStore
from trm.users.model import User


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
BONUS = 150000


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[tuple] = []

    def referral_status_changed(self, referral, entry) -> None:
        self.events.append((referral.id, entry.status))
        if self.fail:
            raise RuntimeError("notification backend down")


@dataclass
class World:
    store: InMemoryStore
    job: Job
    other_job: Job
    upstream: User
    referrer: User
    loner: User
    company: Actor
    other_company: Actor
    admin: Actor
    extra: Dict[str, object] = field(default_factory=dict)

    def actor(self, user: User) -> Actor:
        return Actor(user_id=user.id, role=Role.REFERRER)

    def user(self, user_id) -> User:
        with self.store.begin() as uow:
            return uow.users.get(user_id)

    def payments(self, **filters):
        with self.store.begin() as uow:
            return uow.payments.list(**filters)

    def submit(self, referrer: Optional[User] = None, email: str = "aung.aung@example.com", job: Optional[Job] = None):
        referrer = referrer or self.referrer
        return service.create_referral(
            self.store,
            self.actor(referrer),
            job_id=(job or self.job).id,
            referred_person=ReferredPerson(name="Aung Aung", email=email, phone="+959777000111"),
            now=T0,
        )

    def advance(self, referral_id, *statuses: str, actor: Optional[Actor] = None):
        result = None
        for status in statuses:
            result = service.apply_transition(self.store, referral_id, status, actor or self.company, now=T0)
        return result


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture(autouse=True)
def _reset_process_state():
    reset_metrics()
    reset_provider_cache()
    yield
    set_notifier(None)
    reset_provider_cache()


@pytest.fixture
def notifier() -> RecordingNotifier:
    n = RecordingNotifier()
    set_notifier(n)
    return n


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def world(store: InMemoryStore, notifier: RecordingNotifier) -> World:
    company_id = uuid.uuid4()
    other_company_id = uuid.uuid4()

    upstream = store.add_user(
        User(
            id=uuid.uuid4(),
            role="referrer",
            email="upstream@example.com",
            invite_code="UPSTREAM1",
            payout_provider="WavePay",
            payout_phone="+959400000001",
        )
    )
    referrer = store.add_user(
        User(
            id=uuid.uuid4(),
            role="referrer",
            email="referrer@example.com",
            invite_code="REFERRER1",
            invited_by=upstream.id,
            payout_provider="KBZPay",
            payout_phone="+959123456789",
        )
    )
    loner = store.add_user(
        User(
            id=uuid.uuid4(),
            role="referrer",
            email="loner@example.com",
            payout_provider="AYAPay",
            payout_phone="+959500000002",
        )
    )
    job = store.add_job(
        Job(id=uuid.uuid4(), company_id=company_id, title="Backend Engineer", referral_bonus=ReferralBonus(BONUS))
    )
    other_job = store.add_job(
        Job(id=uuid.uuid4(), company_id=other_company_id, title="Accountant", referral_bonus=ReferralBonus(80000))
    )

    return World(
        store=store,
        job=job,
        other_job=other_job,
        upstream=upstream,
        referrer=referrer,
        loner=loner,
        company=Actor(user_id=uuid.uuid4(), role=Role.COMPANY, company_id=company_id),
        other_company=Actor(user_id=uuid.uuid4(), role=Role.COMPANY, company_id=other_company_id),
        admin=Actor(user_id=uuid.uuid4(), role=Role.ADMIN),
    )


@pytest.fixture
def client(world: World):
    app.dependency_overrides[deps.store.get_store] = lambda: world.store
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(actor: Actor) -> Dict[str, str]:
    token = create_access_token(actor.user_id, actor.role, company_id=actor.company_id)
    return {"Authorization": f"Bearer {token}"}
