import uuid

from jose import jwt

from security import create_access_token, decode_token
from settings import settings
from trm.roles import Role


def test_token_round_trip_carries_role_and_company():
    user_id = uuid.uuid4()
    company_id = uuid.uuid4()

    payload = decode_token(create_access_token(user_id, Role.COMPANY, company_id=company_id))

    assert payload["sub"] == str(user_id)
    assert payload["role"] == "company"
    assert payload["company_id"] == str(company_id)


def test_tampered_or_foreign_token_decodes_to_empty():
    foreign = jwt.encode({"sub": str(uuid.uuid4()), "role": "admin"}, "some-other-secret-value", algorithm=settings.JWT_ALG)
    assert decode_token(foreign) == {}
    assert decode_token("garbage") == {}


def test_expired_token_is_rejected(client, world):
    token = create_access_token(world.admin.user_id, Role.ADMIN, minutes=-1)
    r = client.get("/v1/referrals", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_unknown_role_is_rejected(client, world):
    token = jwt.encode({"sub": str(uuid.uuid4()), "role": "superuser"}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    r = client.get("/v1/referrals", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
