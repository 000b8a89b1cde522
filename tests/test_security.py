import time
from datetime import timedelta

import pytest
from jose import jwt

from errors import Forbidden, Unauthorized
from schemas import Role
from security import (
    ALGORITHM,
    TokenClaims,
    create_access_token,
    decode_token,
    ensure_owner_or_admin,
    hash_password,
    issue_token,
    parse_authorization,
    verify_password,
)

SECRET = "unit-secret"
USER_ID = "64b7f0c2a1e4d3b2c1a09f87"


def test_issued_token_round_trips_claims():
    token = issue_token({"id": USER_ID, "email": "a@example.com", "role": "admin"}, SECRET)
    claims = decode_token(token, SECRET)
    assert claims == TokenClaims(id=USER_ID, email="a@example.com", role=Role.admin)
    assert claims.is_admin


def test_token_expires_after_one_day():
    token = issue_token({"id": USER_ID, "email": "a@example.com", "role": "customer"}, SECRET)
    payload = jwt.decode(token, SECRET, algorithms=[ALGORITHM], options={"verify_exp": False})
    assert abs(payload["exp"] - (time.time() + 24 * 3600)) < 60
    assert set(payload) == {"id", "email", "role", "exp"}


def test_expired_token_is_rejected():
    token = create_access_token(
        {"id": USER_ID, "email": "a@example.com", "role": "customer"},
        SECRET,
        expires_delta=timedelta(seconds=-10),
    )
    with pytest.raises(Unauthorized):
        decode_token(token, SECRET)


def test_token_signed_with_other_secret_is_rejected():
    token = issue_token({"id": USER_ID, "email": "a@example.com", "role": "customer"}, "other")
    with pytest.raises(Unauthorized):
        decode_token(token, SECRET)


def test_token_with_unknown_role_is_rejected():
    token = create_access_token({"id": USER_ID, "email": "a@example.com", "role": "superuser"}, SECRET)
    with pytest.raises(Unauthorized):
        decode_token(token, SECRET)


def test_token_with_malformed_user_id_is_rejected():
    token = create_access_token({"id": "not-an-id", "email": "a@example.com", "role": "customer"}, SECRET)
    with pytest.raises(Unauthorized):
        decode_token(token, SECRET)


def test_token_missing_claims_is_rejected():
    token = create_access_token({"sub": USER_ID}, SECRET)
    with pytest.raises(Unauthorized):
        decode_token(token, SECRET)


def test_issue_token_rejects_unknown_role():
    with pytest.raises(ValueError):
        issue_token({"id": USER_ID, "email": "a@example.com", "role": "root"}, SECRET)


@pytest.mark.parametrize("header", [None, "", "Bearer", "Token abc", "bearer abc", "Bearer a b"])
def test_malformed_authorization_header(header):
    with pytest.raises(Unauthorized):
        parse_authorization(header)


def test_bearer_header_yields_token():
    assert parse_authorization("Bearer abc.def.ghi") == "abc.def.ghi"


def test_password_hashing():
    hashed = hash_password("hunter22")
    assert hashed != "hunter22"
    assert verify_password("hunter22", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("hunter22", "")


def test_owner_or_admin():
    owner = TokenClaims(id="u1", email="u1@example.com", role="customer")
    other = TokenClaims(id="u2", email="u2@example.com", role="customer")
    admin = TokenClaims(id="u3", email="u3@example.com", role="admin")

    ensure_owner_or_admin(owner, "u1")
    ensure_owner_or_admin(admin, "u1")
    with pytest.raises(Forbidden):
        ensure_owner_or_admin(other, "u1")
