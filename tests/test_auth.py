import pytest

from campus_orders.core_settings import Settings
from campus_orders.domain.exceptions import TokenExpired, Unauthenticated
from campus_orders.infrastructure.auth import Identity, create_access_token, decode_access_token

SETTINGS = Settings(JWT_SECRET="unit-secret")


def test_token_roundtrip():
    token = create_access_token(42, name="alice", role="admin", settings=SETTINGS)
    identity = decode_access_token(token, SETTINGS)
    assert identity == Identity(user_id=42, name="alice", role="admin")
    assert identity.is_admin


def test_expired_token():
    token = create_access_token(42, expires_minutes=-5, settings=SETTINGS)
    with pytest.raises(TokenExpired):
        decode_access_token(token, SETTINGS)


def test_token_signed_with_another_secret():
    token = create_access_token(42, settings=Settings(JWT_SECRET="someone-else"))
    with pytest.raises(Unauthenticated) as exc:
        decode_access_token(token, SETTINGS)
    assert not isinstance(exc.value, TokenExpired)


def test_garbage_token():
    with pytest.raises(Unauthenticated):
        decode_access_token("definitely.not.ajwt", SETTINGS)
