from datetime import timedelta

import pytest
from jose import jwt

from app.core.exceptions import TokenExpired, TokenInvalid
from app.core.tokens import TokenCodec, TokenType

SECRET = "unit-test-jwt-secret-0123456789abcdefghij"


@pytest.fixture
def local_codec() -> TokenCodec:
    return TokenCodec(SECRET)


def test_access_token_claims(local_codec):
    token = local_codec.issue_access("user-1", ["ADMIN", "MEMBER", "ADMIN"], email="a@example.com")
    claims = local_codec.parse(token)
    assert claims.subject == "user-1"
    assert claims.token_type is TokenType.ACCESS
    assert claims.roles == ("ADMIN", "MEMBER")
    assert claims.email == "a@example.com"
    assert claims.jti
    assert claims.expires_at - claims.issued_at == timedelta(minutes=60)


def test_refresh_token_lifetime(local_codec):
    claims = local_codec.parse(local_codec.issue_refresh("user-1", ["OWNER"]))
    assert claims.token_type is TokenType.REFRESH
    assert claims.roles == ("OWNER",)
    assert claims.expires_at - claims.issued_at == timedelta(days=30)


def test_challenge_token_has_no_roles(local_codec):
    token = local_codec.issue("user-1", TokenType.MFA_CHALLENGE, roles=["ADMIN"])
    payload = jwt.get_unverified_claims(token)
    assert "roles" not in payload
    claims = local_codec.parse(token)
    assert claims.roles == ()
    assert claims.expires_at - claims.issued_at == timedelta(minutes=5)


def test_each_token_gets_unique_jti(local_codec):
    first = local_codec.parse(local_codec.issue_access("user-1"))
    second = local_codec.parse(local_codec.issue_access("user-1"))
    assert first.jti != second.jti


def test_expired_token(local_codec):
    token = local_codec.issue("user-1", TokenType.ACCESS, ttl=timedelta(seconds=-5))
    with pytest.raises(TokenExpired):
        local_codec.parse(token)
    assert local_codec.validate(token) is False


def test_wrong_secret_and_garbage_are_invalid(local_codec):
    other = TokenCodec("another-jwt-secret-0123456789abcdefghijkl")
    with pytest.raises(TokenInvalid):
        local_codec.parse(other.issue_access("user-1"))
    for bad in ("", "not.a.jwt", "abc"):
        with pytest.raises(TokenInvalid):
            local_codec.parse(bad)


def test_missing_claims_are_invalid(local_codec):
    token = jwt.encode({"sub": "user-1"}, SECRET, algorithm="HS256")
    assert local_codec.validate(token) is True
    with pytest.raises(TokenInvalid):
        local_codec.parse(token)


def test_is_type(local_codec):
    refresh = local_codec.issue_refresh("user-1")
    assert local_codec.is_type(refresh, TokenType.REFRESH)
    assert not local_codec.is_type(refresh, TokenType.ACCESS)
    assert not local_codec.is_type("garbage", TokenType.REFRESH)


def test_short_secret_rejected():
    with pytest.raises(ValueError):
        TokenCodec("short")
