"""Tests for unverified JWT inspection."""

from datetime import UTC, datetime, timedelta

from axolotl_auth.auth.jwt import (
    looks_like_jwt,
    seconds_until_expiry,
    token_expiry,
    unverified_claims,
)
from tests.helpers import make_jwt

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def test_unverified_claims_reads_payload():
    token = make_jwt(sub="user-1", email="a@example.com")
    claims = unverified_claims(token)
    assert claims["sub"] == "user-1"
    assert claims["email"] == "a@example.com"


def test_unverified_claims_tolerates_garbage():
    assert unverified_claims("not-a-token") == {}
    assert unverified_claims("") == {}
    assert unverified_claims(None) == {}


def test_looks_like_jwt():
    assert looks_like_jwt(make_jwt(sub="x"))
    assert not looks_like_jwt("abc.def.ghi")
    assert not looks_like_jwt("eyJonly.two")
    assert not looks_like_jwt("random-code-value")


def test_token_expiry_uses_exp_claim():
    exp = int((NOW + timedelta(hours=1)).timestamp())
    assert token_expiry(make_jwt(exp=exp), now=NOW) == datetime.fromtimestamp(exp, UTC)


def test_token_expiry_defaults_to_fifteen_minutes():
    assert token_expiry(make_jwt(sub="x"), now=NOW) == NOW + timedelta(minutes=15)
    assert token_expiry("garbage", now=NOW) == NOW + timedelta(minutes=15)


def test_token_expiry_ignores_non_numeric_exp():
    assert token_expiry(make_jwt(exp="tomorrow"), now=NOW) == NOW + timedelta(minutes=15)


def test_seconds_until_expiry():
    now = NOW.timestamp()
    assert seconds_until_expiry(make_jwt(exp=int(now) + 90), now) == 90
    assert seconds_until_expiry(make_jwt(sub="x"), now) == 0
