from datetime import datetime, timedelta

import pytest

from schemas import OAUTH_PASSWORD_SENTINEL
from security import (
    InvalidToken,
    check_password,
    hash_password,
    issue_opaque_token,
    issue_session_token,
    verify_session_token,
)


def test_opaque_tokens_are_long_and_unique():
    tokens = {issue_opaque_token() for _ in range(50)}
    assert len(tokens) == 50
    for token in tokens:
        assert len(token) == 64
        int(token, 16)


def test_password_hash_checks():
    hashed = hash_password("pw123456", rounds=4)
    assert hashed != "pw123456"
    assert check_password("pw123456", hashed)
    assert not check_password("pw1234567", hashed)


@pytest.mark.parametrize("stored", [OAUTH_PASSWORD_SENTINEL, "google", "", None, "$2b$garbage"])
def test_non_hash_values_never_match(stored):
    assert not check_password(stored or "google", stored)
    assert not check_password("pw123456", stored)


def test_session_token_carries_identity():
    token = issue_session_token("abc123", "a@x.com", "secret", timedelta(days=7))
    claims = verify_session_token(token, "secret")
    assert claims["sub"] == "abc123"
    assert claims["email"] == "a@x.com"
    assert claims["exp"] - claims["iat"] == 7 * 24 * 3600


def test_session_token_rejects_wrong_secret():
    token = issue_session_token("abc123", "a@x.com", "secret", timedelta(days=7))
    with pytest.raises(InvalidToken):
        verify_session_token(token, "other-secret")


def test_session_token_rejects_tampering():
    token = issue_session_token("abc123", "a@x.com", "secret", timedelta(days=7))
    header, payload, signature = token.split(".")
    forged = ".".join([header, payload[:-2] + ("AA" if payload[-2:] != "AA" else "BB"), signature])
    with pytest.raises(InvalidToken):
        verify_session_token(forged, "secret")


def test_session_token_expires():
    issued = datetime.utcnow() - timedelta(days=8)
    token = issue_session_token("abc123", "a@x.com", "secret", timedelta(days=7), now=issued)
    with pytest.raises(InvalidToken):
        verify_session_token(token, "secret")


def test_garbage_token_is_invalid():
    with pytest.raises(InvalidToken):
        verify_session_token("not-a-token", "secret")
