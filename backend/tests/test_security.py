from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from sessionauth.core import config as app_config
from sessionauth.core.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenExpired,
    TokenInvalid,
    decode_token,
    digest_secret,
    generate_numeric_code,
    generate_opaque_token,
    hash_password,
    mint_token_pair,
    token_expires_within,
    verify_password,
)


def test_password_hash_round_trip():
    hashed = hash_password("Sup3r$ecretPass")
    assert hashed != "Sup3r$ecretPass"
    assert verify_password("Sup3r$ecretPass", hashed)
    assert not verify_password("wrong", hashed)


def test_mint_token_pair_claims_and_distinct_secrets():
    pair = mint_token_pair("user-1")

    access = decode_token(pair.access_token, ACCESS_TOKEN_TYPE)
    refresh = decode_token(pair.refresh_token, REFRESH_TOKEN_TYPE)
    assert access["sub"] == refresh["sub"] == "user-1"
    assert access["type"] == "access"
    assert refresh["type"] == "refresh"
    assert access["jti"] != refresh["jti"]
    assert pair.refresh_expires_at - pair.access_expires_at > timedelta(days=6)

    # Each secret only verifies its own token kind.
    with pytest.raises(TokenInvalid):
        decode_token(pair.access_token, REFRESH_TOKEN_TYPE)
    with pytest.raises(TokenInvalid):
        decode_token(pair.refresh_token, ACCESS_TOKEN_TYPE)


def test_two_pairs_minted_back_to_back_differ():
    a = mint_token_pair("user-1")
    b = mint_token_pair("user-1")
    assert a.access_token != b.access_token
    assert a.refresh_token != b.refresh_token


def test_type_claim_is_enforced_even_with_right_secret():
    now = datetime.now(timezone.utc)
    forged = jwt.encode(
        {"sub": "user-1", "type": "refresh", "exp": int((now + timedelta(minutes=5)).timestamp())},
        app_config.settings.JWT_ACCESS_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenInvalid):
        decode_token(forged, ACCESS_TOKEN_TYPE)


def test_expired_token_raises_expired_but_decodes_without_exp_check():
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    token = jwt.encode(
        {"sub": "user-1", "type": "access", "exp": int(past.timestamp())},
        app_config.settings.JWT_ACCESS_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenExpired):
        decode_token(token, ACCESS_TOKEN_TYPE)

    claims = decode_token(token, ACCESS_TOKEN_TYPE, verify_exp=False)
    assert claims["sub"] == "user-1"
    assert token_expires_within(claims, timedelta(minutes=5))


def test_verify_exp_false_still_checks_signature():
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    token = jwt.encode(
        {"sub": "user-1", "type": "access", "exp": int(past.timestamp())},
        "not-the-secret",
        algorithm="HS256",
    )
    with pytest.raises(TokenInvalid):
        decode_token(token, ACCESS_TOKEN_TYPE, verify_exp=False)


def test_algorithm_is_pinned():
    token = jwt.encode(
        {"sub": "user-1", "type": "access"},
        app_config.settings.JWT_ACCESS_SECRET,
        algorithm="HS512",
    )
    with pytest.raises(TokenInvalid):
        decode_token(token, ACCESS_TOKEN_TYPE)


def test_numeric_codes_are_fixed_length_digits():
    codes = {generate_numeric_code() for _ in range(50)}
    assert all(len(c) == 6 and c.isdigit() for c in codes)
    assert len(generate_numeric_code(8)) == 8


def test_digest_is_keyed_and_deterministic():
    raw = generate_opaque_token()
    assert len(raw) == 64
    assert digest_secret(raw) == digest_secret(raw)
    assert digest_secret(raw) != raw
    assert digest_secret(raw) != digest_secret(raw + "x")
