# sessionauth/core/security.py
from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from sessionauth.core.config import settings

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.PASSWORD_HASH_ROUNDS,
)


class TokenExpired(Exception):
    """Signature is valid but the token is past its `exp`."""


class TokenInvalid(Exception):
    """Bad signature, wrong secret/algorithm, malformed, or wrong token type."""


# -------------------------
# Password hashing
# -------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    return pwd_context.hash(secrets.token_urlsafe(16))


def burn_password_check(password: str) -> None:
    """
    Spend the same hashing cost as a real comparison. Used when the account
    does not exist so response timing does not reveal which emails are registered.
    """
    pwd_context.verify(password, _dummy_password_hash())


# -------------------------
# Opaque secrets
# -------------------------
def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def generate_opaque_token() -> str:
    """64 hex chars; used for email verification and password reset links."""
    return secrets.token_hex(32)


def generate_numeric_code(length: int | None = None) -> str:
    n = length or settings.TWO_FACTOR_CODE_LENGTH
    return f"{secrets.randbelow(10 ** n):0{n}d}"


def digest_secret(raw: str) -> str:
    """
    Store only a keyed hash of bearer secrets (refresh tokens, links, codes).
    HMAC keyed by TOKEN_HASH_SECRET so a DB leak can't be brute-forced offline.
    """
    key = (settings.TOKEN_HASH_SECRET or "").encode("utf-8")
    if not key:
        raise RuntimeError("TOKEN_HASH_SECRET (or JWT_REFRESH_SECRET) must be set to hash tokens.")
    return hmac.new(key, raw.encode("utf-8"), hashlib.sha256).hexdigest()


# -------------------------
# Token minter
# -------------------------
@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime

    @property
    def access_expires_in(self) -> int:
        return max(0, int((self.access_expires_at - _now_utc()).total_seconds()))


def _secret_for(token_type: str) -> str:
    secret = settings.JWT_ACCESS_SECRET if token_type == ACCESS_TOKEN_TYPE else settings.JWT_REFRESH_SECRET
    if not secret or not secret.strip():
        raise RuntimeError(f"JWT secret for {token_type} tokens must be set.")
    return secret


def _encode(user_id: str, token_type: str, ttl: timedelta) -> tuple[str, datetime]:
    now = _now_utc()
    exp = now + ttl
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        # Keeps two tokens minted in the same second for the same user distinct.
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, _secret_for(token_type), algorithm=settings.JWT_ALGORITHM), exp


def create_access_token(user_id: str) -> tuple[str, datetime]:
    return _encode(user_id, ACCESS_TOKEN_TYPE, timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(user_id: str) -> tuple[str, datetime]:
    return _encode(user_id, REFRESH_TOKEN_TYPE, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def mint_token_pair(user_id: str) -> TokenPair:
    access_token, access_exp = create_access_token(user_id)
    refresh_token, refresh_exp = create_refresh_token(user_id)
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        access_expires_at=access_exp,
        refresh_expires_at=refresh_exp,
    )


def decode_token(token: str, token_type: str, *, verify_exp: bool = True) -> dict[str, Any]:
    """
    Verify signature, algorithm and token type. Raises TokenExpired or TokenInvalid.
    With verify_exp=False the signature is still checked; only `exp` is skipped.
    """
    try:
        payload = jwt.decode(
            token,
            _secret_for(token_type),
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": verify_exp},
        )
    except ExpiredSignatureError as e:
        raise TokenExpired(str(e)) from e
    except JWTError as e:
        raise TokenInvalid(str(e)) from e

    if payload.get("type") != token_type:
        raise TokenInvalid("Invalid token type")
    if not payload.get("sub"):
        raise TokenInvalid("Token missing 'sub'")
    return payload


def token_expires_within(payload: dict[str, Any], window: timedelta) -> bool:
    exp = payload.get("exp")
    if exp is None:
        return True
    return datetime.fromtimestamp(int(exp), tz=timezone.utc) - _now_utc() <= window
