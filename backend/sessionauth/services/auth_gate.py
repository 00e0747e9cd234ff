# sessionauth/services/auth_gate.py
"""
Request-time authentication.

Given the access and refresh tokens a client presented, either:
- accept the access token as-is,
- renew both tokens (access expired or about to), rotating the session's
  refresh token in place, or
- fail with Unauthorized.

The refresh token is always verified first and must belong to a live session,
so a logged-out session stops working on the next request even while its
access token is still unexpired.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from sessionauth.core.config import settings
from sessionauth.core.errors import Unauthorized
from sessionauth.core.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenExpired,
    TokenInvalid,
    TokenPair,
    decode_token,
    digest_secret,
    mint_token_pair,
    token_expires_within,
)
from sessionauth.models.session import UserSession
from sessionauth.models.user import User
from sessionauth.services.sessions import delete_all_sessions, find_session_by_refresh_token, rotate_session
from sessionauth.services.users import get_user_by_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresentedTokens:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class AuthContext:
    user: User
    session: UserSession
    renewed_tokens: Optional[TokenPair] = None

    @property
    def renewed(self) -> bool:
        return self.renewed_tokens is not None


def _decode_access(token: str) -> tuple[dict[str, Any], bool]:
    """Returns (claims, needs_renewal). Expired tokens are decoded with the signature still checked."""
    window = timedelta(minutes=settings.ACCESS_TOKEN_RENEWAL_WINDOW_MINUTES)
    try:
        payload = decode_token(token, ACCESS_TOKEN_TYPE)
    except TokenExpired:
        try:
            payload = decode_token(token, ACCESS_TOKEN_TYPE, verify_exp=False)
        except (TokenExpired, TokenInvalid) as e:
            raise Unauthorized("Invalid access token") from e
        return payload, True
    except TokenInvalid as e:
        raise Unauthorized("Invalid access token") from e

    return payload, token_expires_within(payload, window)


def _force_global_logout(db: Session, user_id: str) -> None:
    try:
        revoked = delete_all_sessions(db, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.warning("Token pair mismatch; revoked all sessions: user_id=%s count=%s", user_id, revoked)


def authenticate(db: Session, tokens: PresentedTokens) -> AuthContext:
    if not tokens.access_token or not tokens.refresh_token:
        raise Unauthorized("Authentication required")

    try:
        refresh_claims = decode_token(tokens.refresh_token, REFRESH_TOKEN_TYPE)
    except (TokenExpired, TokenInvalid) as e:
        raise Unauthorized("Invalid refresh token") from e

    access_claims, needs_renewal = _decode_access(tokens.access_token)

    user_id = str(refresh_claims["sub"])
    if str(access_claims["sub"]) != user_id:
        _force_global_logout(db, user_id)
        raise Unauthorized("Security violation detected. All sessions have been terminated.")

    user = get_user_by_id(db, user_id)
    if user is None:
        raise Unauthorized("User not found")

    session = find_session_by_refresh_token(db, tokens.refresh_token, user_id=user.id)
    if session is None:
        raise Unauthorized("Session not found or expired")

    if not needs_renewal:
        return AuthContext(user=user, session=session)

    renewed = mint_token_pair(user.id)
    try:
        rotated = rotate_session(
            db,
            session,
            renewed,
            expected_token_hash=digest_secret(tokens.refresh_token),
        )
        if not rotated:
            db.rollback()
            logger.warning("Refresh rotation lost a race: user_id=%s session_id=%s", user.id, session.id)
            raise Unauthorized("Refresh token already rotated")
        db.commit()
    except Unauthorized:
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(session)
    logger.info("Tokens renewed: user_id=%s session_id=%s", user.id, session.id)
    return AuthContext(user=user, session=session, renewed_tokens=renewed)
