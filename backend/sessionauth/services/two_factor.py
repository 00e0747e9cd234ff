# sessionauth/services/two_factor.py
"""
Email-delivered one-time codes.

Invariants:
- at most one unused code per (user, purpose); issuing a new one replaces it
- a code verifies at most once
- the raw code only ever leaves the process inside the email body
"""
from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from sessionauth.core.clock import is_expired, utcnow
from sessionauth.core.config import settings
from sessionauth.core.errors import Conflict, InvalidOrExpiredCode
from sessionauth.core.security import digest_secret, generate_numeric_code
from sessionauth.models.two_factor_token import TwoFactorPurpose, TwoFactorToken
from sessionauth.models.user import User
from sessionauth.services.email import EmailDispatcher

logger = logging.getLogger(__name__)


def _lock_user_row(db: Session, user_id: str) -> None:
    # FOR UPDATE serialises concurrent issuance for the same user (no-op on SQLite).
    db.query(User.id).filter(User.id == user_id).with_for_update().first()


def _unused_tokens(db: Session, user_id: str, purpose: TwoFactorPurpose):
    return db.query(TwoFactorToken).filter(
        TwoFactorToken.user_id == user_id,
        TwoFactorToken.purpose == purpose,
        TwoFactorToken.used_at.is_(None),
    )


def issue_code(
    db: Session,
    emailer: EmailDispatcher,
    user: User,
    purpose: TwoFactorPurpose,
    *,
    ttl_minutes: int | None = None,
) -> TwoFactorToken:
    """
    Replace any unused code for (user, purpose) with a fresh one and email it.

    Lock, delete, insert and send run in one transaction: if the email can't be
    sent nothing is committed and the previous code (if any) stays valid.
    """
    ttl = ttl_minutes or settings.TWO_FACTOR_CODE_TTL_MINUTES
    code = generate_numeric_code()

    try:
        _lock_user_row(db, user.id)
        _unused_tokens(db, user.id, purpose).delete(synchronize_session=False)

        record = TwoFactorToken(
            user_id=user.id,
            purpose=purpose,
            code_hash=digest_secret(code),
            expires_at=utcnow() + timedelta(minutes=ttl),
        )
        db.add(record)
        db.flush()

        emailer.send_two_factor_email(to=user.email, code=code)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Two-factor code issued: user_id=%s purpose=%s", user.id, purpose.value)
    return record


def verify_code(
    db: Session,
    user_id: str,
    code: str,
    purpose: TwoFactorPurpose,
    *,
    status_code: int = 401,
) -> TwoFactorToken:
    """
    Consume a matching unused, unexpired code. Flushes only; the caller commits
    together with whatever the code authorises.

    Marking the code used is a conditional UPDATE, so two concurrent requests
    with the same code can't both succeed.
    """
    failure = InvalidOrExpiredCode("Invalid or expired code", status_code=status_code)
    if not code or not user_id:
        raise failure

    now = utcnow()
    record = (
        _unused_tokens(db, str(user_id), purpose)
        .filter(TwoFactorToken.code_hash == digest_secret(code.strip()))
        .first()
    )
    if record is None or is_expired(record.expires_at, now):
        raise failure

    claimed = (
        db.query(TwoFactorToken)
        .filter(TwoFactorToken.id == record.id, TwoFactorToken.used_at.is_(None))
        .update({TwoFactorToken.used_at: now}, synchronize_session=False)
    )
    if claimed != 1:
        raise failure

    db.expire(record)
    return record


def enable_two_factor(db: Session, emailer: EmailDispatcher, user: User) -> None:
    """Step one of enrolment: email a LOGIN code the user must confirm."""
    if user.is_two_factor_enabled:
        raise Conflict("Two-factor authentication is already enabled")
    issue_code(db, emailer, user, TwoFactorPurpose.LOGIN)


def confirm_two_factor(db: Session, user: User, code: str) -> User:
    if user.is_two_factor_enabled:
        raise Conflict("Two-factor authentication is already enabled")

    try:
        verify_code(db, user.id, code, TwoFactorPurpose.LOGIN, status_code=400)
        user.is_two_factor_enabled = True
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    logger.info("Two-factor enabled: user_id=%s", user.id)
    return user


def disable_two_factor(db: Session, user: User) -> User:
    if not user.is_two_factor_enabled:
        raise Conflict("Two-factor authentication is not enabled")

    try:
        user.is_two_factor_enabled = False
        db.query(TwoFactorToken).filter(TwoFactorToken.user_id == user.id).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    logger.info("Two-factor disabled: user_id=%s", user.id)
    return user
