# sessionauth/services/passwords.py
"""
Password reset (unauthenticated, emailed link) and password change (authenticated).

Both end by revoking sessions: a reset logs out every device, a change keeps
only the session that made the request.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from sessionauth.core.clock import is_expired, utcnow
from sessionauth.core.config import settings
from sessionauth.core.errors import Conflict, InvalidCredentials, InvalidOrExpiredCode
from sessionauth.core.password_policy import ensure_strong_password
from sessionauth.core.security import digest_secret, generate_opaque_token, hash_password, verify_password
from sessionauth.models.password_reset import PasswordReset
from sessionauth.models.two_factor_token import TwoFactorPurpose
from sessionauth.models.user import User
from sessionauth.services.email import EmailDispatcher
from sessionauth.services.login import TwoFactorPending
from sessionauth.services.sessions import delete_all_sessions
from sessionauth.services.two_factor import issue_code, verify_code
from sessionauth.services.users import get_user_by_email

logger = logging.getLogger(__name__)


def request_password_reset(db: Session, emailer: EmailDispatcher, email: str) -> None:
    user = get_user_by_email(db, email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return

    token = generate_opaque_token()
    expires_at = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES)

    try:
        record = db.query(PasswordReset).filter(PasswordReset.user_id == user.id).first()
        if record is None:
            record = PasswordReset(user_id=user.id)
            db.add(record)
        record.token_hash = digest_secret(token)
        record.expires_at = expires_at
        db.flush()

        emailer.send_password_reset_email(to=user.email, token=token)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Password reset issued: user_id=%s", user.id)


def reset_password(db: Session, token: str, new_password: str) -> User:
    record: Optional[PasswordReset] = (
        db.query(PasswordReset).filter(PasswordReset.token_hash == digest_secret(token or "")).first()
    )
    if record is None:
        raise InvalidOrExpiredCode("Invalid or expired reset token")
    if is_expired(record.expires_at):
        raise InvalidOrExpiredCode("Reset token has expired")

    user = record.user
    if verify_password(new_password, user.password_hash):
        raise Conflict("New password must be different from the current password")
    ensure_strong_password(new_password, email=user.email)

    try:
        user.password_hash = hash_password(new_password)
        user.password_changed_at = utcnow()
        db.delete(record)
        revoked = delete_all_sessions(db, user.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    logger.info("Password reset completed: user_id=%s sessions_revoked=%s", user.id, revoked)
    return user


def change_password(
    db: Session,
    emailer: EmailDispatcher,
    user: User,
    *,
    current_password: str,
    new_password: str,
    two_factor_code: str | None = None,
    keep_session_id: str | None = None,
) -> Optional[TwoFactorPending]:
    """
    Returns TwoFactorPending when the user has 2FA on and no code was supplied
    (a PASSWORD_CHANGE code has just been emailed); None once the password changed.
    """
    if not verify_password(current_password or "", user.password_hash):
        raise InvalidCredentials("Current password is incorrect")
    if current_password == new_password:
        raise Conflict("New password must be different from the current password")
    ensure_strong_password(new_password, email=user.email)

    if user.is_two_factor_enabled and not two_factor_code:
        issue_code(db, emailer, user, TwoFactorPurpose.PASSWORD_CHANGE)
        return TwoFactorPending(user_id=user.id, purpose=TwoFactorPurpose.PASSWORD_CHANGE)

    try:
        if user.is_two_factor_enabled:
            verify_code(db, user.id, two_factor_code or "", TwoFactorPurpose.PASSWORD_CHANGE, status_code=400)
        user.password_hash = hash_password(new_password)
        user.password_changed_at = utcnow()
        revoked = delete_all_sessions(db, user.id, except_session_id=keep_session_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    logger.info("Password changed: user_id=%s other_sessions_revoked=%s", user.id, revoked)
    return None
