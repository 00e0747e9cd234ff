from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from sessionauth.core.clock import is_expired, utcnow
from sessionauth.core.config import settings
from sessionauth.core.errors import Conflict, InvalidOrExpiredCode
from sessionauth.core.security import digest_secret, generate_opaque_token
from sessionauth.models.email_verification import EmailVerification
from sessionauth.models.user import User
from sessionauth.services.email import EmailDispatcher

logger = logging.getLogger(__name__)


def issue_email_verification(db: Session, user: User) -> str:
    """
    Generates a new verification token for the user, stores its digest
    (replacing any previous record so only the latest link works) and
    returns the raw token. Flushes only; the caller owns the transaction.
    """
    token = generate_opaque_token()
    expires_at = utcnow() + timedelta(hours=settings.EMAIL_VERIFY_TOKEN_EXPIRE_HOURS)

    record = db.query(EmailVerification).filter(EmailVerification.user_id == user.id).first()
    if record is None:
        record = EmailVerification(user_id=user.id)
        db.add(record)
    record.token_hash = digest_secret(token)
    record.expires_at = expires_at
    db.flush()
    return token


def verify_email(db: Session, user_id: str, token: str) -> User:
    user = db.get(User, str(user_id)) if user_id else None
    if user is None:
        raise InvalidOrExpiredCode("Invalid or expired verification token")
    if user.is_verified:
        raise Conflict("Email already verified")

    record = (
        db.query(EmailVerification)
        .filter(
            EmailVerification.user_id == user.id,
            EmailVerification.token_hash == digest_secret(token or ""),
        )
        .first()
    )
    if record is None:
        raise InvalidOrExpiredCode("Invalid or expired verification token")
    if is_expired(record.expires_at):
        raise InvalidOrExpiredCode("Verification token has expired")

    try:
        user.is_verified = True
        db.delete(record)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    logger.info("Email verified: user_id=%s", user.id)
    return user


def resend_verification(db: Session, emailer: EmailDispatcher, email: str) -> None:
    """
    Unknown emails return silently so the endpoint can't be used to probe accounts.
    """
    normalized = (email or "").strip().lower()
    user = db.query(User).filter(User.email == normalized).first()
    if user is None:
        logger.info("Verification resend requested for unknown email")
        return
    if user.is_verified:
        raise Conflict("Email already verified")

    try:
        token = issue_email_verification(db, user)
        emailer.send_verification_email(to=user.email, user_id=user.id, token=token)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Verification email re-sent: user_id=%s", user.id)
