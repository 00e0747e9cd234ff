# sessionauth/services/users.py
"""
User lookup and registration.

Responsibilities:
- Normalizing emails before they touch the database
- Creating unverified accounts together with their first verification link
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from sessionauth.core.clock import utcnow
from sessionauth.core.errors import Conflict
from sessionauth.core.password_policy import ensure_strong_password
from sessionauth.core.security import hash_password
from sessionauth.models.user import User
from sessionauth.services.email import EmailDispatcher
from sessionauth.services.email_verification import issue_email_verification

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Look up a user by (case-folded) email address."""
    return db.query(User).filter(User.email == normalize_email(email)).first()


def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
    if not user_id:
        return None
    return db.get(User, str(user_id))


def register_user(
    db: Session,
    emailer: EmailDispatcher,
    *,
    email: str,
    password: str,
    name: str | None = None,
) -> User:
    """
    Create an unverified user and send the verification email.

    The user row, the verification record and the email send form one unit:
    if delivery fails nothing is persisted and the caller sees EmailDeliveryError.

    Raises:
        Conflict: email already registered
        ValidationError: password fails policy
    """
    normalized = normalize_email(email)
    ensure_strong_password(password, email=normalized)

    if get_user_by_email(db, normalized):
        raise Conflict("Email already exists")

    user = User(
        email=normalized,
        name=(name or "").strip() or None,
        password_hash=hash_password(password),
        is_verified=False,
        is_two_factor_enabled=False,
        password_changed_at=utcnow(),
    )
    db.add(user)
    try:
        db.flush()
        token = issue_email_verification(db, user)
        emailer.send_verification_email(to=user.email, user_id=user.id, token=token)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    logger.info("Registered user: id=%s", user.id)
    return user
