from __future__ import annotations

from sqlalchemy.orm import Session

from sessionauth.core.errors import EmailNotVerified, InvalidCredentials
from sessionauth.core.security import burn_password_check, verify_password
from sessionauth.models.user import User
from sessionauth.services.users import get_user_by_email


def verify_credentials(db: Session, email: str, password: str) -> User:
    """
    Read-only credential check.

    Unknown email and wrong password raise the same InvalidCredentials; the
    unknown-email path still pays for a hash comparison.
    """
    user = get_user_by_email(db, email)
    if user is None:
        burn_password_check(password or "")
        raise InvalidCredentials()

    if not verify_password(password or "", user.password_hash):
        raise InvalidCredentials()

    if not user.is_verified:
        raise EmailNotVerified()

    return user
