from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from sqlalchemy.orm import Session

from sessionauth.core.errors import InvalidOrExpiredCode
from sessionauth.core.security import TokenPair
from sessionauth.models.session import UserSession
from sessionauth.models.two_factor_token import TwoFactorPurpose
from sessionauth.models.user import User
from sessionauth.services.credentials import verify_credentials
from sessionauth.services.devices import DeviceInfo
from sessionauth.services.email import EmailDispatcher
from sessionauth.services.sessions import reconcile_session
from sessionauth.services.two_factor import issue_code, verify_code
from sessionauth.services.users import get_user_by_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwoFactorPending:
    user_id: str
    purpose: TwoFactorPurpose


@dataclass(frozen=True)
class Authenticated:
    user: User
    session: UserSession
    tokens: TokenPair


LoginResult = Union[TwoFactorPending, Authenticated]


def _establish_session(
    db: Session,
    user: User,
    device: DeviceInfo,
    presented_refresh_token: str | None,
) -> Authenticated:
    try:
        reconciled = reconcile_session(db, user.id, device, presented_refresh_token=presented_refresh_token)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(reconciled.session)
    return Authenticated(user=user, session=reconciled.session, tokens=reconciled.tokens)


def login(
    db: Session,
    emailer: EmailDispatcher,
    *,
    email: str,
    password: str,
    device: DeviceInfo,
    presented_refresh_token: str | None = None,
) -> LoginResult:
    """
    Password login.

    Users with two-factor enabled get a LOGIN code by email and a pending
    result; everyone else gets a session and a fresh token pair.
    """
    user = verify_credentials(db, email, password)

    if user.is_two_factor_enabled:
        issue_code(db, emailer, user, TwoFactorPurpose.LOGIN)
        return TwoFactorPending(user_id=user.id, purpose=TwoFactorPurpose.LOGIN)

    result = _establish_session(db, user, device, presented_refresh_token)
    logger.info("Login succeeded: user_id=%s session_id=%s", user.id, result.session.id)
    return result


def complete_two_factor_login(
    db: Session,
    *,
    user_id: str,
    code: str,
    device: DeviceInfo,
    presented_refresh_token: str | None = None,
) -> Authenticated:
    """Second step of a 2FA login. Consuming the code and creating the session commit together."""
    user = get_user_by_id(db, user_id)
    # Codes from an unconfirmed enrolment must not open a session.
    if user is None or not user.is_verified or not user.is_two_factor_enabled:
        raise InvalidOrExpiredCode("Invalid or expired code", status_code=401)

    try:
        verify_code(db, user.id, code, TwoFactorPurpose.LOGIN)
    except Exception:
        db.rollback()
        raise

    result = _establish_session(db, user, device, presented_refresh_token)
    logger.info("Two-factor login succeeded: user_id=%s session_id=%s", user.id, result.session.id)
    return result
