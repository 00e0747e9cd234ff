# sessionauth/services/sessions.py
"""
Session store and reconciler.

A session is one device/client. Each session owns exactly one refresh token
row whose digest is rotated in place, so the session id stays stable for
device listings while every login or renewal invalidates the previous
refresh token.

Transactions: functions here flush only. Callers (login, auth gate, logout
routes) commit or roll back the whole unit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from sessionauth.core.clock import is_expired, utcnow
from sessionauth.core.config import settings
from sessionauth.core.errors import NotFound
from sessionauth.core.security import TokenPair, digest_secret, mint_token_pair
from sessionauth.models.refresh_token import RefreshToken
from sessionauth.models.session import UserSession
from sessionauth.services.devices import DeviceInfo

logger = logging.getLogger(__name__)

_FINGERPRINT_FIELDS = ("ip_address", "user_agent", "device_type", "browser", "os")


@dataclass(frozen=True)
class ReconciledSession:
    session: UserSession
    tokens: TokenPair

    @property
    def access_token(self) -> str:
        return self.tokens.access_token

    @property
    def refresh_token(self) -> str:
        return self.tokens.refresh_token


# -----------------------------
# Lookups
# -----------------------------
def find_session_by_refresh_token(
    db: Session,
    raw_refresh_token: str,
    *,
    user_id: str | None = None,
    now: datetime | None = None,
) -> Optional[UserSession]:
    """
    Live session holding this refresh token: digest matches, session not past
    its absolute expiry, refresh row not past its own expiry.
    """
    if not raw_refresh_token:
        return None
    now = now or utcnow()

    query = (
        db.query(UserSession)
        .join(RefreshToken, RefreshToken.session_id == UserSession.id)
        .filter(RefreshToken.token_hash == digest_secret(raw_refresh_token))
    )
    if user_id is not None:
        query = query.filter(UserSession.user_id == str(user_id))

    session = query.first()
    if session is None:
        return None
    if is_expired(session.expires_at, now):
        return None
    if session.refresh_token is None or is_expired(session.refresh_token.expires_at, now):
        return None
    return session


def find_matching_session(
    db: Session,
    user_id: str,
    device: DeviceInfo,
    *,
    now: datetime | None = None,
) -> Optional[UserSession]:
    """Most recently used non-expired session with the same device fingerprint."""
    now = now or utcnow()
    query = db.query(UserSession).filter(
        UserSession.user_id == str(user_id),
        UserSession.expires_at > now,
    )
    for field in _FINGERPRINT_FIELDS:
        column = getattr(UserSession, field)
        value = getattr(device, field)
        query = query.filter(column.is_(None) if value is None else column == value)

    return query.order_by(UserSession.last_used_at.desc()).first()


def list_sessions(db: Session, user_id: str) -> List[UserSession]:
    return (
        db.query(UserSession)
        .filter(UserSession.user_id == str(user_id), UserSession.expires_at > utcnow())
        .order_by(UserSession.last_used_at.desc(), UserSession.created_at.desc())
        .all()
    )


# -----------------------------
# Mutations
# -----------------------------
def _apply_device(session: UserSession, device: DeviceInfo) -> None:
    session.ip_address = device.ip_address
    session.user_agent = device.user_agent
    session.device_type = device.device_type
    session.device_name = device.device_name
    session.browser = device.browser
    session.os = device.os


def create_session(db: Session, user_id: str, device: DeviceInfo, tokens: TokenPair) -> UserSession:
    now = utcnow()
    session = UserSession(
        user_id=str(user_id),
        expires_at=now + timedelta(days=settings.SESSION_EXPIRE_DAYS),
        last_used_at=now,
    )
    _apply_device(session, device)
    session.refresh_token = RefreshToken(
        token_hash=digest_secret(tokens.refresh_token),
        expires_at=tokens.refresh_expires_at,
    )
    db.add(session)
    db.flush()
    return session


def rotate_session(
    db: Session,
    session: UserSession,
    tokens: TokenPair,
    *,
    device: DeviceInfo | None = None,
    expected_token_hash: str | None = None,
) -> bool:
    """
    Swap the session's refresh token digest for the new one.

    With expected_token_hash the swap only happens if the stored digest still
    equals it; returns False when another request rotated first.
    """
    now = utcnow()
    values = {
        RefreshToken.token_hash: digest_secret(tokens.refresh_token),
        RefreshToken.expires_at: tokens.refresh_expires_at,
        RefreshToken.updated_at: now,
    }
    query = db.query(RefreshToken).filter(RefreshToken.session_id == session.id)
    if expected_token_hash is not None:
        query = query.filter(RefreshToken.token_hash == expected_token_hash)

    updated = query.update(values, synchronize_session="fetch")
    if updated != 1:
        if expected_token_hash is not None:
            return False
        db.add(
            RefreshToken(
                session_id=session.id,
                token_hash=values[RefreshToken.token_hash],
                expires_at=tokens.refresh_expires_at,
            )
        )

    session.last_used_at = now
    if device is not None:
        _apply_device(session, device)
    db.flush()
    db.expire(session, ["refresh_token"])
    return True


def delete_sessions(db: Session, session_ids: Sequence[str]) -> int:
    ids = [str(s) for s in session_ids]
    if not ids:
        return 0
    db.query(RefreshToken).filter(RefreshToken.session_id.in_(ids)).delete(synchronize_session="fetch")
    deleted = db.query(UserSession).filter(UserSession.id.in_(ids)).delete(synchronize_session="fetch")
    db.flush()
    return deleted


def delete_all_sessions(db: Session, user_id: str, *, except_session_id: str | None = None) -> int:
    query = db.query(UserSession.id).filter(UserSession.user_id == str(user_id))
    if except_session_id is not None:
        query = query.filter(UserSession.id != str(except_session_id))
    return delete_sessions(db, [row.id for row in query.all()])


def prune_expired_sessions(db: Session, user_id: str, *, now: datetime | None = None) -> int:
    now = now or utcnow()
    rows = (
        db.query(UserSession.id)
        .filter(UserSession.user_id == str(user_id), UserSession.expires_at <= now)
        .all()
    )
    return delete_sessions(db, [row.id for row in rows])


# -----------------------------
# Reconciler
# -----------------------------
def reconcile_session(
    db: Session,
    user_id: str,
    device: DeviceInfo,
    *,
    presented_refresh_token: str | None = None,
) -> ReconciledSession:
    """
    Attach a freshly minted token pair to a session for this user and device.

    1. presented refresh token that maps to a live session of this user -> rotate it
    2. otherwise a live session with the same fingerprint -> rotate it
    3. otherwise create a new session
    """
    now = utcnow()
    prune_expired_sessions(db, user_id, now=now)
    tokens = mint_token_pair(str(user_id))

    session: Optional[UserSession] = None
    if presented_refresh_token:
        candidate = find_session_by_refresh_token(db, presented_refresh_token, user_id=user_id, now=now)
        if candidate is not None and rotate_session(
            db,
            candidate,
            tokens,
            device=device,
            expected_token_hash=digest_secret(presented_refresh_token),
        ):
            session = candidate

    if session is None:
        candidate = find_matching_session(db, user_id, device, now=now)
        if candidate is not None:
            rotate_session(db, candidate, tokens, device=device)
            session = candidate

    if session is None:
        session = create_session(db, user_id, device, tokens)
        logger.info("Session created: user_id=%s session_id=%s", user_id, session.id)
    else:
        logger.info("Session rotated: user_id=%s session_id=%s", user_id, session.id)

    return ReconciledSession(session=session, tokens=tokens)


# -----------------------------
# Logout family
# -----------------------------
def logout(db: Session, session: UserSession) -> None:
    session_id, user_id = session.id, session.user_id
    try:
        delete_sessions(db, [session_id])
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Logged out: user_id=%s session_id=%s", user_id, session_id)


def logout_all(db: Session, user_id: str) -> int:
    try:
        deleted = delete_all_sessions(db, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Logged out of all sessions: user_id=%s count=%s", user_id, deleted)
    return deleted


def logout_session(db: Session, user_id: str, session_id: str) -> None:
    session = (
        db.query(UserSession)
        .filter(UserSession.id == str(session_id), UserSession.user_id == str(user_id))
        .first()
    )
    if session is None:
        raise NotFound("Session not found")
    logout(db, session)
