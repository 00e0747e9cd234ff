from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Session

from sessionauth.core.clock import utcnow
from sessionauth.models.email_verification import EmailVerification
from sessionauth.models.password_reset import PasswordReset
from sessionauth.models.refresh_token import RefreshToken
from sessionauth.models.session import UserSession
from sessionauth.models.two_factor_token import TwoFactorToken

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    two_factor_tokens: int = 0
    email_verifications: int = 0
    password_resets: int = 0
    sessions: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def purge_expired(db: Session, *, now: datetime | None = None, dry_run: bool = False) -> PurgeReport:
    """
    Delete dead auth records: used or expired 2FA codes, expired verification
    and reset links, and sessions past their absolute expiry (with their
    refresh tokens). With dry_run the counts are computed and nothing is committed.
    """
    now = now or utcnow()
    report = PurgeReport()

    two_factor_q = db.query(TwoFactorToken).filter(
        or_(TwoFactorToken.used_at.isnot(None), TwoFactorToken.expires_at <= now)
    )
    verification_q = db.query(EmailVerification).filter(EmailVerification.expires_at <= now)
    reset_q = db.query(PasswordReset).filter(PasswordReset.expires_at <= now)
    session_ids = [row.id for row in db.query(UserSession.id).filter(UserSession.expires_at <= now).all()]

    if dry_run:
        report.two_factor_tokens = two_factor_q.count()
        report.email_verifications = verification_q.count()
        report.password_resets = reset_q.count()
        report.sessions = len(session_ids)
        logger.info("Purge dry run: %s", report.as_dict())
        return report

    try:
        report.two_factor_tokens = two_factor_q.delete(synchronize_session=False)
        report.email_verifications = verification_q.delete(synchronize_session=False)
        report.password_resets = reset_q.delete(synchronize_session=False)
        if session_ids:
            db.query(RefreshToken).filter(RefreshToken.session_id.in_(session_ids)).delete(
                synchronize_session=False
            )
            report.sessions = (
                db.query(UserSession).filter(UserSession.id.in_(session_ids)).delete(synchronize_session=False)
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Purged expired auth records: %s", report.as_dict())
    return report
