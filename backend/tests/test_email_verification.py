from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from sessionauth.core.clock import utcnow
from sessionauth.core.errors import Conflict, InvalidOrExpiredCode
from sessionauth.models.email_verification import EmailVerification
from sessionauth.services.email_verification import (
    issue_email_verification,
    resend_verification,
    verify_email,
)


def _record(db: Session, user_id: str) -> EmailVerification:
    return db.query(EmailVerification).filter(EmailVerification.user_id == user_id).one()


def test_issue_stores_digest_not_raw_token(db_session: Session, make_user):
    user = make_user("dora@example.com", verified=False)

    token = issue_email_verification(db_session, user)
    db_session.commit()

    record = _record(db_session, user.id)
    assert token
    assert record.token_hash != token


def test_reissue_replaces_previous_token(db_session: Session, make_user):
    user = make_user("dora@example.com", verified=False)
    first = issue_email_verification(db_session, user)
    second = issue_email_verification(db_session, user)
    db_session.commit()

    assert db_session.query(EmailVerification).count() == 1
    with pytest.raises(InvalidOrExpiredCode):
        verify_email(db_session, user.id, first)

    verified = verify_email(db_session, user.id, second)
    assert verified.is_verified is True
    assert db_session.query(EmailVerification).count() == 0


def test_verify_unknown_user_is_invalid(db_session: Session):
    with pytest.raises(InvalidOrExpiredCode):
        verify_email(db_session, "missing-user", "whatever")


def test_verify_expired_token(db_session: Session, make_user):
    user = make_user("dora@example.com", verified=False)
    token = issue_email_verification(db_session, user)
    _record(db_session, user.id).expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()

    with pytest.raises(InvalidOrExpiredCode) as exc:
        verify_email(db_session, user.id, token)
    assert exc.value.message == "Verification token has expired"

    db_session.refresh(user)
    assert user.is_verified is False


def test_resend_is_silent_for_unknown_email(db_session: Session, emailer):
    resend_verification(db_session, emailer, "nobody@example.com")
    assert emailer.verification_tokens == []


def test_resend_for_verified_user_is_conflict(db_session: Session, emailer, users):
    alice, _ = users
    with pytest.raises(Conflict):
        resend_verification(db_session, emailer, alice.email)


def test_resend_rolls_back_when_delivery_fails(db_session: Session, emailer, make_user):
    user = make_user("dora@example.com", verified=False)
    emailer.fail = True

    with pytest.raises(Exception):
        resend_verification(db_session, emailer, "  DORA@example.com ")

    assert db_session.query(EmailVerification).filter(EmailVerification.user_id == user.id).count() == 0
