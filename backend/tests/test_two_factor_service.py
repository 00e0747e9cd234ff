from __future__ import annotations

from datetime import timedelta

import pytest

from sessionauth.core.clock import utcnow
from sessionauth.core.errors import Conflict, EmailDeliveryError, InvalidOrExpiredCode
from sessionauth.core.security import digest_secret
from sessionauth.models import TwoFactorPurpose, TwoFactorToken
from sessionauth.services.two_factor import (
    confirm_two_factor,
    disable_two_factor,
    enable_two_factor,
    issue_code,
    verify_code,
)


def _unused(db_session, user, purpose):
    return (
        db_session.query(TwoFactorToken)
        .filter(
            TwoFactorToken.user_id == user.id,
            TwoFactorToken.purpose == purpose,
            TwoFactorToken.used_at.is_(None),
        )
        .all()
    )


def test_issue_stores_only_a_digest_and_emails_the_code(db_session, users, emailer):
    alice, _ = users
    issue_code(db_session, emailer, alice, TwoFactorPurpose.LOGIN)

    code = emailer.last_code()
    assert len(code) == 6 and code.isdigit()
    assert emailer.two_factor_codes[-1]["to"] == alice.email

    rows = _unused(db_session, alice, TwoFactorPurpose.LOGIN)
    assert len(rows) == 1
    assert rows[0].code_hash == digest_secret(code)
    assert rows[0].code_hash != code


def test_code_is_single_use(db_session, users, emailer):
    alice, _ = users
    issue_code(db_session, emailer, alice, TwoFactorPurpose.LOGIN)
    code = emailer.last_code()

    verify_code(db_session, alice.id, code, TwoFactorPurpose.LOGIN)
    db_session.commit()

    with pytest.raises(InvalidOrExpiredCode) as exc:
        verify_code(db_session, alice.id, code, TwoFactorPurpose.LOGIN)
    assert exc.value.status_code == 401


def test_reissue_replaces_unused_code_per_purpose(db_session, users, emailer):
    alice, _ = users
    issue_code(db_session, emailer, alice, TwoFactorPurpose.LOGIN)
    first = emailer.last_code()
    issue_code(db_session, emailer, alice, TwoFactorPurpose.PASSWORD_CHANGE)
    change_code = emailer.last_code()
    issue_code(db_session, emailer, alice, TwoFactorPurpose.LOGIN)
    second = emailer.last_code()

    assert len(_unused(db_session, alice, TwoFactorPurpose.LOGIN)) == 1
    assert len(_unused(db_session, alice, TwoFactorPurpose.PASSWORD_CHANGE)) == 1

    if first != second:
        with pytest.raises(InvalidOrExpiredCode):
            verify_code(db_session, alice.id, first, TwoFactorPurpose.LOGIN)
    verify_code(db_session, alice.id, second, TwoFactorPurpose.LOGIN)
    # Other purpose untouched by LOGIN issuance.
    verify_code(db_session, alice.id, change_code, TwoFactorPurpose.PASSWORD_CHANGE)


def test_code_for_one_purpose_does_not_verify_another(db_session, users, emailer):
    alice, _ = users
    issue_code(db_session, emailer, alice, TwoFactorPurpose.PASSWORD_CHANGE)
    with pytest.raises(InvalidOrExpiredCode):
        verify_code(db_session, alice.id, emailer.last_code(), TwoFactorPurpose.LOGIN)


def test_code_is_bound_to_its_user(db_session, users, emailer):
    alice, bob = users
    issue_code(db_session, emailer, alice, TwoFactorPurpose.LOGIN)
    with pytest.raises(InvalidOrExpiredCode):
        verify_code(db_session, bob.id, emailer.last_code(), TwoFactorPurpose.LOGIN)


def test_expired_code_is_rejected(db_session, users, emailer):
    alice, _ = users
    record = issue_code(db_session, emailer, alice, TwoFactorPurpose.LOGIN)
    record.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    with pytest.raises(InvalidOrExpiredCode):
        verify_code(db_session, alice.id, emailer.last_code(), TwoFactorPurpose.LOGIN)


def test_failed_delivery_rolls_back_and_keeps_previous_code(db_session, users, emailer):
    alice, _ = users
    issue_code(db_session, emailer, alice, TwoFactorPurpose.LOGIN)
    previous = emailer.last_code()

    emailer.fail = True
    with pytest.raises(EmailDeliveryError):
        issue_code(db_session, emailer, alice, TwoFactorPurpose.LOGIN)

    rows = _unused(db_session, alice, TwoFactorPurpose.LOGIN)
    assert len(rows) == 1
    assert rows[0].code_hash == digest_secret(previous)


def test_enable_confirm_disable_cycle(db_session, users, emailer):
    alice, _ = users
    enable_two_factor(db_session, emailer, alice)
    assert alice.is_two_factor_enabled is False

    with pytest.raises(InvalidOrExpiredCode) as exc:
        confirm_two_factor(db_session, alice, "000000" if emailer.last_code() != "000000" else "111111")
    assert exc.value.status_code == 400

    confirm_two_factor(db_session, alice, emailer.last_code())
    assert alice.is_two_factor_enabled is True

    with pytest.raises(Conflict):
        enable_two_factor(db_session, emailer, alice)

    disable_two_factor(db_session, alice)
    assert alice.is_two_factor_enabled is False
    assert db_session.query(TwoFactorToken).filter(TwoFactorToken.user_id == alice.id).count() == 0

    with pytest.raises(Conflict):
        disable_two_factor(db_session, alice)
