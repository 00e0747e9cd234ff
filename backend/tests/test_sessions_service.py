from __future__ import annotations

from datetime import timedelta

import pytest

from sessionauth.core.clock import utcnow
from sessionauth.core.errors import NotFound
from sessionauth.core.security import digest_secret, mint_token_pair
from sessionauth.models import RefreshToken, UserSession
from sessionauth.services.devices import DeviceInfo
from sessionauth.services.sessions import (
    find_session_by_refresh_token,
    list_sessions,
    logout_all,
    logout_session,
    reconcile_session,
    rotate_session,
)

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.5 Mobile/15E148 Safari/604.1"
)
CHROME_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

PHONE = DeviceInfo.from_client("10.0.0.1", IPHONE_UA)
DESKTOP = DeviceInfo.from_client("10.0.0.2", CHROME_WINDOWS_UA)


def _reconcile(db_session, user, device, presented=None):
    result = reconcile_session(db_session, user.id, device, presented_refresh_token=presented)
    db_session.commit()
    return result


def test_device_info_parses_user_agent():
    assert PHONE.device_type == "mobile"
    assert PHONE.device_name == "iPhone"
    assert PHONE.os == "iOS"
    assert DESKTOP.device_type is None
    assert DESKTOP.browser == "Chrome"
    assert DESKTOP.os == "Windows"
    assert DeviceInfo.from_client("1.2.3.4", None) == DeviceInfo(ip_address="1.2.3.4")


def test_first_login_creates_session_with_absolute_expiry(db_session, users):
    alice, _ = users
    result = _reconcile(db_session, alice, PHONE)

    session = result.session
    assert session.user_id == alice.id
    assert session.device_type == "mobile"
    assert session.ip_address == "10.0.0.1"
    remaining = session.expires_at.replace(tzinfo=None) - utcnow().replace(tzinfo=None)
    assert timedelta(days=29) < remaining <= timedelta(days=30)

    stored = db_session.query(RefreshToken).filter(RefreshToken.session_id == session.id).one()
    assert stored.token_hash == digest_secret(result.refresh_token)


def test_same_fingerprint_reuses_and_rotates_session(db_session, users):
    alice, _ = users
    first = _reconcile(db_session, alice, PHONE)
    second = _reconcile(db_session, alice, PHONE)

    assert second.session.id == first.session.id
    assert second.refresh_token != first.refresh_token
    assert db_session.query(UserSession).filter(UserSession.user_id == alice.id).count() == 1
    # Old refresh token no longer maps to a session.
    assert find_session_by_refresh_token(db_session, first.refresh_token) is None
    assert find_session_by_refresh_token(db_session, second.refresh_token).id == first.session.id


def test_different_fingerprint_creates_new_session(db_session, users):
    alice, _ = users
    phone = _reconcile(db_session, alice, PHONE)
    desktop = _reconcile(db_session, alice, DESKTOP)

    assert phone.session.id != desktop.session.id
    assert len(list_sessions(db_session, alice.id)) == 2


def test_presented_refresh_token_wins_over_fingerprint(db_session, users):
    alice, _ = users
    phone = _reconcile(db_session, alice, PHONE)

    # Same session even though the device now looks different (e.g. new IP).
    moved = DeviceInfo.from_client("192.168.1.50", IPHONE_UA)
    result = _reconcile(db_session, alice, moved, presented=phone.refresh_token)

    assert result.session.id == phone.session.id
    assert result.session.ip_address == "192.168.1.50"


def test_presented_refresh_token_of_other_user_is_ignored(db_session, users):
    alice, bob = users
    bobs = _reconcile(db_session, bob, PHONE)
    result = _reconcile(db_session, alice, DESKTOP, presented=bobs.refresh_token)

    assert result.session.user_id == alice.id
    assert result.session.id != bobs.session.id
    assert find_session_by_refresh_token(db_session, bobs.refresh_token).id == bobs.session.id


def test_expired_sessions_are_pruned_and_not_reused(db_session, users):
    alice, _ = users
    old = _reconcile(db_session, alice, PHONE)
    old_id = old.session.id
    old.session.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()

    fresh = _reconcile(db_session, alice, PHONE)
    assert fresh.session.id != old_id
    assert db_session.get(UserSession, old_id) is None


def test_rotation_compare_and_swap_rejects_stale_digest(db_session, users):
    alice, _ = users
    result = _reconcile(db_session, alice, PHONE)
    session = result.session

    assert rotate_session(
        db_session,
        session,
        mint_token_pair(alice.id),
        expected_token_hash=digest_secret(result.refresh_token),
    )
    db_session.commit()

    # A second request still holding the original token loses.
    assert not rotate_session(
        db_session,
        session,
        mint_token_pair(alice.id),
        expected_token_hash=digest_secret(result.refresh_token),
    )


def test_expired_refresh_row_does_not_authenticate(db_session, users):
    alice, _ = users
    result = _reconcile(db_session, alice, PHONE)
    row = db_session.query(RefreshToken).filter(RefreshToken.session_id == result.session.id).one()
    row.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    assert find_session_by_refresh_token(db_session, result.refresh_token) is None


def test_logout_session_checks_ownership(db_session, users):
    alice, bob = users
    bobs = _reconcile(db_session, bob, PHONE)

    with pytest.raises(NotFound):
        logout_session(db_session, alice.id, bobs.session.id)

    logout_session(db_session, bob.id, bobs.session.id)
    assert list_sessions(db_session, bob.id) == []
    assert db_session.query(RefreshToken).count() == 0


def test_logout_all_removes_every_session_of_user_only(db_session, users):
    alice, bob = users
    _reconcile(db_session, alice, PHONE)
    _reconcile(db_session, alice, DESKTOP)
    _reconcile(db_session, bob, PHONE)

    assert logout_all(db_session, alice.id) == 2
    assert list_sessions(db_session, alice.id) == []
    assert len(list_sessions(db_session, bob.id)) == 1
