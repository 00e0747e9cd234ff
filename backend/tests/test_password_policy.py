from sessionauth.core import config as app_config
from sessionauth.core.errors import ValidationError
from sessionauth.core.password_policy import ensure_strong_password, evaluate_password

import pytest


def test_strong_password_has_no_violations():
    assert evaluate_password("Sup3r$ecretPass", email="alice@example.com") == []


def test_each_rule_reports_its_own_violation():
    assert "min_length" in evaluate_password("Aa1!")
    assert "max_length" in evaluate_password("Aa1!" + "x" * 200)
    assert "uppercase" in evaluate_password("lower$case123")
    assert "lowercase" in evaluate_password("UPPER$CASE123")
    assert "number" in evaluate_password("No$DigitsHere")
    assert "special_char" in evaluate_password("NoSpecial123")


def test_password_containing_email_local_part_is_rejected():
    violations = evaluate_password("Alice$ecret123", email="alice@example.com")
    assert "contains_email" in violations


def test_common_password_is_rejected():
    assert "denylist_common" in evaluate_password("Password123!")


def test_min_length_follows_settings():
    app_config.settings.PASSWORD_MIN_LENGTH = 20
    assert "min_length" in evaluate_password("Sup3r$ecretPass")


def test_ensure_strong_password_raises_with_details():
    with pytest.raises(ValidationError) as exc:
        ensure_strong_password("password")
    assert exc.value.status_code == 400
    assert exc.value.details["code"] == "WEAK_PASSWORD"
    assert "uppercase" in exc.value.details["violations"]


def test_register_rejects_weak_password(client):
    res = client.post(
        "/auth/register",
        json={"email": "weak@example.com", "password": "password", "confirmPassword": "password"},
    )
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert body["details"]["code"] == "WEAK_PASSWORD"
    assert "uppercase" in body["details"]["violations"]
