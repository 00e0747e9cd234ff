from __future__ import annotations

from conftest import login


def _assert_error_shape(res, *, error: str | None = None):
    data = res.json()
    assert isinstance(data, dict)
    assert data.get("status") == "error"
    assert isinstance(data.get("error"), str) and data["error"]
    assert isinstance(data.get("message"), str) and data["message"]
    if error is not None:
        assert data["error"] == error


def test_error_shape_401_missing_tokens(client):
    res = client.get("/auth/me")
    assert res.status_code == 401
    _assert_error_shape(res, error="UNAUTHORIZED")


def test_error_shape_401_invalid_credentials(client, users):
    res = login(client, "alice@example.com", "Wr0ng$Password")
    assert res.status_code == 401
    _assert_error_shape(res, error="INVALID_CREDENTIALS")


def test_error_shape_404_unknown_session(client_for, users):
    with client_for("alice@example.com") as c:
        res = c.post("/auth/logout/unknown")
    assert res.status_code == 404
    _assert_error_shape(res, error="NOT_FOUND")


def test_error_shape_422_request_validation_error(client):
    res = client.post("/auth/login", json={"email": "not-an-email", "password": "x"})
    assert res.status_code == 422
    _assert_error_shape(res, error="VALIDATION_ERROR")
    assert isinstance(res.json()["details"]["errors"], list)


def test_error_shape_400_conflict(client, users):
    res = client.post(
        "/auth/register",
        json={"email": "alice@example.com", "password": "Sup3r$ecretPass", "confirmPassword": "Sup3r$ecretPass"},
    )
    assert res.status_code == 400
    _assert_error_shape(res, error="CONFLICT")


def test_error_shape_404_unknown_route(client):
    res = client.get("/auth/does-not-exist")
    assert res.status_code == 404
    _assert_error_shape(res, error="NOT_FOUND")


def test_health_endpoints(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/health/ready").status_code in (200, 503)
