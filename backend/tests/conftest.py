import os

# Settings are read at import time; pin the test environment first.
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("JWT_ACCESS_SECRET", "test_access_secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test_refresh_secret")
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["ENABLE_RATE_LIMITING"] = "false"

from contextlib import contextmanager
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sessionauth.core import config as app_config
from sessionauth.core.base import Base
from sessionauth.core.clock import utcnow
from sessionauth.core.database import enable_sqlite_foreign_keys, get_db
from sessionauth.core.errors import EmailDeliveryError
from sessionauth.core.rate_limit import limiter
from sessionauth.core.security import hash_password
from sessionauth.dependencies.email import get_email_dispatcher
from sessionauth.models import User
from sessionauth.services.email import EmailDispatcher

PASSWORD = "Sup3r$ecretPass"
NEW_PASSWORD = "An0ther#Secret9"


class RecordingEmailDispatcher(EmailDispatcher):
    """Keeps every message in memory so tests can read codes and links."""

    def __init__(self) -> None:
        super().__init__(self._record, frontend_base_url="http://frontend.test", provider="test")
        self.messages: list[dict] = []
        self.verification_tokens: list[dict] = []
        self.two_factor_codes: list[dict] = []
        self.reset_tokens: list[dict] = []
        self.fail = False

    def _record(self, to_email: str, subject: str, body: str) -> Optional[str]:
        if self.fail:
            raise EmailDeliveryError("Simulated delivery failure")
        self.messages.append({"to": to_email, "subject": subject, "body": body})
        return f"msg_{len(self.messages)}"

    def send_verification_email(self, *, to: str, user_id: str, token: str):
        msg_id = super().send_verification_email(to=to, user_id=user_id, token=token)
        self.verification_tokens.append({"to": to, "user_id": user_id, "token": token})
        return msg_id

    def send_two_factor_email(self, *, to: str, code: str):
        msg_id = super().send_two_factor_email(to=to, code=code)
        self.two_factor_codes.append({"to": to, "code": code})
        return msg_id

    def send_password_reset_email(self, *, to: str, token: str):
        msg_id = super().send_password_reset_email(to=to, token=token)
        self.reset_tokens.append({"to": to, "token": token})
        return msg_id

    def last_code(self) -> str:
        return self.two_factor_codes[-1]["code"]


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # StaticPool keeps one in-memory DB for the whole run; reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def emailer():
    return RecordingEmailDispatcher()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests tweak the process-global settings object and limiter; restore both after each test.
    """
    keys = [
        "ACCESS_TOKEN_EXPIRE_MINUTES",
        "ACCESS_TOKEN_RENEWAL_WINDOW_MINUTES",
        "REFRESH_TOKEN_EXPIRE_DAYS",
        "SESSION_EXPIRE_DAYS",
        "ENABLE_RATE_LIMITING",
        "LOGIN_RATE_LIMIT",
        "RESEND_RATE_LIMIT",
        "TWO_FACTOR_RATE_LIMIT",
        "PASSWORD_MIN_LENGTH",
        "EMAIL_ENABLED",
        "EMAIL_PROVIDER",
        "RESEND_API_KEY",
        "FROM_EMAIL",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)
        limiter.reset()


@pytest.fixture()
def app(db_session, emailer):
    import sessionauth.main as main

    fastapi_app = main.app
    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_email_dispatcher] = lambda: emailer
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


def _make_user(db_session, email: str, *, verified: bool = True, two_factor: bool = False) -> User:
    user = User(
        email=email,
        name=email.split("@")[0].title(),
        password_hash=hash_password(PASSWORD),
        is_verified=verified,
        is_two_factor_enabled=two_factor,
        password_changed_at=utcnow(),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def users(db_session):
    """
    Two verified users without 2FA.
    """
    return _make_user(db_session, "alice@example.com"), _make_user(db_session, "bob@example.com")


@pytest.fixture()
def make_user(db_session):
    def _factory(email: str, **kwargs) -> User:
        return _make_user(db_session, email, **kwargs)

    return _factory


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def client_for(app):
    """
    Context manager yielding a client already logged in as the given email.

    Usage:
        with client_for("alice@example.com") as c:
            ...
    """

    @contextmanager
    def _client_for(email: str, password: str = PASSWORD, headers: dict | None = None):
        with TestClient(app, headers=headers or {}) as c:
            res = c.post("/auth/login", json={"email": email, "password": password})
            assert res.status_code == 200, res.text
            yield c

    return _client_for


def login(client: TestClient, email: str, password: str = PASSWORD, **kwargs):
    return client.post("/auth/login", json={"email": email, "password": password}, **kwargs)
