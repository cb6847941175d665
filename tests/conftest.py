"""
Pytest configuration and shared fixtures.

Provides a test application, a clean in-memory database per test, a
test client, record factories and fake notification transports.  Uses
the ``testing`` configuration (SQLite in memory, no background sweep).

The fakes replace only the transports: the real
``NotificationDispatcher`` and recipient resolution run in every test.
"""

import threading

import pytest
from flask import g

from app import create_app
from app.extensions import db as _db
from app.models.asset import Asset
from app.models.user import ROLE_MEMBER, User, UserPushToken
from app.services.auth_service import generate_access_token
from app.services.notification_service import EXTENSION_KEY, NotificationDispatcher
from app.services.push_client import PushInitResult, TokenResult


class FakePushClient:
    """Records multicast sends; tokens listed in ``failing`` fail."""

    def __init__(self, enabled: bool = True) -> None:
        self.init_result = PushInitResult(
            enabled=enabled, reason="" if enabled else "disabled in test"
        )
        self.sent: list[dict] = []
        self.failing: set[str] = set()
        self.raise_error: Exception | None = None

    @property
    def enabled(self) -> bool:
        return self.init_result.enabled

    def send_multicast(self, tokens, title, body, data):
        if self.raise_error is not None:
            raise self.raise_error
        self.sent.append(
            {"tokens": list(tokens), "title": title, "body": body, "data": data}
        )
        return [
            TokenResult(
                token=token,
                success=token not in self.failing,
                message_id=None if token in self.failing else f"msg-{token}",
                error="Requested entity was not found." if token in self.failing else None,
            )
            for token in tokens
        ]

    def tokens_sent(self) -> list[str]:
        return [token for call in self.sent for token in call["tokens"]]


class FakeMailClient:
    """Records sent messages; addresses listed in ``failing`` raise."""

    enabled = True

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.failing: set[str] = set()
        self._lock = threading.Lock()

    def send(self, to, subject, body, display_name=""):
        if to in self.failing:
            raise OSError(f"connection refused for {to}")
        with self._lock:
            self.sent.append(
                {"to": to, "subject": subject, "body": body, "name": display_name}
            )
        return f"<{len(self.sent)}@test>"

    def messages_to(self, address: str) -> list[dict]:
        return [m for m in self.sent if m["to"] == address]


@pytest.fixture()
def push_client():
    return FakePushClient()


@pytest.fixture()
def mail_client():
    return FakeMailClient()


@pytest.fixture()
def app(push_client, mail_client):  # pylint: disable=redefined-outer-name
    """
    Create a Flask application configured for testing.

    Each test gets a fresh in-memory database and a dispatcher wired to
    the fake transports.  An application context stays pushed for the
    whole test.
    """
    app = create_app("testing")
    app.extensions[EXTENSION_KEY] = NotificationDispatcher(
        push_client, mail_client, max_concurrent_sends=3
    )

    # Requests made by the test client reuse the pushed app context (and
    # with it ``g``); drop the cached user so every request authenticates.
    @app.before_request
    def _reset_login_cache():
        g.pop("_login_user", None)

    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def db_session(app):  # pylint: disable=redefined-outer-name,unused-argument
    """The Flask-SQLAlchemy session bound to the test database."""
    return _db.session


@pytest.fixture()
def client(app):  # pylint: disable=redefined-outer-name
    """
    Provide a Flask test client for making HTTP requests.

    Usage in tests::

        def test_health(client):
            response = client.get("/health")
            assert response.status_code == 200
    """
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture()
def make_user(db_session):  # pylint: disable=redefined-outer-name
    """
    Factory for committed users.

    Usage::

        admin = make_user("admin", tokens=["tok-admin"])
    """
    counter = {"n": 0}

    def _make_user(role=ROLE_MEMBER, tokens=(), name=None, email=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"{role.title()} {n}",
            email=email or f"{role}{n}@example.com",
            role=role,
            **fields,
        )
        for token in tokens:
            user.push_tokens.append(UserPushToken(token=token))
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_asset(db_session):  # pylint: disable=redefined-outer-name
    """Factory for committed, available assets."""
    counter = {"n": 0}

    def _make_asset(owner, purchaser=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        asset = Asset(
            ch_id=fields.pop("ch_id", f"ch/{n:02d}"),
            name=fields.pop("name", f"Laptop {n}"),
            model=fields.pop("model", "ThinkPad T14"),
            serial_number=fields.pop("serial_number", f"SN-{n:04d}"),
            owner_id=owner.id,
            purchaser_id=(purchaser or owner).id,
            **fields,
        )
        db_session.add(asset)
        db_session.commit()
        return asset

    return _make_asset


@pytest.fixture()
def auth_headers(app):  # pylint: disable=redefined-outer-name,unused-argument
    """Return ``Authorization`` headers for a user."""

    def _auth_headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user)}"}

    return _auth_headers
