import re
from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from mailer import Mailer
from main import create_app

ADMIN_EMAIL = "admin@x.com"
PASSWORD = "pw123456"

TOKEN_RE = re.compile(r"/(?:verify-email|reset-password)/([0-9a-f]{64})")


class RecordingMailer(Mailer):
    """Keeps sent emails in memory instead of talking to SMTP."""

    def __init__(self, settings):
        super().__init__(settings)
        self.outbox = []

    def send(self, email):
        self.outbox.append(email)

    def last_token(self):
        match = TOKEN_RE.search(self.outbox[-1].text)
        assert match, "no token link in the last email"
        return match.group(1)


class FakeClock:
    # Starts at the real time: mongomock prunes TTL-indexed rows against the wall clock.
    def __init__(self, now=None):
        self.now = now or datetime.utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_settings(**overrides):
    values = dict(
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        admin_emails=[ADMIN_EMAIL],
        backend_url="http://api.test",
        frontend_url="http://app.test",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def db():
    return mongomock.MongoClient().portfolify_test


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer(settings):
    return RecordingMailer(settings)


@pytest.fixture
def app(settings, db, mailer, clock):
    return create_app(settings, database=db, mailer=mailer, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def signup(client, mailer):
    """Register, verify and log in an account; returns its bearer auth headers."""

    def _signup(email, password=PASSWORD):
        res = client.post("/register", json={"email": email, "password": password})
        assert res.status_code == 200, res.text
        client.get(f"/verify-email/{mailer.last_token()}", follow_redirects=False)
        res = client.post("/login", json={"email": email, "password": password})
        assert res.status_code == 200, res.text
        return {"Authorization": f"Bearer {res.json()['token']}"}

    return _signup
