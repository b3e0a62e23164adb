import os
import smtplib
import tempfile
from datetime import date

# must be set before the application modules are imported
_db_dir = tempfile.mkdtemp()
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret-0123456789abcdef0123456789abcdef"
os.environ["REMINDERS_ENABLED"] = "false"
os.environ["REQUIRE_EMAIL_VERIFICATION"] = "true"
for _key in ("SMTP_HOST", "SMTP_USER", "SMTP_PASS", "EMAIL_FROM", "EMAIL_TO", "ADMIN_EMAIL"):
    os.environ[_key] = ""

import pytest
from fastapi.testclient import TestClient

import auth
from database import Base, engine, SessionLocal, Setting, Subscription, seed_categories
from main import app


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed_categories(session)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    return TestClient(app)


def _verified_user(db, email, password="secret123", name=None):
    user = auth.create_user(db, email, password, name)
    user.email_verified = True
    db.commit()
    return user


def _headers_for(user):
    return {"Authorization": f"Bearer {auth.create_access_token(user.id, user.email)}"}


@pytest.fixture
def user(db):
    return _verified_user(db, "alice@example.com", name="Alice")


@pytest.fixture
def auth_headers(user):
    return _headers_for(user)


@pytest.fixture
def other_user(db):
    return _verified_user(db, "bob@example.com", name="Bob")


@pytest.fixture
def other_headers(other_user):
    return _headers_for(other_user)


@pytest.fixture
def make_subscription(db):
    def _make(user, **overrides):
        values = {
            "name": "Netflix",
            "amount": 10.0,
            "currency": "EUR",
            "billing_cycle": "monthly",
            "start_date": date(2025, 1, 1),
            "next_renewal": date(2025, 2, 1),
            "reminder_days_before": 7,
            "status": "active",
            "auto_renew": True,
        }
        values.update(overrides)
        subscription = Subscription(user_id=user.id, **values)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    return _make


@pytest.fixture
def smtp_configured(db):
    db.add(Setting(key="smtp_host", value="smtp.example.com"))
    db.add(Setting(key="email_from", value="tracker@example.com"))
    db.commit()


class FakeSMTP:
    instances = []
    fail_on_send = False
    fail_on_starttls = False

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.sent = []
        self.logged_in = None
        self.started_tls = False
        self.closed = False
        FakeSMTP.instances.append(self)

    def ehlo(self):
        pass

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self):
        if FakeSMTP.fail_on_starttls:
            raise smtplib.SMTPException("TLS not available")
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, message):
        if FakeSMTP.fail_on_send:
            raise smtplib.SMTPException("relay denied")
        self.sent.append(message)

    def quit(self):
        self.closed = True

    def close(self):
        self.closed = True


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_on_send = False
    FakeSMTP.fail_on_starttls = False
    monkeypatch.setattr("email_service.smtplib.SMTP", FakeSMTP)
    monkeypatch.setattr("email_service.smtplib.SMTP_SSL", FakeSMTP)
    return FakeSMTP
