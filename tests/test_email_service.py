from datetime import date
from types import SimpleNamespace

import email_service
from database import Setting
from email_service import EmailSettings


def _parts(message):
    return [part.get_payload(decode=True).decode("utf-8") for part in message.get_payload()]


def _subscription(**overrides):
    values = dict(
        id="sub-1",
        name="Netflix",
        amount=15.99,
        currency="EUR",
        billing_cycle="monthly",
        next_renewal=date(2025, 2, 1),
        provider="Netflix Inc.",
        website="https://netflix.com",
        notes=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_load_email_settings_prefers_stored_values(db):
    db.add(Setting(key="smtp_host", value="smtp.example.com"))
    db.add(Setting(key="smtp_port", value="465"))
    db.add(Setting(key="smtp_secure", value="true"))
    db.add(Setting(key="smtp_user", value="me@example.com"))
    db.commit()

    settings = email_service.load_email_settings(db)
    assert settings.is_configured
    assert settings.smtp_port == 465
    assert settings.smtp_secure is True
    # falls back to the login when no sender is set
    assert settings.sender == "me@example.com"


def test_load_email_settings_with_bad_port(db):
    db.add(Setting(key="smtp_port", value="not-a-port"))
    db.commit()

    settings = email_service.load_email_settings(db)
    assert settings.smtp_port == 587
    assert not settings.is_configured


def test_reminder_message_content():
    settings = EmailSettings(smtp_host="smtp.example.com", email_from="tracker@example.com")
    message = email_service.build_reminder_message(
        _subscription(notes="<b>ask for discount</b>"),
        settings,
        "me@example.com",
        today=date(2025, 1, 25),
    )

    assert message["Subject"] == "Renewal coming up: Netflix (15.99 EUR)"
    assert message["From"] == "tracker@example.com"
    assert message["To"] == "me@example.com"

    text, html_body = _parts(message)
    assert "Days left: 7" in text
    assert "Billing cycle: Monthly" in text
    assert "Provider: Netflix Inc." in text
    assert "&lt;b&gt;ask for discount&lt;/b&gt;" in html_body
    assert "<b>ask for discount</b>" not in html_body


def test_reminder_message_without_optional_fields():
    message = email_service.build_reminder_message(
        _subscription(provider=None, website=None, currency=None),
        EmailSettings(smtp_host="smtp.example.com"),
        "me@example.com",
        today=date(2025, 2, 1),
    )
    text, _ = _parts(message)
    assert "Provider:" not in text
    assert "Days left: 0" in text
    assert "15.99 EUR" in text


def test_verification_email_not_sent_without_smtp():
    assert not email_service.send_verification_email(
        EmailSettings(), "me@example.com", "abc", "http://localhost:5173"
    )


def test_verification_email_contains_link(fake_smtp):
    settings = EmailSettings(smtp_host="smtp.example.com", smtp_user="bot", smtp_pass="pw")
    assert email_service.send_verification_email(
        settings, "me@example.com", "abc123", "http://localhost:5173/"
    )

    server = fake_smtp.instances[0]
    assert server.started_tls
    assert server.logged_in == ("bot", "pw")
    text, _ = _parts(server.sent[0])
    assert "http://localhost:5173/verify-email?token=abc123" in text


def test_password_reset_email_failure_returns_false(fake_smtp):
    fake_smtp.fail_on_send = True
    settings = EmailSettings(smtp_host="smtp.example.com")
    assert not email_service.send_password_reset_email(
        settings, "me@example.com", "abc123", "http://localhost:5173"
    )


def test_check_smtp_connection_reports_errors(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr("email_service.smtplib.SMTP", refuse)
    ok, error = email_service.check_smtp_connection(EmailSettings(smtp_host="localhost"))
    assert ok is False
    assert "refused" in error


def test_empty_stored_value_overrides_environment(db, monkeypatch):
    monkeypatch.setattr("config.EMAIL_TO", "env@example.com")
    assert email_service.load_email_settings(db).email_to == "env@example.com"

    db.add(Setting(key="email_to", value=""))
    db.commit()
    assert email_service.load_email_settings(db).email_to == ""


def test_connection_closed_when_handshake_fails(fake_smtp):
    fake_smtp.fail_on_starttls = True
    ok, error = email_service.check_smtp_connection(EmailSettings(smtp_host="smtp.example.com"))

    assert ok is False
    assert "TLS" in error
    assert fake_smtp.instances[0].closed
