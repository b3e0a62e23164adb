"""
Email Service

Builds and sends the reminder, verification and password-reset emails.
SMTP settings come from the environment and can be overridden per
installation through the settings table.
"""

import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import date
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import config
from database import get_settings_map

logger = logging.getLogger(__name__)

SETTINGS_KEYS = [
    "smtp_host",
    "smtp_port",
    "smtp_user",
    "smtp_pass",
    "smtp_secure",
    "email_from",
    "email_to",
]

BILLING_CYCLE_LABELS = {
    "weekly": "Weekly",
    "monthly": "Monthly",
    "quarterly": "Quarterly",
    "yearly": "Yearly",
}

SMTP_TIMEOUT = 30


@dataclass
class EmailSettings:
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_secure: bool = False
    email_from: str = ""
    email_to: str = ""

    @property
    def is_configured(self):
        return bool(self.smtp_host)

    @property
    def sender(self):
        return self.email_from or self.smtp_user


def load_email_settings(db):
    """Environment defaults overlaid with the values stored in the settings table."""
    values = {
        "smtp_host": config.SMTP_HOST,
        "smtp_port": config.SMTP_PORT,
        "smtp_user": config.SMTP_USER,
        "smtp_pass": config.SMTP_PASS,
        "smtp_secure": config.SMTP_SECURE,
        "email_from": config.EMAIL_FROM,
        "email_to": config.EMAIL_TO,
    }
    stored = get_settings_map(db)
    for key in SETTINGS_KEYS:
        if key in stored:
            values[key] = stored[key]

    try:
        port = int(values["smtp_port"] or 587)
    except ValueError:
        logger.warning(f"Invalid SMTP port {values['smtp_port']!r}, falling back to 587")
        port = 587

    return EmailSettings(
        smtp_host=values["smtp_host"],
        smtp_port=port,
        smtp_user=values["smtp_user"],
        smtp_pass=values["smtp_pass"],
        smtp_secure=str(values["smtp_secure"]).lower() == "true",
        email_from=values["email_from"],
        email_to=values["email_to"],
    )


def _connect(settings):
    if settings.smtp_secure:
        server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=SMTP_TIMEOUT)
    else:
        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=SMTP_TIMEOUT)
    try:
        if not settings.smtp_secure:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
        if settings.smtp_user:
            server.login(settings.smtp_user, settings.smtp_pass)
    except (smtplib.SMTPException, OSError):
        server.close()
        raise
    return server


def _build_message(settings, to, subject, text, html_body):
    message = MIMEMultipart("alternative")
    message["From"] = settings.sender
    message["To"] = to
    message["Subject"] = subject
    message.attach(MIMEText(text, "plain", "utf-8"))
    message.attach(MIMEText(html_body, "html", "utf-8"))
    return message


def deliver(settings, message):
    """Send a prepared message. SMTP and socket errors propagate to the caller."""
    server = _connect(settings)
    try:
        server.send_message(message)
    finally:
        server.quit()


def billing_cycle_label(cycle):
    return BILLING_CYCLE_LABELS.get(cycle, cycle)


def build_reminder_message(subscription, settings, to, today=None):
    today = today or date.today()
    amount = f"{subscription.amount:.2f} {subscription.currency or 'EUR'}"
    renewal = subscription.next_renewal.strftime("%A, %B %d, %Y")
    days_left = (subscription.next_renewal - today).days
    cycle = billing_cycle_label(subscription.billing_cycle)
    subject = f"Renewal coming up: {subscription.name} ({amount})"

    lines = [
        "RENEWAL REMINDER",
        "",
        f'Your subscription "{subscription.name}" is about to renew.',
        "",
        f"Renewal date: {renewal}",
        f"Days left: {days_left}",
        f"Amount: {amount}",
        f"Billing cycle: {cycle}",
    ]
    if subscription.provider:
        lines.append(f"Provider: {subscription.provider}")
    lines += [
        "",
        "What you can do:",
        "- Renegotiate: ask the provider for a better deal",
        "- Compare: look for cheaper alternatives",
        "- Cancel: if you no longer need it, cancel before the renewal",
        "- Keep: if you are happy, do nothing",
    ]
    if subscription.website:
        lines += ["", f"Provider website: {subscription.website}"]
    if subscription.notes:
        lines += ["", f"Notes: {subscription.notes}"]
    text = "\n".join(lines) + "\n"

    esc = html.escape
    extra = ""
    if subscription.provider:
        extra += f"<p><strong>Provider:</strong> {esc(subscription.provider)}</p>"
    links = ""
    if subscription.website:
        links += f'<p><a href="{esc(subscription.website)}">Go to the provider website</a></p>'
    if subscription.notes:
        links += f"<p><strong>Notes:</strong> {esc(subscription.notes)}</p>"

    html_body = f"""<!DOCTYPE html>
<html>
<body style="font-family: sans-serif;">
  <h2>Your subscription "{esc(subscription.name)}" is about to renew</h2>
  <p><strong>Renewal date:</strong> {renewal}</p>
  <p><strong>Days left:</strong> {days_left}</p>
  <p><strong>Amount:</strong> {esc(amount)}</p>
  <p><strong>Billing cycle:</strong> {esc(cycle)}</p>
  {extra}
  <h3>What you can do</h3>
  <ul>
    <li><strong>Renegotiate</strong> - ask the provider for a better deal</li>
    <li><strong>Compare</strong> - look for cheaper alternatives</li>
    <li><strong>Cancel</strong> - if you no longer need it, cancel before the renewal</li>
    <li><strong>Keep</strong> - if you are happy, do nothing</li>
  </ul>
  {links}
</body>
</html>
"""
    return _build_message(settings, to, subject, text, html_body)


def send_reminder_email(subscription, settings, to, today=None):
    message = build_reminder_message(subscription, settings, to, today)
    deliver(settings, message)
    logger.info(f"Reminder email sent to {to} for subscription {subscription.id}")


def _send_link_email(settings, to, subject, intro, link, action):
    if not settings.is_configured:
        logger.warning(f"SMTP not configured, cannot send '{subject}' to {to}")
        return False

    text = f"{intro}\n\n{action}: {link}\n"
    html_body = (
        f"<p>{html.escape(intro)}</p>"
        f'<p><a href="{html.escape(link)}">{html.escape(action)}</a></p>'
    )
    message = _build_message(settings, to, subject, text, html_body)

    try:
        deliver(settings, message)
        logger.info(f"'{subject}' email sent to {to}")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Error sending '{subject}' email to {to}: {e}")
        return False


def send_verification_email(settings, to, token, base_url):
    link = f"{base_url.rstrip('/')}/verify-email?token={token}"
    return _send_link_email(
        settings,
        to,
        "Verify your email address",
        f"Thanks for signing up. The link is valid for {config.VERIFICATION_TOKEN_EXPIRE_HOURS} hours.",
        link,
        "Verify email",
    )


def send_password_reset_email(settings, to, token, base_url):
    link = f"{base_url.rstrip('/')}/reset-password?token={token}"
    return _send_link_email(
        settings,
        to,
        "Reset your password",
        "We received a request to reset your password. "
        f"The link is valid for {config.RESET_TOKEN_EXPIRE_HOURS} hour(s). "
        "If you did not ask for it, ignore this email.",
        link,
        "Reset password",
    )


def check_smtp_connection(settings):
    """
    Connect and authenticate against the configured SMTP server.

    Returns:
        tuple: (success, error message or None)
    """
    if not settings.is_configured:
        return False, "SMTP not configured"
    try:
        server = _connect(settings)
        server.quit()
        return True, None
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"SMTP connection test failed: {e}")
        return False, str(e)


