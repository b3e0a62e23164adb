# reminders.py
"""
Renewal reminder job.

Every hour the scheduler emails a reminder for each active subscription
whose reminder window has opened, then rolls past renewal dates forward
by one or more billing cycles.
"""

import logging
import smtplib
from datetime import date, datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from dateutil.relativedelta import relativedelta

import config
from database import SessionLocal, Subscription
from email_service import load_email_settings, send_reminder_email

logger = logging.getLogger(__name__)

CYCLE_DELTAS = {
    "weekly": relativedelta(weeks=+1),
    "monthly": relativedelta(months=+1),
    "quarterly": relativedelta(months=+3),
    "yearly": relativedelta(years=+1),
}


def reminder_date(subscription):
    return subscription.next_renewal - timedelta(days=subscription.reminder_days_before)


def check_and_send_reminders(db, today=None):
    """Send due reminders. Returns how many were sent."""
    today = today or date.today()
    logger.info("Checking renewal reminders")

    settings = load_email_settings(db)
    if not settings.is_configured:
        logger.warning("Email not configured, skipping reminders")
        return 0

    subscriptions = (
        db.query(Subscription)
        .filter(Subscription.status == "active", Subscription.reminder_sent.is_(False))
        .all()
    )

    sent = 0
    for sub in subscriptions:
        if not sub.next_renewal or not sub.reminder_days_before:
            continue
        if today < reminder_date(sub):
            continue

        recipient = settings.email_to or sub.user.email
        logger.info(f"Sending reminder for subscription {sub.id} ({sub.name})")
        try:
            send_reminder_email(sub, settings, recipient, today)
        except (smtplib.SMTPException, OSError) as e:
            # reminder_sent stays False, next scan retries
            logger.error(f"Error sending reminder for {sub.name}: {e}")
            continue

        sub.reminder_sent = True
        db.commit()
        sent += 1

    return sent


def advance_renewal(next_renewal, billing_cycle, today):
    """First renewal date on or after today, stepping whole cycles from next_renewal."""
    if billing_cycle not in CYCLE_DELTAS:
        raise ValueError(f"Unknown billing cycle: {billing_cycle}")
    delta = CYCLE_DELTAS[billing_cycle]

    # step from the anchor so the 31st stays the 31st where the month allows
    steps = 1
    candidate = next_renewal + delta * steps
    while candidate < today:
        steps += 1
        candidate = next_renewal + delta * steps
    return candidate


def reset_expired_reminders(db, today=None):
    """Roll renewals that are in the past forward and re-arm their reminders."""
    today = today or date.today()
    expired = (
        db.query(Subscription)
        .filter(Subscription.status == "active", Subscription.next_renewal < today)
        .all()
    )

    updated = 0
    for sub in expired:
        if sub.billing_cycle not in CYCLE_DELTAS:
            logger.warning(f"Subscription {sub.id} has unknown billing cycle {sub.billing_cycle}")
            continue

        new_date = advance_renewal(sub.next_renewal, sub.billing_cycle, today)
        if not sub.auto_renew or (sub.end_date and new_date > sub.end_date):
            sub.status = "cancelled"
            logger.info(f"Subscription {sub.id} ({sub.name}) ended on {sub.next_renewal}")
        else:
            logger.info(f"Subscription {sub.id} ({sub.name}) renewed until {new_date}")
            sub.next_renewal = new_date
        sub.reminder_sent = False
        updated += 1

    db.commit()
    return updated


def run_reminder_cycle():
    with SessionLocal() as db:
        try:
            check_and_send_reminders(db)
            reset_expired_reminders(db)
        except Exception:
            logger.exception("Reminder cycle failed")
            db.rollback()


def create_scheduler():
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        run_reminder_cycle,
        "cron",
        minute=config.REMINDER_CRON_MINUTE,
        id="renewal_reminders",
        next_run_time=datetime.now(),
    )  # hourly, plus once at startup
    return scheduler
