import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import config
from database import get_db, Category, Subscription, Alternative, Setting, User
from schemas import (
    BILLING_CYCLES,
    SUBSCRIPTION_STATUSES,
    CategoryCreate,
    CategoryResponse,
    SubscriptionCreate,
    SubscriptionUpdate,
    SubscriptionResponse,
    AlternativeCreate,
    AlternativeResponse,
    Stats,
    CategorySpending,
    EmailTestResult,
)
from auth import get_current_user, get_admin_user
from email_service import SETTINGS_KEYS, load_email_settings, check_smtp_connection

logger = logging.getLogger(__name__)

router = APIRouter()

# multiplier to turn one charge into a monthly amount
MONTHLY_FACTORS = {
    "weekly": 4,
    "monthly": 1,
    "quarterly": 1 / 3,
    "yearly": 1 / 12,
}


# columns a partial update may not clear
NON_NULLABLE_FIELDS = (
    "name",
    "amount",
    "currency",
    "billing_cycle",
    "start_date",
    "next_renewal",
    "reminder_days_before",
    "status",
    "auto_renew",
)


def monthly_amount(subscription):
    return subscription.amount * MONTHLY_FACTORS.get(subscription.billing_cycle, 0)


def get_owned_subscription(db: Session, subscription_id: str, user: User):
    subscription = (
        db.query(Subscription)
        .filter(Subscription.id == subscription_id, Subscription.user_id == user.id)
        .first()
    )
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


def validate_subscription_fields(db: Session, data: dict):
    if "billing_cycle" in data and data["billing_cycle"] is not None:
        data["billing_cycle"] = data["billing_cycle"].lower()
        if data["billing_cycle"] not in BILLING_CYCLES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid billing cycle. Allowed values: {BILLING_CYCLES}",
            )
    if "status" in data and data["status"] is not None:
        data["status"] = data["status"].lower()
        if data["status"] not in SUBSCRIPTION_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid status. Allowed values: {SUBSCRIPTION_STATUSES}",
            )
    if data.get("amount") is not None and data["amount"] < 0:
        raise HTTPException(status_code=400, detail="Amount cannot be negative")
    if data.get("reminder_days_before") is not None and data["reminder_days_before"] < 0:
        raise HTTPException(status_code=400, detail="Reminder days cannot be negative")
    if data.get("category_id"):
        if not db.query(Category).filter(Category.id == data["category_id"]).first():
            raise HTTPException(status_code=400, detail="Unknown category")


# --- categories ---


@router.get("/categories", response_model=list[CategoryResponse])
async def get_categories(db: Session = Depends(get_db)):
    return db.query(Category).all()


@router.post(
    "/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED
)
async def create_category(
    category: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_category = Category(
        id=f"custom_{uuid.uuid4().hex[:12]}",
        name=category.name,
        icon=category.icon or "📦",
        color=category.color or "#6B7280",
        is_custom=True,
    )
    db.add(db_category)
    db.commit()
    db.refresh(db_category)
    return db_category


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if not category.is_custom:
        raise HTTPException(status_code=400, detail="Predefined categories cannot be deleted")

    db.query(Subscription).filter(Subscription.category_id == category_id).update(
        {Subscription.category_id: None}, synchronize_session=False
    )
    db.delete(category)
    db.commit()
    return {"success": True}


# --- subscriptions ---


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
async def get_subscriptions(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(Subscription).filter(Subscription.user_id == current_user.id)
    if status:
        query = query.filter(Subscription.status == status.lower())
    return query.order_by(Subscription.next_renewal).all()


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return get_owned_subscription(db, subscription_id, current_user)


@router.post(
    "/subscriptions",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription(
    subscription: SubscriptionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    data = subscription.model_dump()
    validate_subscription_fields(db, data)

    if data["next_renewal"] is None:
        data["next_renewal"] = data["start_date"]
    if data["reminder_days_before"] is None:
        data["reminder_days_before"] = config.DEFAULT_REMINDER_DAYS
    data["currency"] = (data["currency"] or "EUR").upper()

    db_subscription = Subscription(user_id=current_user.id, reminder_sent=False, **data)
    db.add(db_subscription)
    db.commit()
    db.refresh(db_subscription)
    logger.info(f"User {current_user.id} created subscription {db_subscription.id}")
    return db_subscription


@router.put("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: str,
    subscription: SubscriptionUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_subscription = get_owned_subscription(db, subscription_id, current_user)

    data = subscription.model_dump(exclude_unset=True)
    for required in NON_NULLABLE_FIELDS:
        if required in data and data[required] is None:
            raise HTTPException(status_code=400, detail=f"{required} cannot be empty")
    validate_subscription_fields(db, data)
    if data.get("currency"):
        data["currency"] = data["currency"].upper()

    # a new renewal date or window needs a fresh reminder
    if (
        "next_renewal" in data and data["next_renewal"] != db_subscription.next_renewal
    ) or (
        "reminder_days_before" in data
        and data["reminder_days_before"] != db_subscription.reminder_days_before
    ):
        db_subscription.reminder_sent = False

    for field, value in data.items():
        setattr(db_subscription, field, value)
    db_subscription.updated_at = datetime.utcnow()

    db.commit()
    db.refresh(db_subscription)
    return db_subscription


@router.delete("/subscriptions/{subscription_id}")
async def delete_subscription(
    subscription_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_subscription = get_owned_subscription(db, subscription_id, current_user)
    db.delete(db_subscription)
    db.commit()
    return {"success": True}


# --- alternatives ---


@router.get(
    "/subscriptions/{subscription_id}/alternatives",
    response_model=list[AlternativeResponse],
)
async def get_alternatives(
    subscription_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    subscription = get_owned_subscription(db, subscription_id, current_user)
    return sorted(subscription.alternatives, key=lambda a: a.amount)


@router.post(
    "/subscriptions/{subscription_id}/alternatives",
    response_model=AlternativeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_alternative(
    subscription_id: str,
    alternative: AlternativeCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    subscription = get_owned_subscription(db, subscription_id, current_user)
    if alternative.amount < 0:
        raise HTTPException(status_code=400, detail="Amount cannot be negative")

    db_alternative = Alternative(subscription_id=subscription.id, **alternative.model_dump())
    db.add(db_alternative)
    db.commit()
    db.refresh(db_alternative)
    return db_alternative


@router.delete("/alternatives/{alternative_id}")
async def delete_alternative(
    alternative_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    alternative = (
        db.query(Alternative)
        .join(Subscription)
        .filter(Alternative.id == alternative_id, Subscription.user_id == current_user.id)
        .first()
    )
    if not alternative:
        raise HTTPException(status_code=404, detail="Alternative not found")
    db.delete(alternative)
    db.commit()
    return {"success": True}


# --- settings ---


@router.get("/settings")
async def get_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    stored = {s.key: s.value for s in db.query(Setting).all()}
    result = {key: value for key, value in stored.items() if key != "smtp_pass"}
    result["smtp_pass_set"] = bool(stored.get("smtp_pass"))
    return result


@router.post("/settings")
async def save_settings(
    settings: dict,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    unknown = sorted(set(settings) - set(SETTINGS_KEYS))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown settings: {unknown}")

    for key, value in settings.items():
        value = "" if value is None else str(value)
        if isinstance(settings[key], bool):
            value = value.lower()
        existing = db.query(Setting).filter(Setting.key == key).first()
        if existing:
            existing.value = value
        else:
            db.add(Setting(key=key, value=value))

    db.commit()
    logger.info(f"User {current_user.id} updated settings: {sorted(settings)}")
    return {"success": True}


@router.post("/settings/test-email", response_model=EmailTestResult)
async def test_email(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    success, error = check_smtp_connection(load_email_settings(db))
    return EmailTestResult(success=success, error=error)


# --- stats ---


@router.get("/stats", response_model=Stats)
async def get_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    active = (
        db.query(Subscription)
        .filter(Subscription.user_id == current_user.id, Subscription.status == "active")
        .all()
    )

    monthly_total = 0.0
    by_category = {}
    for sub in active:
        amount = monthly_amount(sub)
        monthly_total += amount
        by_category[sub.category_id] = by_category.get(sub.category_id, 0.0) + amount

    horizon = date.today() + timedelta(days=config.EXPIRING_SOON_DAYS)
    expiring_soon = [s for s in active if s.next_renewal and s.next_renewal <= horizon]

    return Stats(
        total_active=len(active),
        total_monthly=round(monthly_total, 2),
        total_yearly=round(monthly_total * 12, 2),
        expiring_soon=len(expiring_soon),
        by_category=[
            CategorySpending(category_id=category_id, monthly=round(total, 2))
            for category_id, total in sorted(
                by_category.items(), key=lambda item: item[1], reverse=True
            )
        ],
    )
