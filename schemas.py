# schemas.py
from pydantic import BaseModel, constr
from datetime import date, datetime
from typing import Optional, List

from config import MIN_PASSWORD_LENGTH

BILLING_CYCLES = ["weekly", "monthly", "quarterly", "yearly"]
SUBSCRIPTION_STATUSES = ["active", "paused", "cancelled"]

Email = constr(strip_whitespace=True, min_length=3, max_length=254)
Password = constr(min_length=MIN_PASSWORD_LENGTH, max_length=128)


# --- auth ---


class UserCreate(BaseModel):
    email: Email
    password: Password
    name: Optional[str] = None


class UserLogin(BaseModel):
    email: Email
    password: str


class EmailRequest(BaseModel):
    email: Email


class PasswordReset(BaseModel):
    token: str
    password: Password


class UserOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class RegisterResponse(BaseModel):
    success: bool = True
    message: str
    email_sent: bool


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# --- categories ---


class CategoryCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=100)
    icon: Optional[str] = None
    color: Optional[str] = None


class CategoryResponse(BaseModel):
    id: str
    name: str
    icon: str
    color: str
    is_custom: bool

    class Config:
        from_attributes = True


# --- subscriptions ---


class SubscriptionBase(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=200)
    description: Optional[str] = None
    category_id: Optional[str] = None
    amount: float
    currency: str = "EUR"
    billing_cycle: str
    start_date: date
    next_renewal: Optional[date] = None
    end_date: Optional[date] = None
    reminder_days_before: Optional[int] = None
    provider: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    status: str = "active"
    auto_renew: bool = True


class SubscriptionCreate(SubscriptionBase):
    pass


class SubscriptionUpdate(BaseModel):
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=200)] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    billing_cycle: Optional[str] = None
    start_date: Optional[date] = None
    next_renewal: Optional[date] = None
    end_date: Optional[date] = None
    reminder_days_before: Optional[int] = None
    provider: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    auto_renew: Optional[bool] = None


class SubscriptionResponse(SubscriptionBase):
    id: str
    user_id: str
    next_renewal: date
    reminder_days_before: int
    reminder_sent: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# --- alternatives ---


class AlternativeCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=200)
    provider: constr(strip_whitespace=True, min_length=1, max_length=200)
    amount: float
    website: Optional[str] = None
    notes: Optional[str] = None


class AlternativeResponse(AlternativeCreate):
    id: str
    subscription_id: str
    savings: float
    created_at: datetime

    class Config:
        from_attributes = True


# --- stats ---


class CategorySpending(BaseModel):
    category_id: Optional[str] = None
    monthly: float


class Stats(BaseModel):
    total_active: int
    total_monthly: float
    total_yearly: float
    expiring_soon: int
    by_category: List[CategorySpending]


class EmailTestResult(BaseModel):
    success: bool
    error: Optional[str] = None
