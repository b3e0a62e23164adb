# database.py
import logging
import uuid
from datetime import datetime

from sqlalchemy import (
    create_engine,
    Column,
    String,
    Float,
    Date,
    DateTime,
    ForeignKey,
    Boolean,
    Integer,
    Text,
)
from sqlalchemy.orm import sessionmaker, declarative_base, relationship

from config import DATABASE_URL, DEFAULT_REMINDER_DAYS

logger = logging.getLogger(__name__)

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

DEFAULT_CATEGORIES = [
    {"id": "streaming", "name": "Streaming", "icon": "📺", "color": "#E50914"},
    {"id": "music", "name": "Music", "icon": "🎵", "color": "#1DB954"},
    {"id": "software", "name": "Software", "icon": "💻", "color": "#0078D4"},
    {"id": "gaming", "name": "Gaming", "icon": "🎮", "color": "#107C10"},
    {"id": "cloud", "name": "Cloud Storage", "icon": "☁️", "color": "#4285F4"},
    {"id": "news", "name": "News & Media", "icon": "📰", "color": "#1A1A1A"},
    {"id": "fitness", "name": "Fitness", "icon": "💪", "color": "#FF6B35"},
    {"id": "mobile", "name": "Mobile", "icon": "📱", "color": "#FF6600"},
    {"id": "electricity", "name": "Electricity", "icon": "⚡", "color": "#FFD700"},
    {"id": "gas", "name": "Gas", "icon": "🔥", "color": "#FF4500"},
    {"id": "water", "name": "Water", "icon": "💧", "color": "#00BFFF"},
    {"id": "internet", "name": "Internet", "icon": "🌐", "color": "#6366F1"},
    {"id": "insurance", "name": "Insurance", "icon": "🛡️", "color": "#2E7D32"},
    {"id": "finance", "name": "Financial Services", "icon": "🏦", "color": "#1565C0"},
    {"id": "other", "name": "Other", "icon": "📦", "color": "#6B7280"},
]


def new_id():
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String, index=True, nullable=True)
    verification_expires = Column(DateTime, nullable=True)
    reset_token = Column(String, index=True, nullable=True)
    reset_expires = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    subscriptions = relationship(
        "Subscription", back_populates="user", cascade="all, delete-orphan"
    )


class Category(Base):
    __tablename__ = "categories"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    icon = Column(String, nullable=False)
    color = Column(String, nullable=False)
    is_custom = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category_id = Column(String, ForeignKey("categories.id"), nullable=True)

    amount = Column(Float, nullable=False)
    currency = Column(String, default="EUR", nullable=False)
    billing_cycle = Column(String, nullable=False)

    start_date = Column(Date, nullable=False)
    next_renewal = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    reminder_days_before = Column(Integer, default=DEFAULT_REMINDER_DAYS)
    reminder_sent = Column(Boolean, default=False, nullable=False)

    provider = Column(String, nullable=True)
    website = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String, default="active", index=True, nullable=False)
    auto_renew = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="subscriptions")
    category = relationship("Category")
    alternatives = relationship(
        "Alternative", back_populates="subscription", cascade="all, delete-orphan"
    )


class Alternative(Base):
    __tablename__ = "alternatives"
    id = Column(String, primary_key=True, default=new_id)
    subscription_id = Column(
        String, ForeignKey("subscriptions.id"), index=True, nullable=False
    )
    name = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    website = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    subscription = relationship("Subscription", back_populates="alternatives")

    @property
    def savings(self):
        return round(self.subscription.amount - self.amount, 2)


class Setting(Base):
    __tablename__ = "settings"
    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)


def seed_categories(db):
    if db.query(Category).count():
        return 0
    for cat in DEFAULT_CATEGORIES:
        db.add(Category(is_custom=False, **cat))
    db.commit()
    logger.info("Seeded %d default categories", len(DEFAULT_CATEGORIES))
    return len(DEFAULT_CATEGORIES)


def init_db():
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        seed_categories(db)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_settings_map(db):
    return {s.key: s.value for s in db.query(Setting).all()}
