from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, JSON, ForeignKey, Index
from datetime import datetime, timezone

from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """
    Account record plus a denormalized mirror of the user's current subscription.
    The mirror columns are written by the subscription maintenance job and the
    billing webhook; the Subscription table stays the source of truth.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Subscription mirror
    subscription_is_active = Column(Boolean, default=False, nullable=False, index=True)
    subscription_tier = Column(String, default="free", nullable=False)
    subscription_id = Column(Integer, nullable=True)  # back-reference to subscriptions.id
    subscription_plan_id = Column(String, nullable=True)
    subscription_activated_at = Column(DateTime, nullable=True)
    subscription_expires_at = Column(DateTime, nullable=True)
    trial_used = Column(Boolean, default=False, nullable=False)

    # Trial markers, cleared once the trial resolves
    trial_started_at = Column(DateTime, nullable=True)
    trial_ends_at = Column(DateTime, nullable=True)


class Subscription(Base):
    """Billing record. Never deleted, retained for billing history."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String, nullable=False)
    plan_name = Column(String, nullable=True)
    amount = Column(Float, default=0.0, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    status = Column(String, default="pending", nullable=False, index=True)
    start_date = Column(DateTime, nullable=True)
    trial_starts_at = Column(DateTime, nullable=True)
    trial_ends_at = Column(DateTime, nullable=True, index=True)
    activated_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    auto_renew = Column(Boolean, default=True, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    trial_reminder_sent_at = Column(DateTime, nullable=True)
    stripe_session_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_subscriptions_user_status_expiry", "user_id", "status", "expires_at"),
    )


class ChatSession(Base):
    """
    A conversation with the companion. Messages are stored inline as a JSON
    list of {"role", "content", "timestamp"} dicts.
    """
    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_time = Column(DateTime, default=utcnow, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)
    status = Column(String, default="active", nullable=False)
    messages = Column(JSON, default=list, nullable=False)


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    mood = Column(Integer, nullable=False)  # 1-6
    tags = Column(JSON, default=list, nullable=False)
    emotional_state = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class MoodEntry(Base):
    __tablename__ = "mood_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    score = Column(Integer, nullable=False)  # 0-100
    note = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class Personalization(Base):
    """
    Long-term personalization profile. Nested sections are JSON documents;
    assign a new dict/list to change them so the ORM sees the write.
    """
    __tablename__ = "personalization_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)
    intent = Column(JSON, default=dict, nullable=False)
    communication = Column(JSON, default=dict, nullable=False)
    behavioral_tendencies = Column(JSON, default=list, nullable=False)
    time_patterns = Column(JSON, default=dict, nullable=False)
    engagement = Column(JSON, default=dict, nullable=False)
    user_overrides = Column(JSON, default=dict, nullable=False)
    explainability = Column(JSON, default=dict, nullable=False)
    data_quality = Column(Float, default=0.3, nullable=False)
    decay_rate = Column(Float, default=0.05, nullable=False)
    personalization_enabled = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    last_analysis = Column(DateTime, default=utcnow, nullable=False, index=True)
    last_updated = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    message = Column(String, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class WeeklyReport(Base):
    __tablename__ = "weekly_reports"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    report_metadata = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
