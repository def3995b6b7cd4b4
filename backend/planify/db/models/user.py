"""User ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from planify.db.base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("daily_ai_calls >= 0", name="ck_users_daily_ai_calls_non_negative"),
        CheckConstraint("monthly_ai_calls >= 0", name="ck_users_monthly_ai_calls_non_negative"),
        CheckConstraint("bonus_ai_credits >= 0", name="ck_users_bonus_ai_credits_non_negative"),
        Index("ix_users_subscription_status_period_end", "subscription_status", "current_period_end"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # Plain text rather than an enum so corrupt values load and degrade to free.
    tier = Column(String(32), nullable=False, default="free", server_default=sa_text("'free'"))
    subscription_status = Column(String(32), nullable=True)
    subscription_provider = Column(String(32), nullable=True)
    subscription_id = Column(Text, nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    daily_ai_calls = Column(Integer, nullable=False, default=0, server_default=sa_text("0"))
    monthly_ai_calls = Column(Integer, nullable=False, default=0, server_default=sa_text("0"))
    daily_ai_calls_reset_at = Column(DateTime(timezone=True), nullable=True)
    monthly_ai_calls_reset_at = Column(DateTime(timezone=True), nullable=True)
    frozen_pro_credits = Column(Integer, nullable=False, default=0, server_default=sa_text("0"))
    bonus_ai_credits = Column(Integer, nullable=False, default=0, server_default=sa_text("0"))
    timezone = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
