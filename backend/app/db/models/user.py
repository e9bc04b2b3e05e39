"""User model: one row per authenticated account."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    # Auth subject (Supabase user id)
    id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    role = Column(String(50), nullable=False, default="user")

    # Attached by the reconciler when the first paying relationship is established
    stripe_customer_id = Column(String(255), unique=True, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    subscriptions = relationship("Subscription", back_populates="user")
