"""ActivityLog model: append-only audit trail."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String

from app.db.base import Base


class ActivityLog(Base):
    """One row per audited action. Rows are never updated or deleted."""

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False)  # subscription, invoice
    entity_id = Column(String(255), nullable=False, index=True)
    action = Column(String(100), nullable=False, index=True)
    actor_id = Column(String(255), nullable=False)
    data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
