"""
Bookmark Analytics — Counter record table.

One row per (subject, period type, period key). The hosted backend upserts
against the unique index below; older deployments may lack some of the
optional columns, see ``bookmark_analytics.migrations``.
"""

import uuid

from sqlalchemy import Column, String, DateTime, Integer, JSON, func, Index, text

from bookmark_analytics.database import Base


class CounterRecordRow(Base):
    """Stored form of a counter record."""
    __tablename__ = "bookmark_analytics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    subject_id = Column(String(64), nullable=False)       # bookmark id or "total"
    period_type = Column(String(10), nullable=False)      # "daily", "weekly", "monthly", "total"
    period_key = Column(String(10), nullable=False)       # "2026-01-15", "2026-01", "total"

    visit_count = Column(Integer, nullable=False, default=0)
    time_spent_seconds = Column(Integer, nullable=False, default=0)

    categories_used = Column(JSON, server_default=text("'[]'"))
    last_event_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_bookmark_analytics_period", "subject_id", "period_type", "period_key", unique=True),
        Index("ix_bookmark_analytics_type_key", "period_type", "period_key"),
    )

    def __repr__(self):
        return (
            f"<CounterRecordRow {self.subject_id} {self.period_type}/{self.period_key} "
            f"({self.visit_count} visits, {self.time_spent_seconds}s)>"
        )
