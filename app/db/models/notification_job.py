"""
Notification Job Model - durable queue of notifications to deliver.

Rows are never deleted; the table doubles as the delivery audit trail.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Enum as SQLEnum, Index

from app.db.database import Base, utcnow


class NotificationChannel(str, enum.Enum):
    PUSH = "push"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class NotificationJob(Base):
    """One logical notification, unique by dedupe_key"""

    __tablename__ = "notification_jobs"

    id = Column(Integer, primary_key=True, index=True)

    tenant_id = Column(String(255), nullable=True)
    source_event_id = Column(Integer, nullable=True, index=True)
    channel = Column(SQLEnum(NotificationChannel), default=NotificationChannel.PUSH, nullable=False)
    dedupe_key = Column(String(512), nullable=False, unique=True)
    payload = Column(JSON, nullable=False)

    status = Column(SQLEnum(JobStatus), default=JobStatus.PENDING, nullable=False)
    run_at = Column(DateTime, default=utcnow, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    last_error = Column(String(1000), nullable=True)

    claimed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_notification_jobs_status_run_at", "status", "run_at"),
    )
