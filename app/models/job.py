# app/models/job.py
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from app.models.base import Base


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType:
    FULL_PIPELINE = "full_pipeline"


class Job(Base):
    """
    One unit of pipeline work, 1:1 with a CDR that has a recording.

    Rows are never deleted; completed/failed rows stay around for audit
    and manual retry.
    """

    __tablename__ = "job_queue"
    __table_args__ = (
        Index("ix_job_queue_claim", "status", "priority", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)

    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cdr_record_id = Column(
        Integer,
        ForeignKey("cdr_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    job_type = Column(String(32), nullable=False, default=JobType.FULL_PIPELINE)
    status = Column(String(32), nullable=False, default=JobStatus.PENDING.value)

    # Lower value is claimed first
    priority = Column(Integer, nullable=False, default=0)

    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)

    scheduled_for = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    error = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    cdr_record = relationship("CdrRecord", backref="jobs")
