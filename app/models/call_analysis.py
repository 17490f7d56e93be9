# app/models/call_analysis.py
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.models.base import Base


class CallAnalysis(Base):
    __tablename__ = "call_analyses"

    id = Column(Integer, primary_key=True, index=True)

    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # At most one analysis per call
    cdr_record_id = Column(
        Integer,
        ForeignKey("cdr_records.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    summary = Column(Text, nullable=False)
    sentiment = Column(String(16), nullable=False)
    sentiment_score = Column(Float, nullable=False)

    keywords = Column(JSON, nullable=False, default=list)
    topics = Column(JSON, nullable=False, default=list)
    action_items = Column(JSON, nullable=False, default=list)
    questions = Column(JSON, nullable=False, default=list)
    objections = Column(JSON, nullable=False, default=list)

    escalation_risk = Column(String(16), nullable=False)
    escalation_reasons = Column(JSON, nullable=False, default=list)
    satisfaction_prediction = Column(String(16), nullable=False)
    compliance_flags = Column(JSON, nullable=False, default=list)
    call_disposition = Column(String(1024), nullable=True)

    # Talk ratio of the two speakers with the most airtime (optional)
    talk_ratio_primary_speaker = Column(Integer, nullable=True)
    talk_ratio_primary_percentage = Column(Integer, nullable=True)
    talk_ratio_secondary_speaker = Column(Integer, nullable=True)
    talk_ratio_secondary_percentage = Column(Integer, nullable=True)

    analysis_storage_path = Column(String(1024), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    cdr_record = relationship("CdrRecord", backref="analyses")
