# app/models/tenant.py
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Float, Integer, String

from app.models.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default="active")

    # Usage counters, bumped by the pipeline after each processed call
    calls_processed_total = Column(Integer, nullable=False, default=0)
    audio_minutes_total = Column(Float, nullable=False, default=0.0)
    storage_bytes_total = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
