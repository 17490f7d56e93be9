# app/models/cdr_record.py
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.models.base import Base


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    INTERNAL = "internal"


class CdrRecord(Base):
    """
    One phone call as reported by the PBX CDR webhook.

    Created by webhook ingestion; afterwards only the pipeline touches the
    storage paths and `processing_status`.
    """

    __tablename__ = "cdr_records"
    __table_args__ = (
        UniqueConstraint("tenant_id", "uniqueid", name="uq_cdr_records_tenant_uniqueid"),
    )

    id = Column(Integer, primary_key=True, index=True)

    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pbx_connection_id = Column(
        Integer,
        ForeignKey("pbx_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Call identifiers
    uniqueid = Column(String(128), nullable=False)
    linkedid = Column(String(128), nullable=True)
    session = Column(String(128), nullable=True)
    callid = Column(String(255), nullable=True)

    # Parties
    src = Column(String(64), nullable=False)
    dst = Column(String(64), nullable=False)
    clid = Column(String(255), nullable=True)
    call_direction = Column(String(16), nullable=False, default=CallDirection.INBOUND.value)

    # Channel info
    dcontext = Column(String(255), nullable=True)
    channel = Column(String(255), nullable=True)
    dstchannel = Column(String(255), nullable=True)

    # Timing
    start_time = Column(DateTime, nullable=True)
    answer_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    billsec_seconds = Column(Integer, nullable=True)

    # ANSWERED | NO ANSWER | BUSY | FAILED | CONGESTION
    disposition = Column(String(32), nullable=False, default="FAILED")
    amaflags = Column(String(64), nullable=True)

    # Grandstream-specific fields
    lastapp = Column(String(255), nullable=True)
    lastdata = Column(String(1024), nullable=True)
    accountcode = Column(String(255), nullable=True)
    userfield = Column(String(255), nullable=True)
    did = Column(String(64), nullable=True)
    outbound_cnum = Column(String(64), nullable=True)
    outbound_cnam = Column(String(255), nullable=True)
    dst_cnam = Column(String(255), nullable=True)
    peeraccount = Column(String(255), nullable=True)
    sequence = Column(String(64), nullable=True)
    src_trunk_name = Column(String(255), nullable=True)
    dst_trunk_name = Column(String(255), nullable=True)

    # Recording + pipeline artifacts
    recording_filename = Column(String(1024), nullable=True)
    recording_storage_path = Column(String(1024), nullable=True)
    recording_size_bytes = Column(BigInteger, nullable=True)
    transcript_storage_path = Column(String(1024), nullable=True)
    analysis_storage_path = Column(String(1024), nullable=True)
    transcript_word_count = Column(Integer, nullable=True)
    speaker_count = Column(Integer, nullable=True)

    processing_status = Column(
        String(32),
        nullable=False,
        default=ProcessingStatus.PENDING.value,
        index=True,
    )
    processing_error = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    raw_webhook_payload = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    tenant = relationship("Tenant", backref="cdr_records")
    pbx_connection = relationship("PbxConnection", backref="cdr_records")
