# app/models/pbx_connection.py
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class PbxConnection(Base):
    __tablename__ = "pbx_connections"

    id = Column(Integer, primary_key=True, index=True)

    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String(255), nullable=False)
    connection_type = Column(String(32), nullable=False, default="grandstream")
    host = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False, default=8089)
    username = Column(String(255), nullable=False)

    # iv:authTag:ciphertext, see app.services.encryption_service
    password_encrypted = Column(String(1024), nullable=False)

    # Most UCMs ship a self-signed certificate
    verify_ssl = Column(Boolean, nullable=False, default=False)

    webhook_secret = Column(String(128), nullable=False)

    status = Column(String(32), nullable=False, default=ConnectionStatus.ACTIVE.value)
    last_connected_at = Column(DateTime, nullable=True)
    last_error = Column(String(1024), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    tenant = relationship("Tenant", backref="pbx_connections")
