# tests/test_db_basic.py
import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.session import engine, SessionLocal
from app.models import Base, CdrRecord, Tenant


def test_db_can_create_schema():
    # Ensure metadata can create tables
    Base.metadata.create_all(bind=engine)

    # Simple connectivity test
    with engine.connect() as conn:
        result = conn.execute(text("SELECT 1"))
        assert result.scalar() == 1


def test_create_and_read_tenant():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        tenant = Tenant(name="Test Tenant")
        db.add(tenant)
        db.commit()
        db.refresh(tenant)

        assert tenant.id is not None
        assert tenant.status == "active"
        assert tenant.calls_processed_total == 0

        fetched = db.query(Tenant).filter_by(name="Test Tenant").first()
        assert fetched is not None
        assert fetched.id == tenant.id
    finally:
        db.close()


def test_cdr_uniqueid_is_unique_per_tenant(seeded):
    db: Session = SessionLocal()
    try:
        for _ in range(2):
            db.add(
                CdrRecord(
                    tenant_id=seeded["tenant_id"],
                    pbx_connection_id=seeded["connection_id"],
                    uniqueid="same-call",
                    src="1001",
                    dst="1002",
                    call_direction="internal",
                )
            )
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
    finally:
        db.close()
