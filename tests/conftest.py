# tests/conftest.py
import os

# Must run before app.config / app.db.session are imported by the test modules
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["ENCRYPTION_KEY"] = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["STORAGE_ROOT"] = "./test-storage"

import pytest  # noqa: E402

from app.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from app.db.session import SessionLocal, engine  # noqa: E402
from app.models import Base, Tenant  # noqa: E402
from app.services.connection_service import create_connection  # noqa: E402

PBX_PASSWORD = "ucm-password"


@pytest.fixture
def seeded():
    """
    Fresh schema with one tenant and one Grandstream connection.
    Returns a dict of plain values (ids and the webhook secret).
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        tenant = Tenant(name="Acme Support")
        db.add(tenant)
        db.commit()
        db.refresh(tenant)

        connection = create_connection(
            db,
            tenant_id=tenant.id,
            name="HQ UCM",
            host="ucm.example.com",
            port=8089,
            username="cdrapi",
            password=PBX_PASSWORD,
        )
        return {
            "tenant_id": tenant.id,
            "connection_id": connection.id,
            "webhook_secret": connection.webhook_secret,
            "pbx_password": PBX_PASSWORD,
        }
    finally:
        db.close()
