# app/services/usage_service.py
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.tenant import Tenant


def increment_tenant_usage(
    db: Session,
    tenant_id: int,
    *,
    calls_processed: int = 1,
    audio_minutes: float = 0.0,
    storage_bytes: int = 0,
) -> None:
    """
    Bump a tenant's usage counters in a single UPDATE so concurrent workers
    never lose an increment.
    """
    result = db.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values(
            calls_processed_total=Tenant.calls_processed_total + calls_processed,
            audio_minutes_total=Tenant.audio_minutes_total + audio_minutes,
            storage_bytes_total=Tenant.storage_bytes_total + storage_bytes,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise LookupError(f"Tenant {tenant_id} not found")
    db.commit()
