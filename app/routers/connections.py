# app/routers/connections.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.pbx_connection import PbxConnection
from app.services.admin_auth_service import require_admin_key
from app.services.connection_service import (
    ConnectionTester,
    default_connection_tester,
    test_pbx_connection,
)

router = APIRouter(
    prefix="/connections",
    tags=["connections"],
    dependencies=[Depends(require_admin_key)],
)


def get_connection_tester() -> ConnectionTester:
    """FastAPI dependency so tests can swap in a fake PBX."""
    return default_connection_tester


class ConnectionSummary(BaseModel):
    id: int
    name: str
    status: str
    last_connected_at: Optional[datetime] = None
    last_error: Optional[str] = None


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None
    response_time_ms: int
    connection: ConnectionSummary


@router.post("/{connection_id}/test", response_model=ConnectionTestResponse)
def run_connection_test(
    connection_id: int,
    db: Session = Depends(get_db),
    tester: ConnectionTester = Depends(get_connection_tester),
):
    connection = db.get(PbxConnection, connection_id)
    if connection is None:
        raise HTTPException(status_code=404, detail="Connection not found")

    result = test_pbx_connection(db, connection, tester)

    return ConnectionTestResponse(
        success=result.success,
        message=result.message,
        error=result.error,
        response_time_ms=result.response_time_ms,
        connection=ConnectionSummary(
            id=connection.id,
            name=connection.name,
            status=connection.status,
            last_connected_at=connection.last_connected_at,
            last_error=connection.last_error,
        ),
    )
