# app/routers/webhook.py
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db.session import get_db
from app.models.pbx_connection import PbxConnection
from app.schemas.webhook import GrandstreamCdrPayload
from app.services.webhook_service import ingest_cdr, verify_webhook_secret

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhook"])


class WebhookResponse(BaseModel):
    message: str
    cdr_id: int
    job_id: Optional[int] = None
    duplicate: bool = False
    call_direction: str
    has_recording: bool


@router.post("/grandstream/{connection_id}", response_model=WebhookResponse)
def grandstream_webhook(
    connection_id: int,
    body: Dict[str, Any] = Body(...),
    x_webhook_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """
    CDR webhook for a Grandstream UCM.

    - 404 if the connection does not exist
    - 401 if X-Webhook-Secret does not match the connection's secret
    - 400 if the CDR payload is invalid
    - a repeated delivery (same uniqueid) returns the existing CDR with duplicate=true
    """
    connection = db.get(PbxConnection, connection_id)
    if connection is None:
        raise HTTPException(status_code=404, detail="Connection not found")

    if not verify_webhook_secret(connection, x_webhook_secret):
        log.warning("Invalid webhook secret for connection %s", connection_id)
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    try:
        payload = GrandstreamCdrPayload.model_validate(body)
    except ValidationError as exc:
        log.warning("Invalid CDR payload for connection %s: %s", connection_id, exc)
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid payload", "details": exc.errors(include_url=False)},
        )

    result = ingest_cdr(
        db,
        connection,
        payload,
        raw_payload=body,
        max_attempts=get_settings().JOB_MAX_ATTEMPTS,
    )

    return WebhookResponse(
        message="Call already processed" if result.duplicate else "Webhook processed successfully",
        cdr_id=result.cdr_id,
        job_id=result.job_id,
        duplicate=result.duplicate,
        call_direction=result.call_direction,
        has_recording=result.has_recording,
    )
