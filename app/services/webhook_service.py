# app/services/webhook_service.py
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.cdr_record import CdrRecord, ProcessingStatus
from app.models.pbx_connection import PbxConnection
from app.schemas.webhook import (
    GrandstreamCdrPayload,
    determine_call_direction,
    parse_webhook_date,
)
from app.services.job_queue_service import enqueue_job

log = logging.getLogger(__name__)


@dataclass
class IngestResult:
    cdr_id: int
    job_id: Optional[int]
    duplicate: bool
    call_direction: str
    has_recording: bool


def verify_webhook_secret(connection: PbxConnection, provided: Optional[str]) -> bool:
    if not provided or not connection.webhook_secret:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), connection.webhook_secret.encode("utf-8"))


def _find_existing(db: Session, tenant_id: int, uniqueid: str) -> Optional[CdrRecord]:
    return (
        db.query(CdrRecord)
        .filter(CdrRecord.tenant_id == tenant_id, CdrRecord.uniqueid == uniqueid)
        .first()
    )


def _as_int(value: Optional[float]) -> Optional[int]:
    return int(round(value)) if value is not None else None


def _duplicate_result(cdr: CdrRecord) -> IngestResult:
    log.info(
        "Duplicate call detected (uniqueid: %s), returning existing CDR %s",
        cdr.uniqueid, cdr.id,
    )
    return IngestResult(
        cdr_id=cdr.id,
        job_id=None,
        duplicate=True,
        call_direction=cdr.call_direction,
        has_recording=bool(cdr.recording_filename),
    )


def ingest_cdr(
    db: Session,
    connection: PbxConnection,
    payload: GrandstreamCdrPayload,
    raw_payload: Optional[Dict[str, Any]] = None,
    *,
    max_attempts: Optional[int] = None,
) -> IngestResult:
    """
    Store one CDR webhook delivery.

    Deliveries are de-duplicated on (tenant_id, uniqueid): a repeat returns
    the existing record and never creates a second job. A pending job is
    queued only when the call has a recording.
    """
    existing = _find_existing(db, connection.tenant_id, payload.uniqueid)
    if existing is not None:
        return _duplicate_result(existing)

    direction = determine_call_direction(payload)

    cdr = CdrRecord(
        tenant_id=connection.tenant_id,
        pbx_connection_id=connection.id,
        uniqueid=payload.uniqueid,
        linkedid=payload.linkedid,
        session=payload.session,
        callid=payload.callid,
        src=payload.src,
        dst=payload.dst,
        clid=payload.clid,
        call_direction=direction,
        dcontext=payload.dcontext,
        channel=payload.channel,
        dstchannel=payload.dstchannel,
        start_time=parse_webhook_date(payload.start),
        answer_time=parse_webhook_date(payload.answer),
        end_time=parse_webhook_date(payload.end),
        duration_seconds=_as_int(payload.duration),
        billsec_seconds=_as_int(payload.billsec),
        disposition=payload.disposition,
        amaflags=payload.amaflags,
        recording_filename=payload.recording_filename,
        lastapp=payload.lastapp,
        lastdata=payload.lastdata,
        accountcode=payload.accountcode,
        userfield=payload.userfield,
        did=payload.did,
        outbound_cnum=payload.outbound_cnum,
        outbound_cnam=payload.outbound_cnam,
        dst_cnam=payload.dst_cnam,
        peeraccount=payload.peeraccount,
        sequence=payload.sequence,
        src_trunk_name=payload.src_trunk_name,
        dst_trunk_name=payload.dst_trunk_name,
        processing_status=ProcessingStatus.PENDING.value,
        raw_webhook_payload=raw_payload if raw_payload is not None else payload.model_dump(),
    )

    job_id: Optional[int] = None
    try:
        db.add(cdr)
        db.flush()
        if payload.recording_filename:
            job = enqueue_job(db, cdr, max_attempts=max_attempts)
            job_id = job.id
        db.commit()
    except IntegrityError:
        # Another delivery of the same call won the insert race
        db.rollback()
        existing = _find_existing(db, connection.tenant_id, payload.uniqueid)
        if existing is None:
            raise
        return _duplicate_result(existing)

    if job_id is None:
        log.info("No recording filename for call %s, skipping job creation", payload.uniqueid)

    log.info(
        "Processed call %s: CDR %s, %s",
        payload.uniqueid, cdr.id, f"job {job_id}" if job_id else "no job (no recording)",
    )
    return IngestResult(
        cdr_id=cdr.id,
        job_id=job_id,
        duplicate=False,
        call_direction=direction,
        has_recording=bool(payload.recording_filename),
    )
