# app/routers/jobs.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.admin_auth_service import require_admin_key
from app.services.job_queue_service import InvalidJobTransition, list_jobs, retry_failed_job

router = APIRouter(
    prefix="/jobs",
    tags=["jobs"],
    dependencies=[Depends(require_admin_key)],
)


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    cdr_record_id: int
    job_type: str
    status: str
    priority: int
    attempts: int
    max_attempts: int
    scheduled_for: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class JobListResponse(BaseModel):
    data: List[JobOut]
    pagination: Pagination


class JobResponse(BaseModel):
    data: JobOut


@router.get("", response_model=JobListResponse)
def get_jobs(
    status: Optional[Literal["pending", "processing", "completed", "failed"]] = None,
    tenant_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    items, total = list_jobs(db, status=status, tenant_id=tenant_id, page=page, limit=limit)
    return JobListResponse(
        data=[JobOut.model_validate(j) for j in items],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=(total + limit - 1) // limit,
        ),
    )


@router.post("/{job_id}/retry", response_model=JobResponse)
def retry_job(job_id: int, db: Session = Depends(get_db)):
    """
    Put a failed job back in the queue. Only failed jobs can be retried.
    """
    try:
        job = retry_failed_job(db, job_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidJobTransition as exc:
        raise HTTPException(
            status_code=409,
            detail=f"Only failed jobs can be retried (job is {exc.current})",
        )
    return JobResponse(data=JobOut.model_validate(job))
