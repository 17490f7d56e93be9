# app/models/__init__.py
from app.models.base import Base  # noqa: F401

from app.models.tenant import Tenant  # noqa: F401
from app.models.pbx_connection import PbxConnection, ConnectionStatus  # noqa: F401
from app.models.cdr_record import CdrRecord, ProcessingStatus, CallDirection  # noqa: F401
from app.models.job import Job, JobStatus, JobType  # noqa: F401
from app.models.call_analysis import CallAnalysis  # noqa: F401
