# app/services/pipeline_service.py
"""
Per-job processing pipeline.

A fixed sequence of stages runs for every claimed job:

  1. load the CDR and its PBX connection
  2. decrypt the PBX password
  3. download the recording
  4. store the recording
  5. transcribe (an empty transcript is a failure)
  6. store the transcript JSON
  7. analyze the transcript
  8. store the analysis JSON
  9. + 10. insert the CallAnalysis row and mark the CDR completed (one commit)
  11. bump tenant usage (best effort)
  12. complete the job

Any stage error skips the rest. The CDR is marked failed and the job queue
decides whether the job is re-armed or failed for good. Uploaded artifacts
are not cleaned up; re-running overwrites them at the same paths.

Once stage 10 commits, the call is never marked failed. Job bookkeeping
only applies while this worker still owns the job; if the stale sweep
re-armed it meanwhile, the next claim simply runs the call again.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.call_analysis import CallAnalysis
from app.models.cdr_record import CdrRecord, ProcessingStatus
from app.models.job import Job
from app.models.pbx_connection import PbxConnection
from app.schemas.analysis import CallAnalysisResult
from app.services.analysis_service import CallAnalyzer, CallMetadata
from app.services.connection_service import connection_config
from app.services.encryption_service import CredentialStore
from app.services.job_queue_service import complete_job, record_job_failure
from app.services.pbx_client import GrandstreamClient, PbxConfig
from app.services.storage_service import LocalObjectStorage
from app.services.transcription_service import DeepgramTranscriber
from app.services.usage_service import increment_tenant_usage

log = logging.getLogger(__name__)

PbxClientFactory = Callable[[PbxConfig], Any]


class PipelineError(Exception):
    pass


@dataclass
class PipelineResult:
    success: bool
    error: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)


def storage_path(cdr: CdrRecord, extension: str) -> str:
    """
    ``{tenant_id}/{YYYY}/{MM}/{DD}/{cdr_id}.{extension}``, dated by the call
    start time (or the CDR creation time when the PBX sent none).
    """
    when = cdr.start_time or cdr.created_at or datetime.utcnow()
    return f"{cdr.tenant_id}/{when:%Y}/{when:%m}/{when:%d}/{cdr.id}.{extension}"


def _json_bytes(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, indent=2).encode("utf-8")


class CallPipeline:
    def __init__(
        self,
        db: Session,
        storage: LocalObjectStorage,
        credentials: CredentialStore,
        transcriber: Any,
        analyzer: Any,
        pbx_client_factory: PbxClientFactory = GrandstreamClient,
        recordings_bucket: str = "call-recordings",
        transcripts_bucket: str = "call-transcripts",
        analyses_bucket: str = "call-analyses",
    ):
        self.db = db
        self.storage = storage
        self.credentials = credentials
        self.transcriber = transcriber
        self.analyzer = analyzer
        self.pbx_client_factory = pbx_client_factory
        self.recordings_bucket = recordings_bucket
        self.transcripts_bucket = transcripts_bucket
        self.analyses_bucket = analyses_bucket

    # ---------- Entry point ----------

    def execute(self, job: Job) -> PipelineResult:
        log.info("Starting pipeline for job %s (CDR %s)", job.id, job.cdr_record_id)
        # Bookkeeping below only applies while the job is still ours
        claimed_attempts = job.attempts
        try:
            cdr, result, usage = self._run(job)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log.error("Pipeline failed for job %s: %s", job.id, message)
            self._record_failure(job, message, claimed_attempts)
            return PipelineResult(success=False, error=message)

        # The call is committed as completed; nothing below may mark it failed
        self._record_usage(cdr, **usage)
        try:
            complete_job(self.db, job, result, claimed_attempts=claimed_attempts)
        except Exception:
            # Left in processing; the stale sweep re-arms it
            log.exception("Could not mark job %s completed", job.id)
            self.db.rollback()

        log.info("Pipeline completed for job %s", job.id)
        return PipelineResult(success=True, result=result)

    # ---------- Stages ----------

    def _load(self, job: Job):
        cdr = self.db.get(CdrRecord, job.cdr_record_id)
        if cdr is None:
            raise PipelineError(f"CDR record not found: {job.cdr_record_id}")

        connection = self.db.get(PbxConnection, cdr.pbx_connection_id)
        if connection is None:
            raise PipelineError(f"PBX connection not found: {cdr.pbx_connection_id}")

        if not cdr.recording_filename:
            raise PipelineError("No recording filename in CDR")

        cdr.processing_status = ProcessingStatus.PROCESSING.value
        cdr.processing_error = None
        self.db.commit()
        return cdr, connection

    def _run(self, job: Job) -> Tuple[CdrRecord, Dict[str, Any], Dict[str, Any]]:
        # 1. CDR + connection
        cdr, connection = self._load(job)
        log.info("Processing call %s (%s -> %s)", cdr.uniqueid, cdr.src, cdr.dst)

        # 2. Credentials
        password = self.credentials.decrypt(connection.password_encrypted)

        # 3. Download
        log.info("Downloading recording %s", cdr.recording_filename)
        client = self.pbx_client_factory(connection_config(connection, password))
        download = client.download_recording(cdr.recording_filename)
        log.info("Downloaded %s bytes in %s attempt(s)", download.size_bytes, download.attempts)

        # 4. Store the recording
        recording_path = self.storage.upload(
            self.recordings_bucket, storage_path(cdr, "wav"), download.content, "audio/wav"
        )
        cdr.recording_storage_path = recording_path
        cdr.recording_size_bytes = download.size_bytes
        self.db.commit()

        # 5. Transcribe
        log.info("Transcribing recording for CDR %s", cdr.id)
        transcript = self.transcriber.transcribe(download.content, "audio/wav")
        if not transcript.text or not transcript.text.strip():
            raise PipelineError("Transcription returned empty text")

        # 6. Store the transcript
        transcript_bytes = _json_bytes(transcript.to_dict())
        transcript_path = self.storage.upload(
            self.transcripts_bucket, storage_path(cdr, "json"), transcript_bytes, "application/json"
        )

        # 7. Analyze
        log.info("Analyzing transcript for CDR %s", cdr.id)
        metadata = CallMetadata(
            src=cdr.src,
            dst=cdr.dst,
            duration_seconds=cdr.duration_seconds,
            direction=cdr.call_direction,
        )
        analysis: CallAnalysisResult = self.analyzer.analyze(
            transcript.text, metadata, transcript.speakers
        )

        # 8. Store the analysis
        analysis_bytes = _json_bytes(analysis.to_json_dict())
        analysis_path = self.storage.upload(
            self.analyses_bucket, storage_path(cdr, "json"), analysis_bytes, "application/json"
        )

        # 9. + 10. Analysis row and CDR completion commit together
        self._save_analysis(cdr, analysis, analysis_path)
        cdr.transcript_storage_path = transcript_path
        cdr.analysis_storage_path = analysis_path
        cdr.transcript_word_count = transcript.word_count
        cdr.speaker_count = len(transcript.speakers)
        cdr.processing_status = ProcessingStatus.COMPLETED.value
        cdr.processing_error = None
        cdr.processed_at = datetime.utcnow()
        self.db.commit()

        # 11. and 12. run in execute(), after this commit
        duration = cdr.duration_seconds or transcript.duration_seconds or 0
        usage = {
            "audio_minutes": round(duration / 60, 2),
            "storage_bytes": download.size_bytes + len(transcript_bytes) + len(analysis_bytes),
        }
        result = {
            "recording_path": recording_path,
            "transcript_path": transcript_path,
            "analysis_path": analysis_path,
            "sentiment": analysis.sentiment,
            "duration": duration,
        }
        return cdr, result, usage

    def _save_analysis(self, cdr: CdrRecord, analysis: CallAnalysisResult, analysis_path: str) -> None:
        # A re-run replaces the previous analysis for the call
        self.db.query(CallAnalysis).filter(CallAnalysis.cdr_record_id == cdr.id).delete(
            synchronize_session=False
        )

        ratio = analysis.talk_ratio
        self.db.add(
            CallAnalysis(
                tenant_id=cdr.tenant_id,
                cdr_record_id=cdr.id,
                summary=analysis.summary,
                sentiment=analysis.sentiment,
                sentiment_score=analysis.sentiment_score,
                keywords=analysis.keywords,
                topics=analysis.topics,
                action_items=analysis.action_items,
                questions=analysis.questions,
                objections=analysis.objections,
                escalation_risk=analysis.escalation_risk,
                escalation_reasons=analysis.escalation_reasons,
                satisfaction_prediction=analysis.satisfaction_prediction,
                compliance_flags=analysis.compliance_flags,
                call_disposition=analysis.call_disposition,
                talk_ratio_primary_speaker=ratio.primary_speaker if ratio else None,
                talk_ratio_primary_percentage=ratio.primary_percentage if ratio else None,
                talk_ratio_secondary_speaker=ratio.secondary_speaker if ratio else None,
                talk_ratio_secondary_percentage=ratio.secondary_percentage if ratio else None,
                analysis_storage_path=analysis_path,
            )
        )

    def _record_usage(self, cdr: CdrRecord, *, audio_minutes: float, storage_bytes: int) -> None:
        try:
            increment_tenant_usage(
                self.db,
                cdr.tenant_id,
                calls_processed=1,
                audio_minutes=audio_minutes,
                storage_bytes=storage_bytes,
            )
        except Exception as exc:
            # Metering is not worth failing a processed call over
            log.warning("Failed to update usage for tenant %s: %s", cdr.tenant_id, exc)
            self.db.rollback()

    # ---------- Failure path ----------

    def _record_failure(self, job: Job, message: str, claimed_attempts: int) -> None:
        self.db.rollback()

        status = record_job_failure(self.db, job, message, claimed_attempts=claimed_attempts)
        if status is None:
            # Another worker owns the job and the CDR now
            return

        cdr = self.db.get(CdrRecord, job.cdr_record_id)
        if cdr is not None:
            cdr.processing_status = ProcessingStatus.FAILED.value
            cdr.processing_error = message
            self.db.commit()


def build_pipeline(db: Session, settings: Optional[Settings] = None) -> CallPipeline:
    """
    Wire a pipeline with the real PBX, Deepgram and OpenAI clients.
    """
    settings = settings or get_settings()

    transcriber = DeepgramTranscriber(
        api_key=settings.DEEPGRAM_API_KEY or "",
        model=settings.deepgram_model,
        language=settings.deepgram_language,
        timeout=settings.deepgram_timeout_seconds,
    )
    analyzer = CallAnalyzer.from_settings(settings)

    def pbx_client_factory(config: PbxConfig) -> GrandstreamClient:
        return GrandstreamClient(
            config,
            auth_timeout=settings.PBX_AUTH_TIMEOUT_SECONDS,
            download_timeout=settings.PBX_DOWNLOAD_TIMEOUT_SECONDS,
        )

    return CallPipeline(
        db=db,
        storage=LocalObjectStorage(settings.STORAGE_ROOT),
        credentials=CredentialStore.from_hex(settings.ENCRYPTION_KEY),
        transcriber=transcriber,
        analyzer=analyzer,
        pbx_client_factory=pbx_client_factory,
        recordings_bucket=settings.RECORDINGS_BUCKET,
        transcripts_bucket=settings.TRANSCRIPTS_BUCKET,
        analyses_bucket=settings.ANALYSES_BUCKET,
    )
