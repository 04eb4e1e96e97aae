import logging

from sqlalchemy.orm import Session

from core.config import Settings, settings
from helpers import utcnow
from models.document import DocumentProcessingJob
from queries.documents import (
    get_pending_jobs,
    upsert_ocr_result,
    upsert_parsed_data,
    upsert_risk_features,
)
from services.ocr import OCRResult
from services.parser import ParsedDocument
from services.risk_features import RiskFeatures

log = logging.getLogger("worker.jobs")


class DocumentJobService:
    """
    Job state machine:
    PENDING -> IN_PROGRESS -> SUCCESS
                           -> PENDING (retry) | FAILED (attempts exhausted)
    """

    def __init__(self, config: Settings = settings) -> None:
        self.config = config

    def get_pending_jobs(self, db: Session, limit: int) -> list[DocumentProcessingJob]:
        return get_pending_jobs(db, limit)

    def mark_in_progress(self, db: Session, job: DocumentProcessingJob) -> None:
        job.status = "IN_PROGRESS"
        job.attempts_count = (job.attempts_count or 0) + 1
        job.last_attempt_at = utcnow()
        job.document.status = "PROCESSING"
        db.commit()

    def mark_success(
        self,
        db: Session,
        job: DocumentProcessingJob,
        *,
        ocr: OCRResult,
        parsed: ParsedDocument,
        features: RiskFeatures,
    ) -> None:
        """
        Persist all pipeline outputs with the status change in one commit.
        """
        document = job.document
        now = utcnow()

        upsert_ocr_result(
            db,
            tenant_id=job.tenant_id,
            document_id=document.id,
            raw_text=ocr.raw_text,
            engine=ocr.engine,
            confidence=ocr.confidence,
        )
        upsert_parsed_data(
            db,
            tenant_id=job.tenant_id,
            document_id=document.id,
            document_type=parsed.document_type,
            fields=parsed.fields,
            parser_version=parsed.parser_version,
        )
        upsert_risk_features(
            db,
            tenant_id=job.tenant_id,
            document_id=document.id,
            features=features.features,
            risk_flags=features.flags,
            risk_score=features.risk_score,
            generated_at=now,
        )

        job.status = "SUCCESS"
        job.last_error_message = None
        document.status = "PROCESSED"
        document.processing_error_message = None
        document.processed_at = now
        db.commit()

    def mark_failed(self, db: Session, job: DocumentProcessingJob, error: str) -> None:
        document = job.document
        job.last_error_message = error[:2000]

        if (job.attempts_count or 0) >= self.config.JOB_MAX_ATTEMPTS:
            job.status = "FAILED"
            document.status = "FAILED"
            document.processing_error_message = error[:2000]
            log.warning("job %s failed permanently after %s attempts: %s", job.id, job.attempts_count, error)
        else:
            job.status = "PENDING"
            document.status = "UPLOADED"
            log.info("job %s will be retried (attempt %s): %s", job.id, job.attempts_count, error)

        db.commit()
