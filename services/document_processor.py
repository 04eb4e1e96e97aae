import logging
from typing import Dict

from sqlalchemy.orm import Session

from core.errors import NotFoundError
from queries.documents import get_document, get_job_for_document
from services.document_jobs import DocumentJobService
from services.ocr import OCRService
from services.parser import DocumentParser
from services.risk_calculation import RiskCalculationProcessor
from services.risk_features import RiskFeatureService
from services.storage import LocalStorage

log = logging.getLogger("worker.documents")


class DocumentProcessor:
    """
    One document through OCR -> parse -> risk features -> risk score.
    """

    def __init__(
        self,
        storage: LocalStorage,
        ocr: OCRService,
        parser: DocumentParser,
        features: RiskFeatureService,
        jobs: DocumentJobService,
        risk_calculation: RiskCalculationProcessor,
    ) -> None:
        self.storage = storage
        self.ocr = ocr
        self.parser = parser
        self.features = features
        self.jobs = jobs
        self.risk_calculation = risk_calculation

    def process_document(self, db: Session, tenant_id: str, document_id: int) -> None:
        """
        Raises on pipeline failures; the caller owns retry bookkeeping.
        """
        document = get_document(db, tenant_id, document_id)
        if not document:
            raise NotFoundError(f"document {document_id} not found")

        job = get_job_for_document(db, document_id)
        if not job:
            raise NotFoundError(f"processing job for document {document_id} not found")

        data = self.storage.get(tenant_id, document.storage_path)
        ocr = self.ocr.run_ocr(data, document.mime_type)
        parsed = self.parser.parse(ocr.raw_text, document.type)
        features = self.features.generate(db, tenant_id, document_id, parsed)

        self.jobs.mark_success(db, job, ocr=ocr, parsed=parsed, features=features)
        log.info("document %s processed as %s (%s fields)", document_id, parsed.document_type, len(parsed.fields))

        try:
            self.risk_calculation.calculate_document(db, tenant_id, document_id)
        except Exception as e:
            db.rollback()
            log.exception("risk calculation failed for document %s: %s", document_id, e)

    def process_pending(self, db: Session, limit: int) -> Dict[str, int]:
        stats = {"picked": 0, "succeeded": 0, "retried": 0, "failed": 0}

        for job in self.jobs.get_pending_jobs(db, limit):
            stats["picked"] += 1
            job_id, tenant_id, document_id = job.id, job.tenant_id, job.document_id

            try:
                self.jobs.mark_in_progress(db, job)
                self.process_document(db, tenant_id, document_id)
                stats["succeeded"] += 1
            except Exception as e:
                db.rollback()
                log.exception("job %s failed for document %s: %s", job_id, document_id, e)

                job = get_job_for_document(db, document_id)
                if job is None:
                    stats["failed"] += 1
                    continue
                self.jobs.mark_failed(db, job, str(e) or e.__class__.__name__)
                stats["failed" if job.status == "FAILED" else "retried"] += 1

        return stats
