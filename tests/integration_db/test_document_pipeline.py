import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from _db import DBTestCase, OTHER_TENANT, TENANT

from core.config import Settings
from core.errors import NotFoundError, ValidationError
from models.document import Document, DocumentProcessingJob
from models.risk import DocumentRiskScore, RiskAlert, RiskScoreHistory
from services.document_jobs import DocumentJobService
from services.document_processor import DocumentProcessor
from services.document_service import DocumentService
from services.ocr import OCRService
from services.parser import DocumentParser
from services.risk_alerts import RiskAlertService
from services.risk_calculation import RiskCalculationProcessor
from services.risk_engine import RiskRuleEngine
from services.risk_features import RiskFeatureService
from services.storage import LocalStorage


# due date before issue date and lines that do not add up to the total
BAD_INVOICE = """FATURA
Fatura No: INV-900
Fatura Tarihi: 20.01.2026
Vade Tarihi: 10.01.2026
Satıcı: Atlas Ofis Malzemeleri
Kalem A 2 x 500,00 = 1.000,00
Genel Toplam: 1.500,00 TL
"""

CLEAN_INVOICE = """FATURA
Fatura No: INV-100
Fatura Tarihi: 10.01.2026
Vade Tarihi: 10.02.2026
Satıcı: Atlas Ofis Malzemeleri
Kalem A 2 x 500,00 = 1.000,00
Genel Toplam: 1.000,00 TL
"""


class TestDocumentPipeline(DBTestCase):
    def setUp(self):
        super().setUp()
        self._storage_dir = tempfile.mkdtemp(prefix="risk-storage-")
        self.storage = LocalStorage(root=self._storage_dir)
        self.documents = DocumentService(self.storage)
        self.jobs = DocumentJobService(Settings(JOB_MAX_ATTEMPTS=2))
        self.engine_service = RiskRuleEngine()
        self.processor = DocumentProcessor(
            storage=self.storage,
            ocr=OCRService(),
            parser=DocumentParser(),
            features=RiskFeatureService(),
            jobs=self.jobs,
            risk_calculation=RiskCalculationProcessor(self.engine_service, RiskAlertService()),
        )
        self.company = self.make_company()

    def tearDown(self):
        shutil.rmtree(self._storage_dir, ignore_errors=True)
        super().tearDown()

    def _upload(self, text: str, company=None) -> Document:
        return self.documents.upload(
            self.db,
            tenant_id=TENANT,
            client_company_id=(company or self.company).id,
            type="INVOICE",
            filename="invoice.txt",
            mime_type="text/plain",
            data=text.encode("utf-8"),
        )

    # ---------------------------
    # Upload
    # ---------------------------

    def test_upload_creates_document_and_pending_job(self):
        doc = self._upload(CLEAN_INVOICE)

        self.assertEqual(doc.status, "UPLOADED")
        self.assertTrue(doc.storage_path.startswith(f"{TENANT}/"))
        job = self.db.query(DocumentProcessingJob).filter_by(document_id=doc.id).one()
        self.assertEqual(job.status, "PENDING")
        self.assertEqual(job.attempts_count, 0)

    def test_upload_rejects_foreign_company_and_empty_file(self):
        foreign = self.make_company(OTHER_TENANT, "Foreign Ltd")
        with self.assertRaises(NotFoundError):
            self._upload(CLEAN_INVOICE, company=foreign)

        with self.assertRaises(ValidationError):
            self.documents.upload(
                self.db,
                tenant_id=TENANT,
                client_company_id=self.company.id,
                type="INVOICE",
                filename="empty.txt",
                mime_type="text/plain",
                data=b"",
            )

    def test_failed_commit_removes_stored_file(self):
        with patch.object(self.db, "commit", side_effect=RuntimeError("database unavailable")):
            with self.assertRaises(RuntimeError):
                self._upload(CLEAN_INVOICE)

        stored = [f for _, _, files in os.walk(self._storage_dir) for f in files]
        self.assertEqual(stored, [])
        self.assertEqual(self.db.query(Document).count(), 0)

    # ---------------------------
    # Processing
    # ---------------------------

    def test_processing_stores_outputs_and_scores_document(self):
        doc = self._upload(BAD_INVOICE)

        stats = self.processor.process_pending(self.db, limit=10)
        self.assertEqual(stats, {"picked": 1, "succeeded": 1, "retried": 0, "failed": 0})

        self.db.expire_all()
        doc = self.db.get(Document, doc.id)
        self.assertEqual(doc.status, "PROCESSED")
        self.assertIsNotNone(doc.processed_at)
        self.assertEqual(doc.job.status, "SUCCESS")
        self.assertEqual(doc.parsed_data.document_type, "invoice")
        self.assertEqual(doc.parsed_data.fields["invoice_number"], "INV-900")

        codes = {f["code"] for f in doc.risk_features.risk_flags}
        self.assertIn("DUE_BEFORE_ISSUE", codes)
        self.assertIn("AMOUNT_MISMATCH", codes)

        score = self.db.query(DocumentRiskScore).filter_by(document_id=doc.id).one()
        self.assertIn("INV_DUE_BEFORE_ISSUE", score.triggered_rule_codes)
        self.assertIn("INV_TOTAL_MISMATCH", score.triggered_rule_codes)
        self.assertEqual(score.score, 50.0)
        self.assertEqual(score.severity, "medium")

        history = self.db.query(RiskScoreHistory).filter_by(entity_type="document", entity_id=doc.id).count()
        self.assertEqual(history, 1)

    def test_clean_invoice_triggers_nothing(self):
        doc = self._upload(CLEAN_INVOICE)
        self.processor.process_pending(self.db, limit=10)

        score = self.db.query(DocumentRiskScore).filter_by(document_id=doc.id).one()
        self.assertEqual(score.score, 0.0)
        self.assertEqual(score.severity, "low")
        self.assertEqual(score.triggered_rule_codes, [])

    def test_rule_engine_is_idempotent(self):
        doc = self._upload(BAD_INVOICE)
        self.processor.process_pending(self.db, limit=10)

        first = self.engine_service.evaluate_document(self.db, TENANT, doc.id)
        first_score, first_codes = first.score, list(first.triggered_rule_codes)

        second = self.engine_service.evaluate_document(self.db, TENANT, doc.id)

        self.assertEqual(second.score, first_score)
        self.assertEqual(second.triggered_rule_codes, first_codes)
        self.assertEqual(self.db.query(DocumentRiskScore).filter_by(document_id=doc.id).count(), 1)

    def test_duplicate_invoice_number_is_flagged_on_second_document(self):
        first = self._upload(CLEAN_INVOICE)
        second = self._upload(CLEAN_INVOICE)
        self.processor.process_pending(self.db, limit=10)

        self.db.expire_all()
        first_flags = {f["code"] for f in self.db.get(Document, first.id).risk_features.risk_flags}
        second_flags = {f["code"] for f in self.db.get(Document, second.id).risk_features.risk_flags}

        self.assertNotIn("DUPLICATE_INVOICE_NUMBER", first_flags)
        self.assertIn("DUPLICATE_INVOICE_NUMBER", second_flags)

    def test_deleted_document_does_not_count_as_duplicate(self):
        first = self._upload(CLEAN_INVOICE)
        self.processor.process_pending(self.db, limit=10)
        self.documents.delete(self.db, TENANT, first.id)

        second = self._upload(CLEAN_INVOICE)
        self.processor.process_pending(self.db, limit=10)

        self.db.expire_all()
        flags = {f["code"] for f in self.db.get(Document, second.id).risk_features.risk_flags}
        self.assertNotIn("DUPLICATE_INVOICE_NUMBER", flags)

    def test_worker_skips_jobs_of_deleted_documents(self):
        doc = self._upload(CLEAN_INVOICE)
        self.documents.delete(self.db, TENANT, doc.id)

        stats = self.processor.process_pending(self.db, limit=10)

        self.assertEqual(stats["picked"], 0)
        job = self.db.query(DocumentProcessingJob).filter_by(document_id=doc.id).one()
        self.assertEqual(job.status, "PENDING")

    def test_high_severity_document_raises_one_alert(self):
        # tenant thresholds make the 50 point document "high"
        from queries.risk import upsert_tenant_settings

        upsert_tenant_settings(self.db, TENANT, medium=20, high=40, critical=95)
        doc = self._upload(BAD_INVOICE)
        self.processor.process_pending(self.db, limit=10)

        calc = RiskCalculationProcessor(self.engine_service, RiskAlertService())
        calc.calculate_document(self.db, TENANT, doc.id)

        alerts = self.db.query(RiskAlert).filter_by(document_id=doc.id, type="RISK_THRESHOLD_EXCEEDED").all()
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].severity, "high")

    # ---------------------------
    # Retry
    # ---------------------------

    def test_failing_job_is_retried_then_marked_failed(self):
        doc = self._upload(CLEAN_INVOICE)
        os.remove(os.path.join(self._storage_dir, doc.storage_path))

        first = self.processor.process_pending(self.db, limit=10)
        self.assertEqual(first["retried"], 1)
        self.db.expire_all()
        job = self.db.query(DocumentProcessingJob).filter_by(document_id=doc.id).one()
        self.assertEqual(job.status, "PENDING")
        self.assertEqual(job.attempts_count, 1)
        self.assertIsNotNone(job.last_error_message)

        second = self.processor.process_pending(self.db, limit=10)
        self.assertEqual(second["failed"], 1)
        self.db.expire_all()
        job = self.db.query(DocumentProcessingJob).filter_by(document_id=doc.id).one()
        self.assertEqual(job.status, "FAILED")
        self.assertEqual(job.attempts_count, 2)
        self.assertEqual(self.db.get(Document, doc.id).status, "FAILED")

        # nothing left to pick up
        self.assertEqual(self.processor.process_pending(self.db, limit=10)["picked"], 0)


if __name__ == "__main__":
    unittest.main()
