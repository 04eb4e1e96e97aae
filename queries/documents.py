from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from models.document import (
    Document,
    DocumentOCRResult,
    DocumentParsedData,
    DocumentProcessingJob,
    DocumentRiskFeatures,
)


def get_document(db: Session, tenant_id: str, document_id: int) -> Document | None:
    return (
        db.query(Document)
        .filter(
            Document.tenant_id == tenant_id,
            Document.id == document_id,
            Document.is_deleted.is_(False),
        )
        .first()
    )


def get_document_detail(db: Session, tenant_id: str, document_id: int) -> Document | None:
    return (
        db.query(Document)
        .options(
            joinedload(Document.job),
            joinedload(Document.parsed_data),
            joinedload(Document.risk_features),
            joinedload(Document.risk_score),
        )
        .filter(
            Document.tenant_id == tenant_id,
            Document.id == document_id,
            Document.is_deleted.is_(False),
        )
        .first()
    )


def list_documents(
    db: Session,
    tenant_id: str,
    client_company_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Document]:
    q = db.query(Document).filter(Document.tenant_id == tenant_id, Document.is_deleted.is_(False))
    if client_company_id is not None:
        q = q.filter(Document.client_company_id == client_company_id)
    if status:
        q = q.filter(Document.status == status)
    return q.order_by(Document.id.desc()).offset(offset).limit(limit).all()


def count_documents_by_company(db: Session, tenant_id: str) -> dict[int, int]:
    rows = (
        db.query(Document.client_company_id, func.count(Document.id))
        .filter(
            Document.tenant_id == tenant_id,
            Document.client_company_id.isnot(None),
            Document.is_deleted.is_(False),
        )
        .group_by(Document.client_company_id)
        .all()
    )
    return {company_id: count for company_id, count in rows}


def get_risk_features(db: Session, tenant_id: str, document_id: int) -> DocumentRiskFeatures | None:
    return (
        db.query(DocumentRiskFeatures)
        .filter(
            DocumentRiskFeatures.tenant_id == tenant_id,
            DocumentRiskFeatures.document_id == document_id,
        )
        .first()
    )


def other_parsed_invoices(db: Session, tenant_id: str, document_id: int) -> list[DocumentParsedData]:
    return (
        db.query(DocumentParsedData)
        .join(Document, Document.id == DocumentParsedData.document_id)
        .filter(
            DocumentParsedData.tenant_id == tenant_id,
            DocumentParsedData.document_id != document_id,
            DocumentParsedData.document_type == "invoice",
            Document.is_deleted.is_(False),
        )
        .all()
    )


def get_pending_jobs(db: Session, limit: int) -> list[DocumentProcessingJob]:
    return (
        db.query(DocumentProcessingJob)
        .join(Document, Document.id == DocumentProcessingJob.document_id)
        .filter(DocumentProcessingJob.status == "PENDING", Document.is_deleted.is_(False))
        .order_by(DocumentProcessingJob.created_at.asc(), DocumentProcessingJob.id.asc())
        .limit(limit)
        .all()
    )


def get_job_for_document(db: Session, document_id: int) -> DocumentProcessingJob | None:
    return (
        db.query(DocumentProcessingJob)
        .filter(DocumentProcessingJob.document_id == document_id)
        .first()
    )


def upsert_ocr_result(
    db: Session, *, tenant_id: str, document_id: int, raw_text: str, engine: str, confidence: float | None
) -> DocumentOCRResult:
    row = db.query(DocumentOCRResult).filter(DocumentOCRResult.document_id == document_id).first()
    if not row:
        row = DocumentOCRResult(tenant_id=tenant_id, document_id=document_id)
        db.add(row)
    row.raw_text = raw_text
    row.ocr_engine = engine
    row.confidence = confidence
    return row


def upsert_parsed_data(
    db: Session, *, tenant_id: str, document_id: int, document_type: str, fields: dict, parser_version: str
) -> DocumentParsedData:
    row = db.query(DocumentParsedData).filter(DocumentParsedData.document_id == document_id).first()
    if not row:
        row = DocumentParsedData(tenant_id=tenant_id, document_id=document_id)
        db.add(row)
    row.document_type = document_type
    row.fields = fields
    row.parser_version = parser_version
    return row


def upsert_risk_features(
    db: Session, *, tenant_id: str, document_id: int, features: dict, risk_flags: list, risk_score: float | None, generated_at
) -> DocumentRiskFeatures:
    row = db.query(DocumentRiskFeatures).filter(DocumentRiskFeatures.document_id == document_id).first()
    if not row:
        row = DocumentRiskFeatures(tenant_id=tenant_id, document_id=document_id)
        db.add(row)
    row.features = features
    row.risk_flags = risk_flags
    row.risk_score = risk_score
    row.generated_at = generated_at
    return row
