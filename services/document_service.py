import logging

from sqlalchemy.orm import Session

from core.errors import NotFoundError, ValidationError
from models.document import Document, DocumentProcessingJob
from queries.companies import require_company
from queries.documents import get_document, get_document_detail
from services.storage import LocalStorage

log = logging.getLogger("documents")


DOCUMENT_TYPES = ("INVOICE", "BANK_STATEMENT", "RECEIPT", "OTHER")


class DocumentService:
    def __init__(self, storage: LocalStorage | None = None) -> None:
        self.storage = storage or LocalStorage()

    def upload(
        self,
        db: Session,
        *,
        tenant_id: str,
        client_company_id: int,
        type: str,
        filename: str,
        mime_type: str | None,
        data: bytes,
    ) -> Document:
        """
        Store the file, create the document and queue a processing job.
        """
        require_company(db, tenant_id, client_company_id)

        doc_type = (type or "").upper()
        if doc_type not in DOCUMENT_TYPES:
            raise ValidationError(f"type must be one of {', '.join(DOCUMENT_TYPES)}")
        if not data:
            raise ValidationError("uploaded file is empty")

        key = self.storage.put(tenant_id, filename, data)

        try:
            document = Document(
                tenant_id=tenant_id,
                client_company_id=client_company_id,
                type=doc_type,
                original_file_name=filename or "upload",
                mime_type=mime_type,
                storage_path=key,
                status="UPLOADED",
            )
            db.add(document)
            db.flush()

            db.add(DocumentProcessingJob(tenant_id=tenant_id, document_id=document.id, status="PENDING"))
            db.commit()
        except Exception:
            db.rollback()
            self.storage.delete(tenant_id, key)
            log.exception("document upload failed, removed stored object %s", key)
            raise
        db.refresh(document)

        log.info("document %s uploaded (tenant=%s, type=%s, %s bytes)", document.id, tenant_id, doc_type, len(data))
        return document

    def get_detail(self, db: Session, tenant_id: str, document_id: int) -> Document:
        document = get_document_detail(db, tenant_id, document_id)
        if not document:
            raise NotFoundError(f"document {document_id} not found")
        return document

    def delete(self, db: Session, tenant_id: str, document_id: int) -> None:
        document = get_document(db, tenant_id, document_id)
        if not document:
            raise NotFoundError(f"document {document_id} not found")
        document.is_deleted = True
        db.commit()
