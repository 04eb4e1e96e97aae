from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import ValidationError
from core.tenancy import get_tenant_id
from db.session import get_db
from helpers import clear_tenant_cache, read_upload
from queries.documents import list_documents
from schemas.document import DocumentDetailOut, DocumentOut
from schemas.responses import ApiResponse
from services.container import get_document_processor, get_document_service
from services.document_processor import DocumentProcessor
from services.document_service import DocumentService

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("", response_model=ApiResponse[DocumentOut], status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    type: str = Form(...),
    client_company_id: int = Form(...),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
):
    """
    Store the file and queue it for processing (status UPLOADED, job PENDING).
    """
    try:
        data = await read_upload(file, settings.MAX_UPLOAD_BYTES)
    except ValueError as e:
        raise ValidationError(str(e))

    document = documents.upload(
        db,
        tenant_id=tenant_id,
        client_company_id=client_company_id,
        type=type,
        filename=file.filename or "upload",
        mime_type=file.content_type,
        data=data,
    )
    return ApiResponse(data=DocumentOut.model_validate(document))


@router.get("", response_model=ApiResponse[list[DocumentOut]])
def get_documents(
    client_company_id: int | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    rows = list_documents(db, tenant_id, client_company_id=client_company_id, status=status, limit=limit, offset=offset)
    return ApiResponse(
        data=[DocumentOut.model_validate(d) for d in rows],
        meta={"limit": limit, "offset": offset},
    )


@router.get("/{document_id}", response_model=ApiResponse[DocumentDetailOut])
def get_document(
    document_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
):
    return ApiResponse(data=DocumentDetailOut.model_validate(documents.get_detail(db, tenant_id, document_id)))


@router.post("/{document_id}/process", response_model=ApiResponse[DocumentDetailOut])
def process_document(
    document_id: int,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
    processor: DocumentProcessor = Depends(get_document_processor),
):
    """
    Run the processing pipeline now instead of waiting for the worker.
    """
    processor.process_document(db, tenant_id, document_id)
    clear_tenant_cache(request, tenant_id)
    db.expire_all()
    return ApiResponse(data=DocumentDetailOut.model_validate(documents.get_detail(db, tenant_id, document_id)))


@router.delete("/{document_id}", response_model=ApiResponse[dict])
def delete_document(
    document_id: int,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
):
    documents.delete(db, tenant_id, document_id)
    clear_tenant_cache(request, tenant_id)
    return ApiResponse(data={"deleted": document_id})
