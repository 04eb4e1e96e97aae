from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from core.errors import NotFoundError
from core.tenancy import get_tenant_id
from db.session import get_db
from helpers import clear_tenant_cache
from queries.invoices import count_invoices, get_invoice, list_invoices
from schemas.invoice import DuplicateOut, InvoiceIn, InvoiceOut, InvoiceUpdate, SimilarInvoiceOut
from schemas.responses import ApiResponse
from services.container import get_invoice_service
from services.invoice_service import SIMILARITY_THRESHOLD, InvoiceService

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("", response_model=ApiResponse[InvoiceOut], status_code=201)
def create_invoice(
    body: InvoiceIn,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    """
    Create an invoice with its lines.
    Duplicate and counterparty checks run afterwards and never fail the request.
    """
    invoice = invoices.create_invoice(db, tenant_id, body.model_dump())
    clear_tenant_cache(request, tenant_id)
    return ApiResponse(data=InvoiceOut.model_validate(invoice))


@router.put("/{invoice_id}", response_model=ApiResponse[InvoiceOut])
def update_invoice(
    invoice_id: int,
    body: InvoiceUpdate,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    changes = body.model_dump(exclude_unset=True)
    invoice = invoices.update_invoice(db, tenant_id, invoice_id, changes)
    clear_tenant_cache(request, tenant_id)
    return ApiResponse(data=InvoiceOut.model_validate(invoice))


@router.get("", response_model=ApiResponse[list[InvoiceOut]])
def get_invoices(
    client_company_id: int | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    """
    Returns invoices from DB (source of truth), newest first.
    """
    rows = list_invoices(db, tenant_id, client_company_id=client_company_id, limit=limit, offset=offset)
    total = count_invoices(db, tenant_id, client_company_id)
    return ApiResponse(
        data=[InvoiceOut.model_validate(inv) for inv in rows],
        meta={"total": total, "limit": limit, "offset": offset},
    )


@router.get("/{invoice_id}", response_model=ApiResponse[InvoiceOut])
def get_one_invoice(
    invoice_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    invoice = get_invoice(db, tenant_id, invoice_id)
    if not invoice:
        raise NotFoundError(f"invoice {invoice_id} not found")
    return ApiResponse(data=InvoiceOut.model_validate(invoice))


@router.get("/{invoice_id}/duplicates", response_model=ApiResponse[list[DuplicateOut]])
def invoice_duplicates(
    invoice_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    rows = invoices.check_invoice_level_duplicates(db, tenant_id, invoice_id)
    return ApiResponse(data=[DuplicateOut(**r) for r in rows], meta={"count": len(rows)})


@router.get("/{invoice_id}/similar", response_model=ApiResponse[list[SimilarInvoiceOut]])
def similar_invoices(
    invoice_id: int,
    threshold: float = Query(SIMILARITY_THRESHOLD, ge=0, le=1),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    """
    Fuzzy matches on invoice number, amount and issue date.
    """
    rows = invoices.check_similar_invoices(db, tenant_id, invoice_id, threshold)
    return ApiResponse(data=[SimilarInvoiceOut(**r) for r in rows], meta={"count": len(rows), "threshold": threshold})
