from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.tenancy import get_tenant_id
from db.session import get_db
from queries.companies import create_company, list_companies, require_company
from schemas.company import CompanyIn, CompanyOut
from schemas.responses import ApiResponse

router = APIRouter(prefix="/companies", tags=["companies"])


@router.post("", response_model=ApiResponse[CompanyOut], status_code=201)
def add_company(
    body: CompanyIn,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    company = create_company(db, tenant_id, body.name, body.tax_number)
    return ApiResponse(data=CompanyOut.model_validate(company))


@router.get("", response_model=ApiResponse[list[CompanyOut]])
def get_companies(
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    rows = list_companies(db, tenant_id)
    return ApiResponse(data=[CompanyOut.model_validate(c) for c in rows], meta={"total": len(rows)})


@router.get("/{company_id}", response_model=ApiResponse[CompanyOut])
def get_company(
    company_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return ApiResponse(data=CompanyOut.model_validate(require_company(db, tenant_id, company_id)))
