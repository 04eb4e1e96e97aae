from sqlalchemy.orm import Session

from core.errors import NotFoundError
from models.company import ClientCompany


def get_company(db: Session, tenant_id: str, company_id: int) -> ClientCompany | None:
    return (
        db.query(ClientCompany)
        .filter(ClientCompany.tenant_id == tenant_id, ClientCompany.id == company_id)
        .first()
    )


def require_company(db: Session, tenant_id: str, company_id: int) -> ClientCompany:
    company = get_company(db, tenant_id, company_id)
    if not company:
        raise NotFoundError(f"client company {company_id} not found")
    return company


def list_companies(db: Session, tenant_id: str) -> list[ClientCompany]:
    return (
        db.query(ClientCompany)
        .filter(ClientCompany.tenant_id == tenant_id)
        .order_by(ClientCompany.id)
        .all()
    )


def create_company(db: Session, tenant_id: str, name: str, tax_number: str | None = None) -> ClientCompany:
    company = ClientCompany(tenant_id=tenant_id, name=name.strip(), tax_number=tax_number)
    db.add(company)
    db.commit()
    db.refresh(company)
    return company
