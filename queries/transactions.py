from datetime import datetime

from sqlalchemy.orm import Session, selectinload

from models.transaction import Transaction


def list_company_transactions_since(
    db: Session, tenant_id: str, client_company_id: int, since: datetime
) -> list[Transaction]:
    return (
        db.query(Transaction)
        .options(selectinload(Transaction.lines))
        .filter(
            Transaction.tenant_id == tenant_id,
            Transaction.client_company_id == client_company_id,
            Transaction.date >= since,
        )
        .order_by(Transaction.date.asc(), Transaction.id.asc())
        .all()
    )


def list_counterparty_transactions(
    db: Session, tenant_id: str, client_company_id: int, counterparty_name: str
) -> list[Transaction]:
    return (
        db.query(Transaction)
        .options(selectinload(Transaction.lines))
        .filter(
            Transaction.tenant_id == tenant_id,
            Transaction.client_company_id == client_company_id,
            Transaction.description.contains(counterparty_name),
        )
        .order_by(Transaction.date.asc())
        .all()
    )
