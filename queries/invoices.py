from datetime import datetime, timedelta

from sqlalchemy.orm import Session, joinedload

from models.invoice import Invoice, InvoiceLine


AMOUNT_TOLERANCE = 0.01


def get_invoice(db: Session, tenant_id: str, invoice_pk: int) -> Invoice | None:
    return (
        db.query(Invoice)
        .options(joinedload(Invoice.lines))
        .filter(Invoice.tenant_id == tenant_id, Invoice.id == invoice_pk)
        .first()
    )


def get_invoice_by_external_id(
    db: Session, tenant_id: str, client_company_id: int, external_id: str
) -> Invoice | None:
    return (
        db.query(Invoice)
        .options(joinedload(Invoice.lines))
        .filter(
            Invoice.tenant_id == tenant_id,
            Invoice.client_company_id == client_company_id,
            Invoice.external_id == external_id,
        )
        .first()
    )


def list_invoices(
    db: Session,
    tenant_id: str,
    client_company_id: int | None = None,
    limit: int = 300,
    offset: int = 0,
) -> list[Invoice]:
    q = (
        db.query(Invoice)
        .options(joinedload(Invoice.lines))
        .filter(Invoice.tenant_id == tenant_id)
    )
    if client_company_id is not None:
        q = q.filter(Invoice.client_company_id == client_company_id)
    return q.order_by(Invoice.id.desc()).offset(offset).limit(limit).all()


def count_invoices(db: Session, tenant_id: str, client_company_id: int | None = None) -> int:
    q = db.query(Invoice).filter(Invoice.tenant_id == tenant_id)
    if client_company_id is not None:
        q = q.filter(Invoice.client_company_id == client_company_id)
    return q.count()


def list_company_invoices_since(
    db: Session, tenant_id: str, client_company_id: int, since: datetime
) -> list[Invoice]:
    return (
        db.query(Invoice)
        .filter(
            Invoice.tenant_id == tenant_id,
            Invoice.client_company_id == client_company_id,
            Invoice.issue_date >= since,
        )
        .order_by(Invoice.issue_date.asc(), Invoice.id.asc())
        .all()
    )


def list_numbered_invoices(db: Session, tenant_id: str, exclude_invoice_id: int) -> list[Invoice]:
    return (
        db.query(Invoice)
        .filter(
            Invoice.tenant_id == tenant_id,
            Invoice.id != exclude_invoice_id,
            Invoice.external_id.isnot(None),
        )
        .order_by(Invoice.id)
        .all()
    )


def external_id_exists(
    db: Session, tenant_id: str, external_id: str, exclude_invoice_id: int | None = None
) -> bool:
    q = db.query(Invoice.id).filter(
        Invoice.tenant_id == tenant_id,
        Invoice.external_id == external_id,
    )
    if exclude_invoice_id is not None:
        q = q.filter(Invoice.id != exclude_invoice_id)
    return q.first() is not None


def find_exact_duplicates(db: Session, invoice: Invoice) -> list[Invoice]:
    """
    Same tenant, same external id and issue date, amount within tolerance.
    """
    if not invoice.external_id:
        return []

    total = float(invoice.total_amount or 0)
    return (
        db.query(Invoice)
        .filter(
            Invoice.tenant_id == invoice.tenant_id,
            Invoice.id != invoice.id,
            Invoice.external_id == invoice.external_id,
            Invoice.issue_date == invoice.issue_date,
            Invoice.total_amount >= total - AMOUNT_TOLERANCE,
            Invoice.total_amount <= total + AMOUNT_TOLERANCE,
        )
        .order_by(Invoice.id)
        .all()
    )


def find_near_duplicates(db: Session, invoice: Invoice, window_days: int = 30) -> list[Invoice]:
    """
    Same amount and counterparty issued within +/- window_days.
    """
    total = float(invoice.total_amount or 0)
    q = db.query(Invoice).filter(
        Invoice.tenant_id == invoice.tenant_id,
        Invoice.id != invoice.id,
        Invoice.total_amount >= total - AMOUNT_TOLERANCE,
        Invoice.total_amount <= total + AMOUNT_TOLERANCE,
        Invoice.issue_date >= invoice.issue_date - timedelta(days=window_days),
        Invoice.issue_date <= invoice.issue_date + timedelta(days=window_days),
    )
    if invoice.counterparty_name:
        q = q.filter(Invoice.counterparty_name == invoice.counterparty_name)
    return q.limit(1).all()


def replace_lines(db: Session, invoice: Invoice, lines: list[dict]) -> None:
    # force DELETEs before inserting rows with the same line_number (sqlite)
    invoice.lines.clear()
    db.flush()

    seen: set[int] = set()
    for pos, ln in enumerate(lines or [], start=1):
        line_number = int(ln.get("line_number") or pos)
        if line_number in seen:
            continue
        seen.add(line_number)

        invoice.lines.append(
            InvoiceLine(
                line_number=line_number,
                description=(ln.get("description") or "").strip() or None,
                quantity=float(ln.get("quantity") or 0),
                unit_price=float(ln.get("unit_price") or 0),
                line_total=float(ln.get("line_total") or 0),
                vat_rate=ln.get("vat_rate"),
                vat_amount=ln.get("vat_amount"),
            )
        )
