import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from core.errors import NotFoundError, ValidationError
from models.invoice import Invoice
from queries.companies import require_company
from queries.invoices import (
    AMOUNT_TOLERANCE,
    find_exact_duplicates,
    get_invoice,
    get_invoice_by_external_id,
    list_numbered_invoices,
    replace_lines,
)
from services.counterparty import CounterpartyAnalyzer
from services.risk_alerts import RiskAlertService

log = logging.getLogger("invoices")


SIMILARITY_THRESHOLD = 0.8
SIMILAR_AMOUNT_SHARE = 0.1
SIMILAR_DAYS = 30

HEADER_FIELDS = (
    "external_id",
    "type",
    "issue_date",
    "due_date",
    "total_amount",
    "tax_amount",
    "net_amount",
    "currency",
    "counterparty_name",
    "counterparty_tax_number",
    "status",
)


def check_line_totals(total_amount: float, lines: List[Dict[str, Any]]) -> None:
    if not lines:
        return
    line_sum = sum(float(ln.get("line_total") or 0) for ln in lines)
    if abs(line_sum - float(total_amount or 0)) > AMOUNT_TOLERANCE:
        raise ValidationError(f"sum of line totals ({line_sum:.2f}) does not match invoice total ({float(total_amount):.2f})")


def levenshtein(a: str, b: str) -> int:
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        cur = [i]
        for j, cb in enumerate(b, 1):
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + (ca != cb)))
        prev = cur
    return prev[-1]


def string_similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - levenshtein(a, b)) / longest


def invoice_similarity(invoice: Invoice, other: Invoice) -> float:
    """
    Weighted 0..1 score: invoice number 0.5 (edit distance), amount 0.3
    (falls to 0 at a 10% difference), issue date 0.2 (falls to 0 at 30 days).
    """
    number = string_similarity(invoice.external_id or "", other.external_id or "")

    total = float(invoice.total_amount or 0)
    diff = abs(total - float(other.total_amount or 0))
    if total:
        amount = max(0.0, 1 - diff / abs(total) / SIMILAR_AMOUNT_SHARE)
    else:
        amount = 1.0 if diff == 0 else 0.0

    days = abs((invoice.issue_date - other.issue_date).total_seconds()) / 86400
    date = 1 - days / SIMILAR_DAYS if days <= SIMILAR_DAYS else 0.0

    return 0.5 * number + 0.3 * amount + 0.2 * date


class InvoiceService:
    def __init__(
        self,
        counterparty: CounterpartyAnalyzer | None = None,
        alerts: RiskAlertService | None = None,
    ) -> None:
        self.alerts = alerts or RiskAlertService()
        self.counterparty = counterparty or CounterpartyAnalyzer(self.alerts)

    def create_invoice(self, db: Session, tenant_id: str, data: Dict[str, Any]) -> Invoice:
        require_company(db, tenant_id, data["client_company_id"])

        lines = list(data.get("lines") or [])
        check_line_totals(data.get("total_amount"), lines)

        invoice = Invoice(tenant_id=tenant_id, client_company_id=data["client_company_id"], source=data.get("source") or "manual")
        for key in HEADER_FIELDS:
            if data.get(key) is not None:
                setattr(invoice, key, data[key])
        db.add(invoice)
        db.flush()

        replace_lines(db, invoice, lines)
        db.commit()
        db.refresh(invoice)

        log.info("invoice %s created (tenant=%s, company=%s)", invoice.id, tenant_id, invoice.client_company_id)
        self._side_checks(db, invoice)
        return invoice

    def update_invoice(self, db: Session, tenant_id: str, invoice_id: int, changes: Dict[str, Any]) -> Invoice:
        invoice = get_invoice(db, tenant_id, invoice_id)
        if not invoice:
            raise NotFoundError(f"invoice {invoice_id} not found")

        if changes.get("client_company_id") is not None:
            require_company(db, tenant_id, changes["client_company_id"])
            invoice.client_company_id = changes["client_company_id"]

        lines = changes.get("lines")
        if lines is not None:
            total = changes["total_amount"] if changes.get("total_amount") is not None else invoice.total_amount
            check_line_totals(total, lines)

        for key in HEADER_FIELDS:
            if changes.get(key) is not None:
                setattr(invoice, key, changes[key])

        if lines is not None:
            replace_lines(db, invoice, lines)

        db.commit()
        db.refresh(invoice)

        log.info("invoice %s updated (tenant=%s)", invoice.id, tenant_id)
        self._side_checks(db, invoice)
        return invoice

    def upsert_synced(
        self,
        db: Session,
        *,
        tenant_id: str,
        client_company_id: int,
        data: Dict[str, Any],
        source_modified: str | None,
        lines_hash: str,
    ) -> Invoice:
        """
        Create or replace an invoice mirrored from the accounting system.
        Lines come from the source as-is; no header/line total check.
        """
        invoice = get_invoice_by_external_id(db, tenant_id, client_company_id, data["external_id"])
        if not invoice:
            invoice = Invoice(tenant_id=tenant_id, client_company_id=client_company_id, source="sync")
            db.add(invoice)

        for key in HEADER_FIELDS:
            if data.get(key) is not None:
                setattr(invoice, key, data[key])
        invoice.source_modified = source_modified
        invoice.lines_hash = lines_hash
        db.flush()

        try:
            replace_lines(db, invoice, data.get("lines") or [])
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(invoice)
        self._side_checks(db, invoice)
        return invoice

    def check_invoice_level_duplicates(self, db: Session, tenant_id: str, invoice_id: int) -> List[Dict[str, Any]]:
        invoice = get_invoice(db, tenant_id, invoice_id)
        if not invoice:
            raise NotFoundError(f"invoice {invoice_id} not found")

        duplicates = find_exact_duplicates(db, invoice)
        if duplicates:
            numbers = ", ".join(str(d.id) for d in duplicates)
            self.alerts.create_alert(
                db,
                tenant_id=tenant_id,
                client_company_id=invoice.client_company_id,
                document_id=None,
                type="INVOICE_DUPLICATE",
                title="Duplicate invoice",
                message=f"Invoice {invoice.external_id} ({invoice.id}) duplicates invoice(s) {numbers}",
                severity="high",
            )

        return [
            {
                "invoice_id": d.id,
                "external_id": d.external_id,
                "issue_date": d.issue_date.isoformat(),
                "total_amount": float(d.total_amount),
            }
            for d in duplicates
        ]

    def check_similar_invoices(
        self, db: Session, tenant_id: str, invoice_id: int, threshold: float = SIMILARITY_THRESHOLD
    ) -> List[Dict[str, Any]]:
        """
        Fuzzy matches across the tenant, most similar first. Invoices without a number are never matched.
        """
        invoice = get_invoice(db, tenant_id, invoice_id)
        if not invoice:
            raise NotFoundError(f"invoice {invoice_id} not found")
        if not invoice.external_id:
            return []

        similar = []
        for other in list_numbered_invoices(db, tenant_id, invoice.id):
            score = invoice_similarity(invoice, other)
            if score >= threshold:
                similar.append({"invoice_id": other.id, "external_id": other.external_id, "similarity": round(score, 4)})

        return sorted(similar, key=lambda s: (-s["similarity"], s["invoice_id"]))

    def _side_checks(self, db: Session, invoice: Invoice) -> None:
        # the invoice is committed at this point; checks only log on failure
        try:
            self.check_invoice_level_duplicates(db, invoice.tenant_id, invoice.id)
        except Exception as e:
            db.rollback()
            log.exception("duplicate check failed for invoice %s: %s", invoice.id, e)

        try:
            self.counterparty.check_and_alert(db, invoice)
        except Exception as e:
            db.rollback()
            log.exception("counterparty check failed for invoice %s: %s", invoice.id, e)
