import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from models.invoice import Invoice
from queries.transactions import list_counterparty_transactions
from services.risk_alerts import RiskAlertService

log = logging.getLogger("risk.counterparty")


DORMANT_DAYS = 90
AMOUNT_MULTIPLIER = 3


@dataclass
class CounterpartyHistory:
    first_seen: datetime
    last_seen: datetime
    record_count: int
    total_amount: float
    average_amount: float


@dataclass
class CounterpartyAnalysis:
    is_new: bool
    is_unusual: bool
    history: Optional[CounterpartyHistory] = None
    patterns: List[str] = field(default_factory=list)


class CounterpartyAnalyzer:
    def __init__(self, alerts: RiskAlertService | None = None) -> None:
        self.alerts = alerts or RiskAlertService()

    def history(
        self,
        db: Session,
        tenant_id: str,
        client_company_id: int,
        name: str,
        tax_number: str | None,
        exclude_invoice_id: int | None = None,
    ) -> Optional[CounterpartyHistory]:
        match = Invoice.counterparty_name == name
        if tax_number:
            match = match | (Invoice.counterparty_tax_number == tax_number)

        q = db.query(Invoice).filter(
            Invoice.tenant_id == tenant_id,
            Invoice.client_company_id == client_company_id,
            match,
        )
        if exclude_invoice_id is not None:
            q = q.filter(Invoice.id != exclude_invoice_id)

        points = [(inv.issue_date, float(inv.total_amount or 0)) for inv in q.all()]
        points += [(t.date, t.amount) for t in list_counterparty_transactions(db, tenant_id, client_company_id, name)]
        if not points:
            return None

        dates = sorted(p[0] for p in points)
        total = sum(p[1] for p in points)
        return CounterpartyHistory(
            first_seen=dates[0],
            last_seen=dates[-1],
            record_count=len(points),
            total_amount=total,
            average_amount=total / len(points),
        )

    def analyze(
        self,
        db: Session,
        tenant_id: str,
        client_company_id: int,
        name: str,
        tax_number: str | None,
        amount: float,
        on: datetime,
        exclude_invoice_id: int | None = None,
    ) -> CounterpartyAnalysis:
        """
        New counterparty, dormant for > 90 days, or amount > 3x its average.
        """
        hist = self.history(db, tenant_id, client_company_id, name, tax_number, exclude_invoice_id)
        if hist is None:
            return CounterpartyAnalysis(is_new=True, is_unusual=False, patterns=["first time seen"])

        patterns: List[str] = []
        idle_days = (on - hist.last_seen).days
        if idle_days > DORMANT_DAYS:
            patterns.append(f"dormant counterparty ({idle_days} days)")

        if hist.average_amount > 0 and amount > hist.average_amount * AMOUNT_MULTIPLIER:
            patterns.append(f"amount {amount:.2f} far above average {hist.average_amount:.2f}")

        return CounterpartyAnalysis(is_new=False, is_unusual=bool(patterns), history=hist, patterns=patterns)

    def check_and_alert(self, db: Session, invoice: Invoice) -> CounterpartyAnalysis | None:
        if not invoice.counterparty_name:
            return None

        analysis = self.analyze(
            db,
            invoice.tenant_id,
            invoice.client_company_id,
            invoice.counterparty_name,
            invoice.counterparty_tax_number,
            float(invoice.total_amount or 0),
            invoice.issue_date,
            exclude_invoice_id=invoice.id,
        )
        if analysis.is_new or analysis.is_unusual:
            self.alerts.create_alert(
                db,
                tenant_id=invoice.tenant_id,
                client_company_id=invoice.client_company_id,
                document_id=None,
                type="UNUSUAL_COUNTERPARTY",
                title="New counterparty" if analysis.is_new else "Unusual counterparty",
                message=f"{invoice.counterparty_name}: {', '.join(analysis.patterns)}",
                severity="high" if analysis.is_new else "medium",
            )
        return analysis
