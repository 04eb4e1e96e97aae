from typing import Any, Dict, List

from sqlalchemy.orm import Session

from core.errors import NotFoundError
from queries.companies import require_company
from queries.documents import get_document, get_risk_features
from queries.risk import get_latest_company_score
from services.risk_rules import RiskRuleService


DUPLICATE_ADVICE = "Duplicate invoice detected. Check the invoice numbers and correct them if needed."
COUNTERPARTY_ADVICE = "Unusual counterparty detected. Verify the counterparty details."

RULE_ADVICE = {
    "INV_DUPLICATE_NUMBER": DUPLICATE_ADVICE,
    "INV_DUPLICATE_INVOICE": DUPLICATE_ADVICE,
    "COMP_FREQUENT_DUPLICATES": DUPLICATE_ADVICE,
    "INV_TOTAL_MISMATCH": "Invoice total does not match the sum of its lines. Check the invoice amounts.",
    "INV_DUE_BEFORE_ISSUE": "Due date is before the issue date. Check the invoice dates.",
    "VAT_RATE_INCONSISTENCY": "Inconsistent VAT rates detected. Review the VAT rates and calculations.",
    "AMOUNT_DATE_INCONSISTENCY": "Amount and date do not fit together. Check the invoice dates and amounts.",
    "NEW_COUNTERPARTY": COUNTERPARTY_ADVICE,
    "UNUSUAL_COUNTERPARTY": COUNTERPARTY_ADVICE,
    "CHART_MISMATCH": "Chart of accounts mismatch detected. Check that entries are booked to the right accounts.",
}


def summarize(score: float, severity: str, triggered_count: int) -> str:
    if score == 0:
        return "No risk detected. All checks passed."

    head = f"{severity.capitalize()} risk ({score:.1f}/100). {triggered_count} rule(s) triggered."
    if severity in ("high", "critical"):
        return f"{head} Urgent review recommended."
    if severity == "medium":
        return f"{head} Careful review recommended."
    return f"{head} Routine monitoring is enough."


def recommend(triggered_codes: List[str], severity: str) -> List[str]:
    out = [RULE_ADVICE[code] for code in triggered_codes if code in RULE_ADVICE]

    if severity in ("high", "critical"):
        out.append("The risk level calls for a detailed review.")
        out.append("Review the related documents and transactions.")
    elif severity == "medium":
        out.append("Follow this up closely.")

    return list(dict.fromkeys(out))


class RiskExplanationService:
    """
    Turns a stored score back into the rules behind it.
    Rules are the tenant's current active set, so a rule disabled after
    scoring no longer appears among the factors.
    """

    def __init__(self, rules: RiskRuleService | None = None) -> None:
        self.rules = rules or RiskRuleService()

    def explain_document(self, db: Session, tenant_id: str, document_id: int) -> Dict[str, Any]:
        document = get_document(db, tenant_id, document_id)
        if not document:
            raise NotFoundError(f"document {document_id} not found")
        if document.risk_score is None:
            raise NotFoundError(f"risk score for document {document_id} not found")
        if not get_risk_features(db, tenant_id, document_id):
            raise NotFoundError(f"risk features for document {document_id} not found")

        return self._explain(db, tenant_id, "document", document.risk_score)

    def explain_company(self, db: Session, tenant_id: str, company_id: int) -> Dict[str, Any]:
        require_company(db, tenant_id, company_id)
        row = get_latest_company_score(db, tenant_id, company_id)
        if not row:
            raise NotFoundError(f"risk score for client company {company_id} not found")

        return self._explain(db, tenant_id, "company", row)

    def _explain(self, db: Session, tenant_id: str, scope: str, row) -> Dict[str, Any]:
        codes = set(row.triggered_rule_codes or [])
        factors = [
            {
                "rule_code": r.code,
                "description": r.description,
                "weight": float(r.weight),
                "triggered": r.code in codes,
            }
            for r in self.rules.load_active_rules(db, tenant_id, scope)
        ]
        triggered = [f["rule_code"] for f in factors if f["triggered"]]
        score = float(row.score)

        return {
            "score": score,
            "severity": row.severity,
            "contributing_factors": factors,
            "summary": summarize(score, row.severity, len(triggered)),
            "recommendations": recommend(triggered, row.severity),
        }
