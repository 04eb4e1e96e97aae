import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models.document import Document
from queries.documents import other_parsed_invoices
from queries.invoices import external_id_exists
from services.parser import ParsedDocument, parse_date

log = logging.getLogger("risk.features")


HIGH_INVOICE_AMOUNT = 1_000_000
HIGH_STATEMENT_TXN_AMOUNT = 100_000
AMOUNT_TOLERANCE = 0.01

FLAG_POINTS = {"high": 30, "medium": 15, "low": 5}


@dataclass
class RiskFeatures:
    features: Dict[str, Any] = field(default_factory=dict)
    flags: List[Dict[str, Any]] = field(default_factory=list)
    risk_score: Optional[float] = None


def _flag(code: str, severity: str, description: str, value: Any = None) -> Dict[str, Any]:
    out = {"code": code, "severity": severity, "description": description}
    if value is not None:
        out["value"] = value
    return out


def score_flags(flags: List[Dict[str, Any]]) -> float:
    return float(min(100, sum(FLAG_POINTS.get(f.get("severity"), 0) for f in flags)))


def due_before_issue(issue_raw: Any, due_raw: Any) -> Optional[bool]:
    """
    None when either date is absent or unparseable (not evaluated).
    """
    issue = parse_date(issue_raw)
    due = parse_date(due_raw)
    if issue is None or due is None:
        return None
    return due < issue


class RiskFeatureService:
    """
    Derives flags from parsed fields plus sibling documents/invoices
    of the same tenant. Missing fields never raise.
    """

    def generate(self, db: Session, tenant_id: str, document_id: int, parsed: ParsedDocument) -> RiskFeatures:
        features: Dict[str, Any] = {
            "document_type": parsed.document_type,
            "field_count": len(parsed.fields or {}),
        }
        flags: List[Dict[str, Any]] = []

        if parsed.document_type == "invoice":
            self._invoice_checks(db, tenant_id, document_id, parsed.fields or {}, features, flags)
        elif parsed.document_type == "bank_statement":
            self._bank_statement_checks(parsed.fields or {}, features, flags)

        return RiskFeatures(features=features, flags=flags, risk_score=score_flags(flags))

    # -------------------------
    # Invoice
    # -------------------------

    def _invoice_checks(self, db, tenant_id, document_id, fields, features, flags) -> None:
        number = (fields.get("invoice_number") or "").strip()
        total = fields.get("total_amount")

        if not number:
            features["has_missing_fields"] = True
            flags.append(_flag("INVOICE_NUMBER_MISSING", "high", "Invoice number not found"))

        if not fields.get("issue_date"):
            features["has_missing_fields"] = True
            flags.append(_flag("ISSUE_DATE_MISSING", "medium", "Issue date not found"))

        inconsistent = due_before_issue(fields.get("issue_date"), fields.get("due_date"))
        if inconsistent is not None:
            features["due_before_issue"] = inconsistent
            if inconsistent:
                flags.append(_flag("DUE_BEFORE_ISSUE", "high", "Due date is earlier than issue date"))

        if total is not None and total < 0:
            features["negative_amount"] = True
            flags.append(_flag("NEGATIVE_AMOUNT", "high", "Invoice total is negative", total))

        lines = fields.get("line_items") or []
        if total is not None and lines:
            line_sum = round(sum(float(ln.get("line_total") or 0) for ln in lines), 2)
            diff = abs(float(total) - line_sum)
            if diff > AMOUNT_TOLERANCE:
                features["amount_mismatch"] = True
                flags.append(
                    _flag(
                        "AMOUNT_MISMATCH",
                        "medium",
                        f"Invoice total ({total}) does not match sum of lines ({line_sum})",
                        round(diff, 2),
                    )
                )

        if number:
            duplicate = self._is_duplicate_number(db, tenant_id, document_id, number)
            if duplicate:
                features["duplicate_invoice_number"] = True
                flags.append(
                    _flag("DUPLICATE_INVOICE_NUMBER", "high", f"Invoice number {number} is already in use")
                )

        if total is not None and total > HIGH_INVOICE_AMOUNT:
            features["high_amount"] = True
            flags.append(_flag("HIGH_AMOUNT", "medium", "Invoice total is abnormally high", total))

        if not fields.get("counterparty_name") and not fields.get("counterparty_tax_number"):
            features["has_missing_fields"] = True
            flags.append(_flag("MISSING_COUNTERPARTY_INFO", "medium", "Counterparty information is missing"))

        if total is not None:
            features["total_amount"] = total

    def _is_duplicate_number(self, db: Session, tenant_id: str, document_id: int, number: str) -> bool:
        try:
            for row in other_parsed_invoices(db, tenant_id, document_id):
                if (row.fields or {}).get("invoice_number") == number:
                    return True

            doc = db.query(Document).filter(Document.id == document_id).first()
            exclude = doc.related_invoice_id if doc else None
            return external_id_exists(db, tenant_id, number, exclude_invoice_id=exclude)
        except Exception as e:
            log.exception("duplicate invoice number lookup failed (document=%s): %s", document_id, e)
            return False

    # -------------------------
    # Bank statement
    # -------------------------

    def _bank_statement_checks(self, fields, features, flags) -> None:
        start = fields.get("starting_balance")
        end = fields.get("ending_balance")

        if start is None and end is None:
            features["has_missing_fields"] = True
            flags.append(_flag("MISSING_BALANCE_INFO", "medium", "Balance information is missing"))

        if start is not None and end is not None and start > 0 and end < 0:
            features["negative_balance"] = True
            flags.append(_flag("NEGATIVE_BALANCE", "high", "Ending balance is negative"))

        big = [t for t in (fields.get("transactions") or []) if abs(float(t.get("amount") or 0)) > HIGH_STATEMENT_TXN_AMOUNT]
        if big:
            features["high_amount"] = True
            flags.append(_flag("HIGH_AMOUNT", "medium", f"{len(big)} high-value transactions", len(big)))
