import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.config import Settings, settings
from core.errors import NotFoundError
from helpers import utcnow
from models.invoice import Invoice
from models.risk import ClientCompanyRiskScore, DocumentRiskScore, RiskRule
from queries.companies import require_company
from queries.documents import get_document, get_risk_features
from queries.invoices import find_near_duplicates
from queries.risk import list_company_document_scores, upsert_company_score, upsert_document_score
from services.counterparty import CounterpartyAnalyzer
from services.fraud_patterns import FraudPatternDetector, FraudPatternResult
from services.risk_rules import RiskRuleService
from services.risk_trend import RiskTrendService
from services.severity import clamp_score, is_high_or_above, resolve_thresholds, severity_for_score

log = logging.getLogger("risk.engine")


@dataclass
class DocumentRuleContext:
    features: Dict[str, Any]
    flag_codes: set
    feature_score: Optional[float]
    benfords_violation: bool = False
    round_number_suspicious: bool = False
    unusual_timing: bool = False
    counterparty_new: bool = False
    counterparty_unusual: bool = False
    duplicate_invoice: bool = False


@dataclass
class CompanyRuleContext:
    # (score, severity, generated_at, related_invoice_id) per scored document
    document_scores: List[tuple] = field(default_factory=list)
    total_invoice_count: int = 0
    high_risk_invoice_count: int = 0
    duplicate_external_ids: List[str] = field(default_factory=list)
    fraud: FraudPatternResult = field(default_factory=FraudPatternResult)

    @property
    def max_document_score(self) -> float:
        return max((s[0] for s in self.document_scores), default=0.0)


class RiskRuleEngine:
    """
    Weighted rule scoring for documents and client companies.
    score = clamp(sum of triggered rule weights, 0, 100)
    """

    def __init__(
        self,
        config: Settings = settings,
        rules: RiskRuleService | None = None,
        fraud: FraudPatternDetector | None = None,
        counterparty: CounterpartyAnalyzer | None = None,
        trend: RiskTrendService | None = None,
    ) -> None:
        self.config = config
        self.rules = rules or RiskRuleService()
        self.fraud = fraud or FraudPatternDetector(config)
        self.counterparty = counterparty or CounterpartyAnalyzer()
        self.trend = trend or RiskTrendService()

    # -------------------------
    # Document
    # -------------------------

    def evaluate_document(self, db: Session, tenant_id: str, document_id: int) -> DocumentRiskScore:
        document = get_document(db, tenant_id, document_id)
        if not document:
            raise NotFoundError(f"document {document_id} not found")

        features_row = get_risk_features(db, tenant_id, document_id)
        if not features_row:
            raise NotFoundError(f"risk features for document {document_id} not found")

        ctx = DocumentRuleContext(
            features=dict(features_row.features or {}),
            flag_codes={f.get("code") for f in (features_row.risk_flags or [])},
            feature_score=features_row.risk_score,
        )

        if document.client_company_id:
            signals = self._fraud_signals(db, tenant_id, document.client_company_id)
            ctx.benfords_violation = signals.benfords_violation
            ctx.round_number_suspicious = signals.round_number_suspicious
            ctx.unusual_timing = signals.unusual_timing

        invoice = document.related_invoice
        if invoice is not None:
            self._invoice_signals(db, invoice, ctx)

        triggered = [r for r in self.rules.load_active_rules(db, tenant_id, "document") if self._document_rule(r, ctx)]
        score, severity, codes = self._score(db, tenant_id, triggered)

        row = upsert_document_score(
            db,
            tenant_id=tenant_id,
            document_id=document_id,
            score=score,
            severity=severity,
            triggered_rule_codes=codes,
            generated_at=utcnow(),
        )
        self.trend.store_history(db, tenant_id, "document", document_id, score, severity)

        log.info("document %s scored %.1f (%s) rules=%s", document_id, score, severity, codes)
        return row

    def _invoice_signals(self, db: Session, invoice: Invoice, ctx: DocumentRuleContext) -> None:
        if invoice.counterparty_name:
            try:
                analysis = self.counterparty.analyze(
                    db,
                    invoice.tenant_id,
                    invoice.client_company_id,
                    invoice.counterparty_name,
                    invoice.counterparty_tax_number,
                    float(invoice.total_amount or 0),
                    invoice.issue_date,
                    exclude_invoice_id=invoice.id,
                )
                ctx.counterparty_new = analysis.is_new
                ctx.counterparty_unusual = analysis.is_unusual
            except Exception as e:
                log.exception("counterparty analysis failed for invoice %s: %s", invoice.id, e)

        try:
            ctx.duplicate_invoice = bool(find_near_duplicates(db, invoice))
        except Exception as e:
            log.exception("duplicate check failed for invoice %s: %s", invoice.id, e)

    @staticmethod
    def _document_rule(rule: RiskRule, ctx: DocumentRuleContext) -> bool:
        f = ctx.features
        code = rule.code

        if code == "INV_DUE_BEFORE_ISSUE":
            return f.get("due_before_issue") is True
        if code == "INV_TOTAL_MISMATCH":
            return f.get("amount_mismatch") is True
        if code == "INV_DUPLICATE_NUMBER":
            return f.get("duplicate_invoice_number") is True
        if code == "INV_DUPLICATE_INVOICE":
            return ctx.duplicate_invoice
        if code == "INV_MISSING_NUMBER":
            return "INVOICE_NUMBER_MISSING" in ctx.flag_codes
        if code == "INV_MISSING_COUNTERPARTY":
            return "MISSING_COUNTERPARTY_INFO" in ctx.flag_codes
        if code == "INV_NEGATIVE_AMOUNT":
            return f.get("negative_amount") is True
        if code == "INV_HIGH_AMOUNT":
            return f.get("document_type") == "invoice" and f.get("high_amount") is True
        if code == "NEW_COUNTERPARTY":
            return ctx.counterparty_new
        if code == "UNUSUAL_COUNTERPARTY":
            return ctx.counterparty_unusual
        if code == "BENFORDS_LAW_VIOLATION":
            return ctx.benfords_violation
        if code == "ROUND_NUMBER_SUSPICIOUS":
            return ctx.round_number_suspicious
        if code == "UNUSUAL_TIMING":
            return ctx.unusual_timing
        if code == "DOC_PARSING_FAILED":
            return ctx.feature_score is None or f.get("document_type") == "unknown" or not f.get("field_count")

        # custom rules fire on a feature flag with the same code
        return code in ctx.flag_codes

    # -------------------------
    # Company
    # -------------------------

    def evaluate_company(self, db: Session, tenant_id: str, client_company_id: int) -> ClientCompanyRiskScore:
        require_company(db, tenant_id, client_company_id)

        ctx = self._company_context(db, tenant_id, client_company_id)
        triggered = [r for r in self.rules.load_active_rules(db, tenant_id, "company") if self._company_rule(r, ctx)]
        score, severity, codes = self._score(db, tenant_id, triggered)

        row = upsert_company_score(
            db,
            tenant_id=tenant_id,
            client_company_id=client_company_id,
            score=score,
            severity=severity,
            triggered_rule_codes=codes,
            generated_at=utcnow(),
        )
        self.trend.store_history(db, tenant_id, "company", client_company_id, score, severity)

        log.info("company %s scored %.1f (%s) rules=%s", client_company_id, score, severity, codes)
        return row

    def _company_context(self, db: Session, tenant_id: str, client_company_id: int) -> CompanyRuleContext:
        since = utcnow() - timedelta(days=self.config.COMPANY_SCORE_WINDOW_DAYS)
        scored = list_company_document_scores(db, tenant_id, client_company_id, since)

        ctx = CompanyRuleContext(
            document_scores=[(float(s.score), s.severity, s.generated_at, d.related_invoice_id) for s, d in scored],
        )

        external_ids = [
            row[0]
            for row in db.query(Invoice.external_id).filter(
                Invoice.tenant_id == tenant_id,
                Invoice.client_company_id == client_company_id,
            )
        ]
        ctx.total_invoice_count = len(external_ids)
        counts = Counter(x for x in external_ids if x)
        ctx.duplicate_external_ids = sorted(k for k, n in counts.items() if n > 1)

        ctx.high_risk_invoice_count = len(
            {inv_id for _, sev, _, inv_id in ctx.document_scores if inv_id and is_high_or_above(sev)}
        )
        ctx.fraud = self._fraud_signals(db, tenant_id, client_company_id)
        return ctx

    @staticmethod
    def _company_rule(rule: RiskRule, ctx: CompanyRuleContext) -> bool:
        cfg = rule.config or {}
        code = rule.code

        if code == "COMP_MANY_HIGH_RISK_DOCS":
            cutoff = utcnow() - timedelta(days=int(cfg.get("days") or 90))
            count = sum(1 for _, sev, at, _ in ctx.document_scores if is_high_or_above(sev) and at >= cutoff)
            return count > float(cfg.get("threshold") or 5)
        if code == "COMP_HIGH_RISK_RATIO":
            if ctx.total_invoice_count == 0:
                return False
            return ctx.high_risk_invoice_count / ctx.total_invoice_count > float(cfg.get("threshold") or 0.3)
        if code == "COMP_PEAK_DOCUMENT_RISK":
            return bool(ctx.document_scores) and ctx.max_document_score >= float(cfg.get("threshold") or 90)
        if code == "COMP_FREQUENT_DUPLICATES":
            return len(ctx.duplicate_external_ids) > float(cfg.get("threshold") or 3)
        if code == "COMP_BENFORDS_LAW_VIOLATION":
            return ctx.fraud.benfords_violation
        if code == "COMP_ROUND_NUMBERS":
            return ctx.fraud.round_number_suspicious
        if code == "COMP_UNUSUAL_TIMING":
            return ctx.fraud.unusual_timing
        if code == "COMP_HIGH_FRAUD_PATTERNS":
            return len(ctx.fraud.patterns) > float(cfg.get("threshold") or 3)
        return False

    # -------------------------
    # Shared
    # -------------------------

    def _fraud_signals(self, db: Session, tenant_id: str, client_company_id: int) -> FraudPatternResult:
        try:
            return self.fraud.detect(db, tenant_id, client_company_id)
        except Exception as e:
            log.exception("fraud pattern detection failed for company %s: %s", client_company_id, e)
            return FraudPatternResult()

    def _score(self, db: Session, tenant_id: str, triggered: List[RiskRule]) -> tuple:
        score = clamp_score(sum(float(r.weight or 0) for r in triggered))
        severity = severity_for_score(score, resolve_thresholds(db, tenant_id, self.config))
        codes = sorted(r.code for r in triggered)
        return score, severity, codes
