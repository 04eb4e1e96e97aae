import logging

from sqlalchemy.orm import Session

from models.risk import ClientCompanyRiskScore, DocumentRiskScore
from queries.documents import get_document
from services.risk_alerts import RiskAlertService
from services.risk_engine import RiskRuleEngine
from services.severity import is_high_or_above

log = logging.getLogger("risk.calculation")


ALERT_TYPE = "RISK_THRESHOLD_EXCEEDED"


class RiskCalculationProcessor:
    """
    Evaluate an entity and raise an alert when it lands at high or above.
    The API and the document worker share this one entry point.
    """

    def __init__(self, engine: RiskRuleEngine, alerts: RiskAlertService) -> None:
        self.engine = engine
        self.alerts = alerts

    def calculate_document(self, db: Session, tenant_id: str, document_id: int) -> DocumentRiskScore:
        score = self.engine.evaluate_document(db, tenant_id, document_id)

        if is_high_or_above(score.severity):
            document = get_document(db, tenant_id, document_id)
            self._alert(
                db,
                tenant_id=tenant_id,
                client_company_id=document.client_company_id if document else None,
                document_id=document_id,
                title="High-risk document",
                message=(
                    f"Document {document_id} scored {score.score:.0f} ({score.severity}); "
                    f"rules: {', '.join(score.triggered_rule_codes or []) or '-'}"
                ),
                severity=score.severity,
            )
        return score

    def calculate_company(self, db: Session, tenant_id: str, client_company_id: int) -> ClientCompanyRiskScore:
        score = self.engine.evaluate_company(db, tenant_id, client_company_id)

        if is_high_or_above(score.severity):
            self._alert(
                db,
                tenant_id=tenant_id,
                client_company_id=client_company_id,
                document_id=None,
                title="High-risk client company",
                message=(
                    f"Company {client_company_id} scored {score.score:.0f} ({score.severity}); "
                    f"rules: {', '.join(score.triggered_rule_codes or []) or '-'}"
                ),
                severity=score.severity,
            )
        return score

    def _alert(self, db: Session, **kwargs) -> None:
        try:
            self.alerts.create_alert(db, type=ALERT_TYPE, **kwargs)
        except Exception as e:
            db.rollback()
            log.exception("failed creating %s alert: %s", ALERT_TYPE, e)
