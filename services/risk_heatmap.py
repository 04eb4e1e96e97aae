from typing import Any, Dict

from sqlalchemy.orm import Session

from core.config import Settings, settings
from queries.companies import list_companies
from queries.documents import count_documents_by_company
from queries.risk import count_open_alerts_by_company, list_company_scores
from services.severity import SeverityThresholds, resolve_thresholds


LEVELS = ("low", "medium", "high")


def impact_for_alerts(alert_count: int) -> str:
    if alert_count >= 5:
        return "high"
    elif alert_count >= 2:
        return "medium"
    else:
        return "low"


def likelihood_for_score(score: float, thresholds: SeverityThresholds) -> str:
    # critical folds into high
    if score >= thresholds.high:
        return "high"
    elif score >= thresholds.medium:
        return "medium"
    else:
        return "low"


class RiskHeatmapService:
    def __init__(self, config: Settings = settings) -> None:
        self.config = config

    def heatmap(self, db: Session, tenant_id: str) -> Dict[str, Any]:
        """
        Scored companies with open alert and document counts, plus a
        likelihood (score) x impact (open alerts) matrix.
        """
        thresholds = resolve_thresholds(db, tenant_id, self.config)
        companies = {c.id: c for c in list_companies(db, tenant_id)}
        alerts = count_open_alerts_by_company(db, tenant_id)
        documents = count_documents_by_company(db, tenant_id)

        clients = []
        for row in list_company_scores(db, tenant_id):
            company = companies.get(row.client_company_id)
            if company is None:
                continue
            clients.append(
                {
                    "id": company.id,
                    "name": company.name,
                    "risk_score": float(row.score),
                    "severity": row.severity,
                    "alert_count": alerts.get(company.id, 0),
                    "document_count": documents.get(company.id, 0),
                }
            )

        matrix = {likelihood: {impact: 0 for impact in LEVELS} for likelihood in LEVELS}
        for c in clients:
            matrix[likelihood_for_score(c["risk_score"], thresholds)][impact_for_alerts(c["alert_count"])] += 1

        clients.sort(key=lambda c: (-c["risk_score"], c["id"]))
        average = sum(c["risk_score"] for c in clients) / len(clients) if clients else 0.0

        return {
            "clients": clients,
            "risk_matrix": matrix,
            "total_clients": len(clients),
            "average_risk_score": round(average, 2),
        }
