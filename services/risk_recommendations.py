import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from helpers import utcnow
from models.risk import RiskAlert
from queries.risk import OPEN_ALERT_STATUSES, list_company_scores, list_document_scores, list_history, query_alerts
from services.severity import is_high_or_above

log = logging.getLogger("risk.recommendations")


TREND_DAYS = 30
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}
TYPE_ORDER = {"urgent": 0, "preventive": 1, "optimization": 2}


@dataclass
class RiskCounts:
    critical_alerts: int = 0
    high_alerts: int = 0
    high_risk_companies: int = 0
    previous_high_risk_companies: int = 0
    high_risk_documents: int = 0

    @property
    def change_percent(self) -> float:
        if self.previous_high_risk_companies <= 0:
            return 0.0
        change = self.high_risk_companies - self.previous_high_risk_companies
        return change / self.previous_high_risk_companies * 100


def _item(id: str, type: str, priority: str, title: str, description: str, action_url: str, metric: str, impact: str):
    return {
        "id": id,
        "type": type,
        "priority": priority,
        "title": title,
        "description": description,
        "action_url": action_url,
        "related_metric": metric,
        "impact": impact,
    }


def build_recommendations(counts: RiskCounts) -> List[Dict[str, Any]]:
    """
    urgent: open critical alerts, high-risk companies
    preventive: rising high-risk companies (>15%), many high-risk documents (>10), many high alerts (>5)
    optimization: falling risk (< -10%), quiet tenant
    Sorted by priority, then type.
    """
    out: List[Dict[str, Any]] = []
    change = counts.change_percent

    if counts.critical_alerts > 0:
        out.append(
            _item(
                "urgent-critical-alerts",
                "urgent",
                "high",
                f"{counts.critical_alerts} critical alert(s) need immediate review",
                f"There are {counts.critical_alerts} open critical risk alerts.",
                "/risk/alerts?severity=critical&status=open",
                "open_critical_alerts",
                "Handling critical risks in time prevents serious problems.",
            )
        )

    if counts.high_risk_companies > 0:
        out.append(
            _item(
                "urgent-high-risk-clients",
                "urgent",
                "high" if counts.high_risk_companies > 5 else "medium",
                f"{counts.high_risk_companies} high-risk client(s) awaiting review",
                f"{counts.high_risk_companies} client companies are in the high risk band.",
                "/risk/heatmap",
                "high_risk_client_count",
                "Spotting high-risk clients early helps prevent issues.",
            )
        )

    if change > 15:
        delta = counts.high_risk_companies - counts.previous_high_risk_companies
        out.append(
            _item(
                "preventive-rising-risk",
                "preventive",
                "high",
                f"High-risk clients up {change:.1f}% - investigate",
                f"High-risk client count changed by {delta:+d} over the last {TREND_DAYS} days.",
                "/risk/forecast",
                "high_risk_client_count",
                "Rising risk trends can indicate systemic issues that need attention.",
            )
        )

    if counts.high_risk_documents > 10:
        out.append(
            _item(
                "preventive-high-risk-docs",
                "preventive",
                "medium",
                f"{counts.high_risk_documents} high-risk documents awaiting review",
                f"{counts.high_risk_documents} documents are in the high risk band.",
                "/risk/breakdown",
                "high_risk_document_count",
                "High-risk documents may contain errors or fraud indicators.",
            )
        )

    if counts.high_alerts > 5:
        out.append(
            _item(
                "preventive-multiple-alerts",
                "preventive",
                "medium",
                f"{counts.high_alerts} high alerts awaiting resolution",
                f"{counts.high_alerts} high severity risk alerts are open.",
                "/risk/alerts?severity=high&status=open",
                "open_high_alerts",
                "Addressing high alerts prevents escalation to critical issues.",
            )
        )

    if change < -10:
        out.append(
            _item(
                "optimization-improving-risk",
                "optimization",
                "low",
                f"High-risk clients down {abs(change):.1f}% - good progress",
                f"Risk has been falling over the last {TREND_DAYS} days.",
                "/risk/forecast",
                "high_risk_client_count",
                "Maintaining low risk levels improves overall business health.",
            )
        )

    if counts.critical_alerts == 0 and counts.high_risk_companies < 3:
        out.append(
            _item(
                "optimization-low-risk",
                "optimization",
                "low",
                "Risk level is low",
                "No critical alerts are open and few clients are high risk.",
                "/dashboard/summary",
                "overall_risk_level",
                "Proactive monitoring helps keep risk low.",
            )
        )

    return sorted(out, key=lambda r: (PRIORITY_ORDER[r["priority"]], TYPE_ORDER[r["type"]]))


class RiskRecommendationService:
    def collect_counts(self, db: Session, tenant_id: str) -> RiskCounts:
        open_alerts = query_alerts(db, tenant_id).filter(RiskAlert.status.in_(OPEN_ALERT_STATUSES)).all()

        # latest company history point at or before the cutoff
        cutoff = utcnow() - timedelta(days=TREND_DAYS)
        previous: Dict[int, str] = {}
        for row in list_history(db, tenant_id, "company"):
            if row.recorded_at <= cutoff:
                previous[row.entity_id] = row.severity

        return RiskCounts(
            critical_alerts=sum(1 for a in open_alerts if a.severity == "critical"),
            high_alerts=sum(1 for a in open_alerts if a.severity == "high"),
            high_risk_companies=sum(1 for s in list_company_scores(db, tenant_id) if is_high_or_above(s.severity)),
            previous_high_risk_companies=sum(1 for sev in previous.values() if is_high_or_above(sev)),
            high_risk_documents=sum(1 for s in list_document_scores(db, tenant_id) if is_high_or_above(s.severity)),
        )

    def recommendations(self, db: Session, tenant_id: str) -> List[Dict[str, Any]]:
        counts = self.collect_counts(db, tenant_id)
        log.info("recommendations tenant=%s counts=%s", tenant_id, counts)
        return build_recommendations(counts)
