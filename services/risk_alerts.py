import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from core.errors import NotFoundError, ValidationError
from helpers import utcnow
from models.risk import RiskAlert
from queries.risk import find_open_alert, get_alert, query_alerts

log = logging.getLogger("risk.alerts")


ALERT_STATUSES = ("open", "in_progress", "closed", "ignored")
RESOLVED_STATUSES = ("closed", "ignored")


class RiskAlertService:
    def create_alert(
        self,
        db: Session,
        *,
        tenant_id: str,
        client_company_id: int | None,
        document_id: int | None,
        type: str,
        title: str,
        message: str,
        severity: str,
    ) -> RiskAlert:
        """
        One live alert per (tenant, company, document, type):
        while it is open or in progress it is refreshed, not duplicated.
        """
        existing = find_open_alert(
            db,
            tenant_id=tenant_id,
            client_company_id=client_company_id,
            document_id=document_id,
            type=type,
        )
        if existing:
            existing.message = message
            existing.severity = severity
            existing.updated_at = utcnow()
            db.commit()
            db.refresh(existing)
            return existing

        alert = RiskAlert(
            tenant_id=tenant_id,
            client_company_id=client_company_id,
            document_id=document_id,
            type=type,
            title=title,
            message=message,
            severity=severity,
            status="open",
        )
        db.add(alert)
        db.commit()
        db.refresh(alert)

        log.info("risk alert %s created (tenant=%s type=%s severity=%s)", alert.id, tenant_id, type, severity)
        return alert

    def list_alerts(
        self,
        db: Session,
        tenant_id: str,
        *,
        client_company_id: int | None = None,
        severity: str | None = None,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        q = query_alerts(db, tenant_id, client_company_id=client_company_id, severity=severity, status=status)
        total = q.count()
        rows = (
            q.order_by(RiskAlert.created_at.desc(), RiskAlert.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {"data": rows, "total": total, "page": page, "page_size": page_size}

    def update_status(
        self, db: Session, tenant_id: str, alert_id: int, status: str, resolved_by: str | None = None
    ) -> RiskAlert:
        if status not in ALERT_STATUSES:
            raise ValidationError(f"invalid alert status: {status}")

        alert = get_alert(db, tenant_id, alert_id)
        if not alert:
            raise NotFoundError(f"risk alert {alert_id} not found")

        alert.status = status
        if status in RESOLVED_STATUSES:
            alert.resolved_at = utcnow()
            alert.resolved_by = resolved_by
        else:
            alert.resolved_at = None
            alert.resolved_by = None

        db.commit()
        db.refresh(alert)
        return alert
