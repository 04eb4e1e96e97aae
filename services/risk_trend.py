import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from helpers import utcnow
from queries.companies import require_company
from queries.documents import get_document
from queries.risk import add_history, list_history
from core.errors import NotFoundError

log = logging.getLogger("risk.trend")


STABLE_BAND = 5.0


class RiskTrendService:
    def store_history(
        self, db: Session, tenant_id: str, entity_type: str, entity_id: int, score: float, severity: str
    ) -> None:
        """
        Append-only; a failed write is logged and never breaks scoring.
        """
        try:
            add_history(
                db,
                tenant_id=tenant_id,
                entity_type=entity_type,
                entity_id=entity_id,
                score=score,
                severity=severity,
                recorded_at=utcnow(),
            )
        except Exception as e:
            db.rollback()
            log.exception("failed storing %s history for %s: %s", entity_type, entity_id, e)

    def document_trend(self, db: Session, tenant_id: str, document_id: int, limit: int = 100) -> Dict[str, Any]:
        if not get_document(db, tenant_id, document_id):
            raise NotFoundError(f"document {document_id} not found")
        return self._trend(db, tenant_id, "document", document_id, limit)

    def company_trend(self, db: Session, tenant_id: str, company_id: int, limit: int = 100) -> Dict[str, Any]:
        require_company(db, tenant_id, company_id)
        return self._trend(db, tenant_id, "company", company_id, limit)

    def _trend(self, db: Session, tenant_id: str, entity_type: str, entity_id: int, limit: int) -> Dict[str, Any]:
        rows = list_history(db, tenant_id, entity_type, entity_id)[-limit:]
        history = [
            {"score": r.score, "severity": r.severity, "recorded_at": r.recorded_at.isoformat()}
            for r in rows
        ]
        scores = [float(r.score) for r in rows]

        current = scores[-1] if scores else None
        previous = scores[-2] if len(scores) > 1 else None

        trend = "stable"
        if current is not None and previous is not None:
            if current - previous > STABLE_BAND:
                trend = "increasing"
            elif previous - current > STABLE_BAND:
                trend = "decreasing"

        return {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "history": history,
            "current": current,
            "previous": previous,
            "trend": trend,
            "average": round(sum(scores) / len(scores), 2) if scores else None,
            "min": min(scores) if scores else None,
            "max": max(scores) if scores else None,
        }
