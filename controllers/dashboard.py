from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from core.config import settings
from core.tenancy import get_tenant_id
from db.session import get_db
from helpers import cache_get, cache_set, tenant_prefix
from queries.companies import list_companies
from queries.documents import list_documents
from queries.invoices import count_invoices
from models.risk import RiskAlert
from queries.risk import OPEN_ALERT_STATUSES, list_company_scores, list_document_scores, query_alerts
from schemas.responses import ApiResponse
from services.severity import SEVERITIES

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def _by_severity(rows) -> dict:
    counts = {s: 0 for s in SEVERITIES}
    for r in rows:
        counts[r.severity] = counts.get(r.severity, 0) + 1
    return counts


@router.get("/summary", response_model=ApiResponse[dict])
def dashboard_summary(
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    """
    Dashboard summary (DB-driven):
    - document / company scores by severity
    - open alerts by severity
    - document processing statuses
    Uses TTL cache to avoid recomputing often.
    """
    cache = request.app.state.ttl_cache
    cache_key = f"{tenant_prefix(tenant_id)}summary"
    cached = cache_get(cache, cache_key)
    if cached is not None:
        return ApiResponse(data=cached, meta={"cached": True})

    open_alerts = query_alerts(db, tenant_id).filter(RiskAlert.status.in_(OPEN_ALERT_STATUSES)).all()

    statuses: dict[str, int] = {}
    for doc in list_documents(db, tenant_id, limit=100_000):
        statuses[doc.status] = statuses.get(doc.status, 0) + 1

    data = {
        "companies": len(list_companies(db, tenant_id)),
        "invoices": count_invoices(db, tenant_id),
        "documents_by_status": statuses,
        "document_scores": _by_severity(list_document_scores(db, tenant_id)),
        "company_scores": _by_severity(list_company_scores(db, tenant_id)),
        "open_alerts": _by_severity(open_alerts),
    }

    cache_set(cache, cache_key, data, ttl_seconds=settings.DASHBOARD_TTL_SECONDS)
    return ApiResponse(data=data, meta={"cached": False})
