from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.document import Document
from models.risk import (
    ClientCompanyRiskScore,
    DocumentRiskScore,
    RiskAlert,
    RiskRule,
    RiskScoreHistory,
    TenantRiskSettings,
)


OPEN_ALERT_STATUSES = ("open", "in_progress")


# ---------------------------
# Rules
# ---------------------------

def list_rules_for_tenant(db: Session, tenant_id: str, active_only: bool = False) -> list[RiskRule]:
    """
    Global rules (tenant_id NULL) plus the tenant's own rules.
    """
    q = db.query(RiskRule).filter((RiskRule.tenant_id.is_(None)) | (RiskRule.tenant_id == tenant_id))
    if active_only:
        q = q.filter(RiskRule.is_active.is_(True))
    return q.order_by(RiskRule.scope, RiskRule.code, RiskRule.id).all()


def get_rule(db: Session, rule_id: int) -> RiskRule | None:
    return db.query(RiskRule).filter(RiskRule.id == rule_id).first()


def get_rule_by_code(db: Session, tenant_id: str | None, code: str) -> RiskRule | None:
    q = db.query(RiskRule).filter(RiskRule.code == code)
    if tenant_id is None:
        q = q.filter(RiskRule.tenant_id.is_(None))
    else:
        q = q.filter(RiskRule.tenant_id == tenant_id)
    return q.first()


# ---------------------------
# Scores
# ---------------------------

def upsert_document_score(
    db: Session,
    *,
    tenant_id: str,
    document_id: int,
    score: float,
    severity: str,
    triggered_rule_codes: list[str],
    generated_at: datetime,
) -> DocumentRiskScore:
    row = db.query(DocumentRiskScore).filter(DocumentRiskScore.document_id == document_id).first()
    if not row:
        row = DocumentRiskScore(tenant_id=tenant_id, document_id=document_id)
        db.add(row)

    row.score = score
    row.severity = severity
    row.triggered_rule_codes = triggered_rule_codes
    row.generated_at = generated_at

    db.commit()
    db.refresh(row)
    return row


def upsert_company_score(
    db: Session,
    *,
    tenant_id: str,
    client_company_id: int,
    score: float,
    severity: str,
    triggered_rule_codes: list[str],
    generated_at: datetime,
) -> ClientCompanyRiskScore:
    row = get_latest_company_score(db, tenant_id, client_company_id)
    if not row:
        row = ClientCompanyRiskScore(tenant_id=tenant_id, client_company_id=client_company_id)
        db.add(row)

    row.score = score
    row.severity = severity
    row.triggered_rule_codes = triggered_rule_codes
    row.generated_at = generated_at

    db.commit()
    db.refresh(row)
    return row


def get_latest_company_score(db: Session, tenant_id: str, client_company_id: int) -> ClientCompanyRiskScore | None:
    return (
        db.query(ClientCompanyRiskScore)
        .filter(
            ClientCompanyRiskScore.tenant_id == tenant_id,
            ClientCompanyRiskScore.client_company_id == client_company_id,
        )
        .order_by(ClientCompanyRiskScore.generated_at.desc())
        .first()
    )


def list_company_document_scores(
    db: Session, tenant_id: str, client_company_id: int, since: datetime
) -> list[tuple[DocumentRiskScore, Document]]:
    return (
        db.query(DocumentRiskScore, Document)
        .join(Document, Document.id == DocumentRiskScore.document_id)
        .filter(
            DocumentRiskScore.tenant_id == tenant_id,
            Document.client_company_id == client_company_id,
            Document.is_deleted.is_(False),
            DocumentRiskScore.generated_at >= since,
        )
        .all()
    )


def list_document_scores(db: Session, tenant_id: str) -> list[DocumentRiskScore]:
    return (
        db.query(DocumentRiskScore)
        .join(Document, Document.id == DocumentRiskScore.document_id)
        .filter(DocumentRiskScore.tenant_id == tenant_id, Document.is_deleted.is_(False))
        .all()
    )


def list_company_scores(db: Session, tenant_id: str) -> list[ClientCompanyRiskScore]:
    return db.query(ClientCompanyRiskScore).filter(ClientCompanyRiskScore.tenant_id == tenant_id).all()


# ---------------------------
# History
# ---------------------------

def add_history(
    db: Session, *, tenant_id: str, entity_type: str, entity_id: int, score: float, severity: str, recorded_at: datetime
) -> RiskScoreHistory:
    row = RiskScoreHistory(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        score=score,
        severity=severity,
        recorded_at=recorded_at,
    )
    db.add(row)
    db.commit()
    return row


def list_history(
    db: Session,
    tenant_id: str,
    entity_type: str,
    entity_id: int | None = None,
    since: datetime | None = None,
    limit: int | None = None,
) -> list[RiskScoreHistory]:
    q = db.query(RiskScoreHistory).filter(
        RiskScoreHistory.tenant_id == tenant_id,
        RiskScoreHistory.entity_type == entity_type,
    )
    if entity_id is not None:
        q = q.filter(RiskScoreHistory.entity_id == entity_id)
    if since is not None:
        q = q.filter(RiskScoreHistory.recorded_at >= since)
    q = q.order_by(RiskScoreHistory.recorded_at.asc(), RiskScoreHistory.id.asc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


# ---------------------------
# Alerts
# ---------------------------

def find_open_alert(
    db: Session, *, tenant_id: str, client_company_id: int | None, document_id: int | None, type: str
) -> RiskAlert | None:
    q = db.query(RiskAlert).filter(
        RiskAlert.tenant_id == tenant_id,
        RiskAlert.type == type,
        RiskAlert.status.in_(OPEN_ALERT_STATUSES),
    )
    q = q.filter(RiskAlert.client_company_id.is_(None) if client_company_id is None else RiskAlert.client_company_id == client_company_id)
    q = q.filter(RiskAlert.document_id.is_(None) if document_id is None else RiskAlert.document_id == document_id)
    return q.order_by(RiskAlert.id.desc()).first()


def count_open_alerts_by_company(db: Session, tenant_id: str) -> dict[int, int]:
    rows = (
        db.query(RiskAlert.client_company_id, func.count(RiskAlert.id))
        .filter(
            RiskAlert.tenant_id == tenant_id,
            RiskAlert.client_company_id.isnot(None),
            RiskAlert.status.in_(OPEN_ALERT_STATUSES),
        )
        .group_by(RiskAlert.client_company_id)
        .all()
    )
    return {company_id: count for company_id, count in rows}


def get_alert(db: Session, tenant_id: str, alert_id: int) -> RiskAlert | None:
    return db.query(RiskAlert).filter(RiskAlert.tenant_id == tenant_id, RiskAlert.id == alert_id).first()


def query_alerts(
    db: Session,
    tenant_id: str,
    client_company_id: int | None = None,
    severity: str | None = None,
    status: str | None = None,
):
    q = db.query(RiskAlert).filter(RiskAlert.tenant_id == tenant_id)
    if client_company_id is not None:
        q = q.filter(RiskAlert.client_company_id == client_company_id)
    if severity:
        q = q.filter(RiskAlert.severity == severity)
    if status:
        q = q.filter(RiskAlert.status == status)
    return q


# ---------------------------
# Tenant settings
# ---------------------------

def get_tenant_settings(db: Session, tenant_id: str) -> TenantRiskSettings | None:
    return db.query(TenantRiskSettings).filter(TenantRiskSettings.tenant_id == tenant_id).first()


def upsert_tenant_settings(
    db: Session, tenant_id: str, *, medium: float, high: float, critical: float
) -> TenantRiskSettings:
    row = get_tenant_settings(db, tenant_id)
    if not row:
        row = TenantRiskSettings(tenant_id=tenant_id)
        db.add(row)
    row.medium_threshold = medium
    row.high_threshold = high
    row.critical_threshold = critical
    db.commit()
    db.refresh(row)
    return row
