from sqlalchemy import Boolean, Column, Integer, Float, String, DateTime, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from models.base import Base


class RiskRule(Base):
    __tablename__ = "risk_rules"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_risk_rule_tenant_code"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=True)  # NULL = global rule

    scope = Column(String(16), index=True, nullable=False)  # "document" | "company"
    code = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False, default="")
    weight = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, index=True, nullable=False, default=True)
    default_severity = Column(String(16), nullable=False, default="medium")
    config = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


class DocumentRiskScore(Base):
    __tablename__ = "document_risk_scores"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), unique=True, nullable=False)

    score = Column(Float, nullable=False, default=0.0)
    severity = Column(String(16), nullable=False, default="low")
    triggered_rule_codes = Column(JSON, nullable=False, default=list)

    generated_at = Column(DateTime, index=True, nullable=False)

    document = relationship("Document", back_populates="risk_score")


class ClientCompanyRiskScore(Base):
    __tablename__ = "client_company_risk_scores"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    client_company_id = Column(Integer, ForeignKey("client_companies.id"), index=True, nullable=False)

    score = Column(Float, nullable=False, default=0.0)
    severity = Column(String(16), nullable=False, default="low")
    triggered_rule_codes = Column(JSON, nullable=False, default=list)

    generated_at = Column(DateTime, index=True, nullable=False)


class RiskScoreHistory(Base):
    """Append-only log of every evaluation."""
    __tablename__ = "risk_score_history"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)

    entity_type = Column(String(16), index=True, nullable=False)  # "document" | "company"
    entity_id = Column(Integer, index=True, nullable=False)
    score = Column(Float, nullable=False)
    severity = Column(String(16), nullable=False)

    recorded_at = Column(DateTime, index=True, nullable=False)


class RiskAlert(Base):
    __tablename__ = "risk_alerts"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    client_company_id = Column(Integer, ForeignKey("client_companies.id"), index=True, nullable=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="SET NULL"), index=True, nullable=True)

    type = Column(String(64), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    severity = Column(String(16), nullable=False)
    status = Column(String(16), index=True, nullable=False, default="open")  # open | in_progress | closed | ignored

    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(128), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


class TenantRiskSettings(Base):
    __tablename__ = "tenant_risk_settings"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), unique=True, nullable=False)

    medium_threshold = Column(Float, nullable=False)
    high_threshold = Column(Float, nullable=False)
    critical_threshold = Column(Float, nullable=False)

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
