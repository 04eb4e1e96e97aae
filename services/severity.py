from dataclasses import dataclass

from sqlalchemy.orm import Session

from core.config import Settings, settings
from queries.risk import get_tenant_settings


SEVERITIES = ("low", "medium", "high", "critical")
SEVERITY_RANK = {s: i for i, s in enumerate(SEVERITIES)}


@dataclass(frozen=True)
class SeverityThresholds:
    medium: float
    high: float
    critical: float

    @classmethod
    def from_config(cls, config: Settings) -> "SeverityThresholds":
        return cls(
            medium=float(config.RISK_MEDIUM_THRESHOLD),
            high=float(config.RISK_HIGH_THRESHOLD),
            critical=float(config.RISK_CRITICAL_THRESHOLD),
        )

    def as_dict(self) -> dict:
        return {"medium": self.medium, "high": self.high, "critical": self.critical}


def clamp_score(score: float) -> float:
    return max(0.0, min(100.0, float(score)))


def severity_for_score(score: float, thresholds: SeverityThresholds) -> str:
    """
    Single score -> severity mapping used by every scorer.
    """
    if score >= thresholds.critical:
        return "critical"
    elif score >= thresholds.high:
        return "high"
    elif score >= thresholds.medium:
        return "medium"
    else:
        return "low"


def is_high_or_above(severity: str) -> bool:
    return SEVERITY_RANK.get(severity, 0) >= SEVERITY_RANK["high"]


def resolve_thresholds(db: Session, tenant_id: str, config: Settings = settings) -> SeverityThresholds:
    """
    Tenant override row if present, otherwise the configured defaults.
    """
    row = get_tenant_settings(db, tenant_id)
    if row:
        return SeverityThresholds(
            medium=float(row.medium_threshold),
            high=float(row.high_threshold),
            critical=float(row.critical_threshold),
        )
    return SeverityThresholds.from_config(config)
