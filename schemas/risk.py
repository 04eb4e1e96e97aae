from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, List, Literal, Optional


Severity = Literal["low", "medium", "high", "critical"]


class RiskRuleIn(BaseModel):
    scope: Literal["document", "company"]
    code: str = Field(min_length=1, max_length=100)
    description: str = ""
    weight: float = Field(ge=0, le=100)
    is_active: bool = True
    default_severity: Severity = "medium"
    config: Dict[str, Any] = {}


class RiskRuleUpdate(BaseModel):
    description: Optional[str] = None
    weight: Optional[float] = Field(default=None, ge=0, le=100)
    is_active: Optional[bool] = None
    default_severity: Optional[Severity] = None
    config: Optional[Dict[str, Any]] = None


class RiskRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: Optional[str] = None
    scope: str
    code: str
    description: str
    weight: float
    is_active: bool
    default_severity: str
    config: Dict[str, Any] = {}


class ThresholdsIn(BaseModel):
    medium: float = Field(ge=0, le=100)
    high: float = Field(ge=0, le=100)
    critical: float = Field(ge=0, le=100)

    @model_validator(mode="after")
    def ordered(self):
        if not (self.medium <= self.high <= self.critical):
            raise ValueError("thresholds must satisfy medium <= high <= critical")
        return self


class ScoreOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    score: float
    severity: str
    triggered_rule_codes: List[str] = []
    generated_at: datetime


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_company_id: Optional[int] = None
    document_id: Optional[int] = None
    type: str
    title: str
    message: str
    severity: str
    status: str
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    created_at: Optional[datetime] = None


class AlertStatusIn(BaseModel):
    status: Literal["open", "in_progress", "closed", "ignored"]
    resolved_by: Optional[str] = None


class FraudFactorOut(BaseModel):
    name: str
    contribution: float
    severity: str


class FraudPatternOut(BaseModel):
    type: str
    description: str
    severity: str
    confidence: float


class FraudScoreOut(BaseModel):
    overall_score: int
    confidence: float
    factors: List[FraudFactorOut] = []
    patterns: List[FraudPatternOut] = []
    recommendations: List[str] = []


class PredictedScoreOut(BaseModel):
    date: str
    predicted_score: float
    confidence: float


class EarlyWarningOut(BaseModel):
    type: str
    severity: str
    message: str


class RiskVelocityOut(BaseModel):
    current: float
    predicted: float
    trend: Literal["accelerating", "decelerating", "stable"]


class ForecastOut(BaseModel):
    predicted_scores: List[PredictedScoreOut] = []
    early_warnings: List[EarlyWarningOut] = []
    risk_velocity: RiskVelocityOut


class TrendPointOut(BaseModel):
    score: float
    severity: str
    recorded_at: str


class TrendOut(BaseModel):
    entity_type: str
    entity_id: int
    history: List[TrendPointOut] = []
    current: Optional[float] = None
    previous: Optional[float] = None
    trend: Literal["increasing", "decreasing", "stable"]
    average: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None


class CategoryScoreOut(BaseModel):
    score: float
    percentage: float


class RiskFactorOut(BaseModel):
    name: str
    rule_code: str
    contribution: float
    severity: str


class TriggeredRuleOut(BaseModel):
    code: str
    description: str
    weight: float
    severity: str
    count: int


class RiskBreakdownOut(BaseModel):
    total_risk_score: float
    category_breakdown: Dict[str, CategoryScoreOut]
    top_risk_factors: List[RiskFactorOut] = []
    triggered_rules: List[TriggeredRuleOut] = []


class ContributingFactorOut(BaseModel):
    rule_code: str
    description: str
    weight: float
    triggered: bool


class RiskExplanationOut(BaseModel):
    score: float
    severity: str
    contributing_factors: List[ContributingFactorOut] = []
    summary: str
    recommendations: List[str] = []


class HeatmapClientOut(BaseModel):
    id: int
    name: str
    risk_score: float
    severity: str
    alert_count: int
    document_count: int


class RiskHeatmapOut(BaseModel):
    clients: List[HeatmapClientOut] = []
    # likelihood -> impact -> company count
    risk_matrix: Dict[str, Dict[str, int]]
    total_clients: int
    average_risk_score: float


class RecommendationOut(BaseModel):
    id: str
    type: Literal["urgent", "preventive", "optimization"]
    priority: Literal["high", "medium", "low"]
    title: str
    description: str
    action_url: str
    related_metric: str
    impact: str
