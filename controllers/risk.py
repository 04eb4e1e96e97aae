from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from core.config import Settings
from core.tenancy import get_tenant_id
from db.session import get_db
from helpers import clear_tenant_cache
from queries.risk import upsert_tenant_settings
from schemas.responses import ApiResponse
from schemas.risk import (
    AlertOut,
    AlertStatusIn,
    ForecastOut,
    FraudScoreOut,
    RecommendationOut,
    RiskBreakdownOut,
    RiskExplanationOut,
    RiskHeatmapOut,
    RiskRuleIn,
    RiskRuleOut,
    RiskRuleUpdate,
    ScoreOut,
    ThresholdsIn,
    TrendOut,
)
from services.container import (
    get_alert_service,
    get_breakdown,
    get_explanation,
    get_forecast,
    get_heatmap,
    get_ml_fraud,
    get_recommendations,
    get_risk_calculation,
    get_rule_service,
    get_settings,
    get_trend,
)
from services.ml_fraud import MLFraudDetector
from services.risk_alerts import RiskAlertService
from services.risk_breakdown import RiskBreakdownService
from services.risk_calculation import RiskCalculationProcessor
from services.risk_explanation import RiskExplanationService
from services.risk_forecast import RiskForecastService
from services.risk_heatmap import RiskHeatmapService
from services.risk_recommendations import RiskRecommendationService
from services.risk_rules import RiskRuleService
from services.risk_trend import RiskTrendService
from services.severity import SEVERITIES, resolve_thresholds

router = APIRouter(prefix="/risk", tags=["risk"])


# -------------------------
# Rules
# -------------------------

@router.get("/rules", response_model=ApiResponse[list[RiskRuleOut]])
def get_rules(
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    rules: RiskRuleService = Depends(get_rule_service),
):
    """
    Global rules plus this tenant's own rules and overrides.
    """
    rows = rules.list_rules(db, tenant_id)
    return ApiResponse(data=[RiskRuleOut.model_validate(r) for r in rows], meta={"total": len(rows)})


@router.post("/rules", response_model=ApiResponse[RiskRuleOut], status_code=201)
def create_rule(
    body: RiskRuleIn,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    rules: RiskRuleService = Depends(get_rule_service),
):
    return ApiResponse(data=RiskRuleOut.model_validate(rules.create_rule(db, tenant_id, body.model_dump())))


@router.put("/rules/{rule_id}", response_model=ApiResponse[RiskRuleOut])
def update_rule(
    rule_id: int,
    body: RiskRuleUpdate,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    rules: RiskRuleService = Depends(get_rule_service),
):
    rule = rules.update_rule(db, tenant_id, rule_id, body.model_dump(exclude_unset=True))
    return ApiResponse(data=RiskRuleOut.model_validate(rule))


# -------------------------
# Tenant thresholds
# -------------------------

@router.get("/settings", response_model=ApiResponse[dict])
def get_thresholds(
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    return ApiResponse(data=resolve_thresholds(db, tenant_id, config).as_dict())


@router.put("/settings", response_model=ApiResponse[dict])
def put_thresholds(
    body: ThresholdsIn,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    """
    New thresholds apply to the next evaluation; stored scores are not rewritten.
    """
    upsert_tenant_settings(db, tenant_id, medium=body.medium, high=body.high, critical=body.critical)
    clear_tenant_cache(request, tenant_id)
    return ApiResponse(data=resolve_thresholds(db, tenant_id, config).as_dict())


# -------------------------
# Scoring
# -------------------------

@router.post("/documents/{document_id}/evaluate", response_model=ApiResponse[ScoreOut])
def evaluate_document(
    document_id: int,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    calculation: RiskCalculationProcessor = Depends(get_risk_calculation),
):
    score = calculation.calculate_document(db, tenant_id, document_id)
    clear_tenant_cache(request, tenant_id)
    return ApiResponse(data=ScoreOut.model_validate(score))


@router.post("/companies/{company_id}/evaluate", response_model=ApiResponse[ScoreOut])
def evaluate_company(
    company_id: int,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    calculation: RiskCalculationProcessor = Depends(get_risk_calculation),
):
    score = calculation.calculate_company(db, tenant_id, company_id)
    clear_tenant_cache(request, tenant_id)
    return ApiResponse(data=ScoreOut.model_validate(score))


@router.get("/companies/{company_id}/fraud-score", response_model=ApiResponse[FraudScoreOut])
def fraud_score(
    company_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    detector: MLFraudDetector = Depends(get_ml_fraud),
):
    result = detector.calculate_fraud_score(db, tenant_id, company_id)
    return ApiResponse(data=FraudScoreOut(**result.as_dict()))


@router.post("/companies/{company_id}/fraud-check", response_model=ApiResponse[FraudScoreOut])
def fraud_check(
    company_id: int,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    detector: MLFraudDetector = Depends(get_ml_fraud),
):
    """
    Score the company and raise an ML_FRAUD_DETECTION alert above the threshold.
    """
    result = detector.check_and_alert_fraud(db, tenant_id, company_id)
    clear_tenant_cache(request, tenant_id)
    return ApiResponse(data=FraudScoreOut(**result.as_dict()))


@router.get("/forecast", response_model=ApiResponse[ForecastOut])
def forecast(
    days: int = Query(30, ge=1, le=365),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    service: RiskForecastService = Depends(get_forecast),
):
    return ApiResponse(data=ForecastOut(**service.get_forecast(db, tenant_id, days)), meta={"days": days})


# -------------------------
# Trends
# -------------------------

@router.get("/companies/{company_id}/trend", response_model=ApiResponse[TrendOut])
def company_trend(
    company_id: int,
    limit: int = Query(100, ge=1, le=1000),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    trend: RiskTrendService = Depends(get_trend),
):
    return ApiResponse(data=TrendOut(**trend.company_trend(db, tenant_id, company_id, limit)))


@router.get("/documents/{document_id}/trend", response_model=ApiResponse[TrendOut])
def document_trend(
    document_id: int,
    limit: int = Query(100, ge=1, le=1000),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    trend: RiskTrendService = Depends(get_trend),
):
    return ApiResponse(data=TrendOut(**trend.document_trend(db, tenant_id, document_id, limit)))


# -------------------------
# Analytics
# -------------------------

@router.get("/breakdown", response_model=ApiResponse[RiskBreakdownOut])
def breakdown(
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    service: RiskBreakdownService = Depends(get_breakdown),
):
    return ApiResponse(data=RiskBreakdownOut(**service.tenant_breakdown(db, tenant_id)))


@router.get("/heatmap", response_model=ApiResponse[RiskHeatmapOut])
def heatmap(
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    service: RiskHeatmapService = Depends(get_heatmap),
):
    return ApiResponse(data=RiskHeatmapOut(**service.heatmap(db, tenant_id)))


@router.get("/recommendations", response_model=ApiResponse[list[RecommendationOut]])
def recommendations(
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    service: RiskRecommendationService = Depends(get_recommendations),
):
    rows = service.recommendations(db, tenant_id)
    return ApiResponse(data=[RecommendationOut(**r) for r in rows], meta={"count": len(rows)})


@router.get("/documents/{document_id}/explanation", response_model=ApiResponse[RiskExplanationOut])
def document_explanation(
    document_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    service: RiskExplanationService = Depends(get_explanation),
):
    return ApiResponse(data=RiskExplanationOut(**service.explain_document(db, tenant_id, document_id)))


@router.get("/companies/{company_id}/explanation", response_model=ApiResponse[RiskExplanationOut])
def company_explanation(
    company_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    service: RiskExplanationService = Depends(get_explanation),
):
    return ApiResponse(data=RiskExplanationOut(**service.explain_company(db, tenant_id, company_id)))


# -------------------------
# Alerts
# -------------------------

@router.get("/alerts", response_model=ApiResponse[list[AlertOut]])
def get_alerts(
    client_company_id: int | None = Query(None),
    severity: str | None = Query(None, pattern="^(" + "|".join(SEVERITIES) + ")$"),
    status: str | None = Query(None, pattern="^(open|in_progress|closed|ignored)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    alerts: RiskAlertService = Depends(get_alert_service),
):
    res = alerts.list_alerts(
        db,
        tenant_id,
        client_company_id=client_company_id,
        severity=severity,
        status=status,
        page=page,
        page_size=page_size,
    )
    return ApiResponse(
        data=[AlertOut.model_validate(a) for a in res["data"]],
        meta={"total": res["total"], "page": res["page"], "page_size": res["page_size"]},
    )


@router.patch("/alerts/{alert_id}", response_model=ApiResponse[AlertOut])
def patch_alert(
    alert_id: int,
    body: AlertStatusIn,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    alerts: RiskAlertService = Depends(get_alert_service),
):
    alert = alerts.update_status(db, tenant_id, alert_id, body.status, body.resolved_by)
    clear_tenant_cache(request, tenant_id)
    return ApiResponse(data=AlertOut.model_validate(alert))
