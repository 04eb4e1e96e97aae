"""
Process-wide service instances shared by the API and the background worker.
Controllers receive them through the get_* dependencies so tests can swap them
with app.dependency_overrides.
"""
from core.config import Settings, settings

from services.counterparty import CounterpartyAnalyzer
from services.document_jobs import DocumentJobService
from services.document_processor import DocumentProcessor
from services.document_service import DocumentService
from services.fraud_patterns import FraudPatternDetector
from services.invoice_service import InvoiceService
from services.ml_fraud import MLFraudDetector
from services.ocr import OCRService
from services.parser import DocumentParser
from services.ai_parser import AIParseClient
from services.risk_alerts import RiskAlertService
from services.risk_breakdown import RiskBreakdownService
from services.risk_calculation import RiskCalculationProcessor
from services.risk_engine import RiskRuleEngine
from services.risk_explanation import RiskExplanationService
from services.risk_features import RiskFeatureService
from services.risk_forecast import RiskForecastService
from services.risk_heatmap import RiskHeatmapService
from services.risk_recommendations import RiskRecommendationService
from services.risk_rules import RiskRuleService
from services.risk_trend import RiskTrendService
from services.scheduler import Scheduler
from services.storage import LocalStorage
from services.sync_service import SyncService


storage = LocalStorage(config=settings)
alerts = RiskAlertService()
rules = RiskRuleService()
trend = RiskTrendService()
counterparty = CounterpartyAnalyzer(alerts)

risk_engine = RiskRuleEngine(
    config=settings,
    rules=rules,
    fraud=FraudPatternDetector(settings),
    counterparty=counterparty,
    trend=trend,
)
risk_calculation = RiskCalculationProcessor(risk_engine, alerts)

ml_fraud = MLFraudDetector(settings, alerts)
forecast = RiskForecastService(settings)
breakdown = RiskBreakdownService(rules)
explanation = RiskExplanationService(rules)
heatmap = RiskHeatmapService(settings)
recommendations = RiskRecommendationService()

invoice_service = InvoiceService(counterparty, alerts)
document_service = DocumentService(storage)

document_processor = DocumentProcessor(
    storage=storage,
    ocr=OCRService(),
    parser=DocumentParser(AIParseClient(settings)),
    features=RiskFeatureService(),
    jobs=DocumentJobService(settings),
    risk_calculation=risk_calculation,
)

sync_service = SyncService(settings, invoices=invoice_service, risk_calculation=risk_calculation)
scheduler = Scheduler(document_processor, sync_service, settings)


# ---------------------------
# FastAPI dependencies
# ---------------------------

def get_document_service() -> DocumentService:
    return document_service


def get_document_processor() -> DocumentProcessor:
    return document_processor


def get_invoice_service() -> InvoiceService:
    return invoice_service


def get_rule_service() -> RiskRuleService:
    return rules


def get_alert_service() -> RiskAlertService:
    return alerts


def get_risk_calculation() -> RiskCalculationProcessor:
    return risk_calculation


def get_ml_fraud() -> MLFraudDetector:
    return ml_fraud


def get_forecast() -> RiskForecastService:
    return forecast


def get_trend() -> RiskTrendService:
    return trend


def get_breakdown() -> RiskBreakdownService:
    return breakdown


def get_explanation() -> RiskExplanationService:
    return explanation


def get_heatmap() -> RiskHeatmapService:
    return heatmap


def get_recommendations() -> RiskRecommendationService:
    return recommendations


def get_sync_service() -> SyncService:
    return sync_service


def get_settings() -> Settings:
    return settings
