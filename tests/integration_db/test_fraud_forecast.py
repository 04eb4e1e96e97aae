import unittest
from datetime import timedelta
from unittest.mock import patch

from _db import DBTestCase, OTHER_TENANT, TENANT

from core.errors import NotFoundError
from helpers import utcnow
from models.risk import RiskAlert
from queries.risk import add_history
from services.ml_fraud import FraudScore, MLFraudDetector
from services.risk_forecast import RiskForecastService
from services.risk_trend import RiskTrendService


class TestMLFraudDetector(DBTestCase):
    def setUp(self):
        super().setUp()
        self.detector = MLFraudDetector()
        self.company = self.make_company()

    def _alerts(self):
        return self.db.query(RiskAlert).filter_by(type="ML_FRAUD_DETECTION").all()

    def test_company_without_recent_records_scores_zero(self):
        self.make_invoice(self.company, issue_date=utcnow() - timedelta(days=500))

        result = self.detector.calculate_fraud_score(self.db, TENANT, self.company.id)

        self.assertEqual(result.overall_score, 0)
        self.assertEqual(result.recommendations, ["Not enough data"])

    def test_recent_records_are_scored(self):
        now = utcnow()
        for i in range(12):
            self.make_invoice(self.company, external_id=f"INV-{i}", issue_date=now - timedelta(days=3 * i + 1), total_amount=100 + 10 * i)

        result = self.detector.calculate_fraud_score(self.db, TENANT, self.company.id)

        self.assertGreater(result.confidence, 0.0)
        self.assertGreaterEqual(result.overall_score, 0)
        self.assertLessEqual(result.overall_score, 100)

    def test_unknown_company_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self.detector.calculate_fraud_score(self.db, OTHER_TENANT, self.company.id)

    def test_alert_severity_follows_score(self):
        cases = [(30, None), (55, "medium"), (85, "high")]
        for score, expected in cases:
            with self.subTest(score=score):
                fake = FraudScore(overall_score=score, confidence=0.5, recommendations=["Review invoices"])
                with patch.object(MLFraudDetector, "calculate_fraud_score", return_value=fake):
                    result = self.detector.check_and_alert_fraud(self.db, TENANT, self.company.id)

                self.assertEqual(result.overall_score, score)
                alerts = self._alerts()
                if expected is None:
                    self.assertEqual(alerts, [])
                else:
                    self.assertEqual(len(alerts), 1)
                    self.assertEqual(alerts[0].severity, expected)
                    self.assertIn(f"{score}/100", alerts[0].message)


class TestForecastAndTrend(DBTestCase):
    def setUp(self):
        super().setUp()
        self.company = self.make_company()
        self.other = self.make_company(name="Beta Ltd")

    def _history(self, entity_type: str, entity_id: int, scores, tenant_id: str = TENANT, days_back: int | None = None):
        start = utcnow() - timedelta(days=days_back if days_back is not None else len(scores))
        for i, score in enumerate(scores):
            add_history(
                self.db,
                tenant_id=tenant_id,
                entity_type=entity_type,
                entity_id=entity_id,
                score=score,
                severity="low",
                recorded_at=start + timedelta(days=i),
            )

    def test_forecast_follows_rising_company_scores(self):
        self._history("company", self.company.id, [10 + 5 * i for i in range(10)])

        result = RiskForecastService().get_forecast(self.db, TENANT, days=7)

        values = [p["predicted_score"] for p in result["predicted_scores"]]
        self.assertEqual(len(values), 7)
        self.assertEqual(values, sorted(values))
        self.assertGreater(values[-1], 55)
        self.assertEqual(result["risk_velocity"]["current"], 30.0)

    def test_forecast_averages_companies_per_day(self):
        self._history("company", self.company.id, [20, 20, 20])
        self._history("company", self.other.id, [40, 40, 40])

        result = RiskForecastService().get_forecast(self.db, TENANT, days=2)

        self.assertEqual([p["predicted_score"] for p in result["predicted_scores"]], [30.0, 30.0])

    def test_forecast_ignores_other_tenants_and_old_history(self):
        self._history("company", self.company.id, [90, 90, 90], tenant_id=OTHER_TENANT)
        self._history("company", self.company.id, [80, 80, 80], days_back=200)

        result = RiskForecastService().get_forecast(self.db, TENANT, days=1)

        self.assertEqual(result["predicted_scores"][0]["predicted_score"], 50.0)

    def test_company_trend(self):
        self._history("company", self.company.id, [20, 22, 40])

        trend = RiskTrendService().company_trend(self.db, TENANT, self.company.id)

        self.assertEqual(len(trend["history"]), 3)
        self.assertEqual(trend["current"], 40)
        self.assertEqual(trend["previous"], 22)
        self.assertEqual(trend["trend"], "increasing")
        self.assertEqual(trend["min"], 20)
        self.assertEqual(trend["max"], 40)

    def test_small_moves_are_stable(self):
        self._history("company", self.company.id, [40, 43])

        trend = RiskTrendService().company_trend(self.db, TENANT, self.company.id)

        self.assertEqual(trend["trend"], "stable")

    def test_trend_for_unknown_document_is_not_found(self):
        with self.assertRaises(NotFoundError):
            RiskTrendService().document_trend(self.db, TENANT, 12345)


if __name__ == "__main__":
    unittest.main()
