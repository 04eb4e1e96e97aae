import unittest
from unittest.mock import MagicMock

from _db import APITestCase, OTHER_TENANT, TENANT

from core.config import Settings
from queries.risk import get_rule_by_code
from services import container
from services.risk_alerts import RiskAlertService


class TestRiskRulesAPI(APITestCase):
    def test_list_and_override_rule(self):
        r = self.client.get("/risk/rules", headers=self.headers)
        self.assertEqual(r.status_code, 200)
        self.assertGreater(r.json()["meta"]["total"], 0)

        rule = get_rule_by_code(self.db, None, "INV_TOTAL_MISMATCH")
        r = self.client.put(f"/risk/rules/{rule.id}", json={"weight": 35}, headers=self.headers)
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["data"]["tenant_id"], TENANT)
        self.assertEqual(r.json()["data"]["weight"], 35)

    def test_create_rule_validation(self):
        r = self.client.post("/risk/rules", json={"scope": "document", "code": "MY_RULE", "weight": 10}, headers=self.headers)
        self.assertEqual(r.status_code, 201, r.text)

        r = self.client.post("/risk/rules", json={"scope": "document", "code": "MY_RULE", "weight": 10}, headers=self.headers)
        self.assertEqual(r.status_code, 422)

        r = self.client.post("/risk/rules", json={"scope": "tenant", "code": "X", "weight": 10}, headers=self.headers)
        self.assertEqual(r.status_code, 422)

        r = self.client.post("/risk/rules", json={"scope": "document", "code": "Y", "weight": 150}, headers=self.headers)
        self.assertEqual(r.status_code, 422)


class TestThresholdsAPI(APITestCase):
    def test_defaults_then_tenant_override(self):
        r = self.client.get("/risk/settings", headers=self.headers)
        self.assertEqual(r.json()["data"], {"medium": 40, "high": 70, "critical": 90})

        r = self.client.put("/risk/settings", json={"medium": 30, "high": 60, "critical": 80}, headers=self.headers)
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["data"], {"medium": 30, "high": 60, "critical": 80})

        r = self.client.get("/risk/settings", headers={"X-Tenant-ID": OTHER_TENANT})
        self.assertEqual(r.json()["data"], {"medium": 40, "high": 70, "critical": 90})

    def test_defaults_come_from_injected_settings(self):
        config = Settings(RISK_MEDIUM_THRESHOLD=25, RISK_HIGH_THRESHOLD=55, RISK_CRITICAL_THRESHOLD=85)
        self.app.dependency_overrides[container.get_settings] = lambda: config

        r = self.client.get("/risk/settings", headers=self.headers)
        self.assertEqual(r.json()["data"], {"medium": 25, "high": 55, "critical": 85})

    def test_unordered_thresholds_are_rejected(self):
        r = self.client.put("/risk/settings", json={"medium": 80, "high": 60, "critical": 90}, headers=self.headers)
        self.assertEqual(r.status_code, 422)


class TestScoringAPI(APITestCase):
    def setUp(self):
        super().setUp()
        self.company = self.make_company()

    def test_evaluate_company_without_documents(self):
        r = self.client.post(f"/risk/companies/{self.company.id}/evaluate", headers=self.headers)
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["data"]["score"], 0)
        self.assertEqual(r.json()["data"]["severity"], "low")

        r = self.client.get(f"/risk/companies/{self.company.id}/trend", headers=self.headers)
        self.assertEqual(len(r.json()["data"]["history"]), 1)

    def test_unknown_targets_are_404(self):
        self.assertEqual(self.client.post("/risk/companies/999/evaluate", headers=self.headers).status_code, 404)
        self.assertEqual(self.client.post("/risk/documents/999/evaluate", headers=self.headers).status_code, 404)
        self.assertEqual(self.client.get("/risk/companies/999/fraud-score", headers=self.headers).status_code, 404)

    def test_fraud_score_for_empty_company(self):
        r = self.client.get(f"/risk/companies/{self.company.id}/fraud-score", headers=self.headers)
        self.assertEqual(r.status_code, 200)
        data = r.json()["data"]
        self.assertEqual(data["overall_score"], 0)
        self.assertEqual(data["recommendations"], ["Not enough data"])

        r = self.client.post(f"/risk/companies/{self.company.id}/fraud-check", headers=self.headers)
        self.assertEqual(r.status_code, 200)

    def test_forecast_days_bounds(self):
        r = self.client.get("/risk/forecast", params={"days": 5}, headers=self.headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(len(r.json()["data"]["predicted_scores"]), 5)

        self.assertEqual(self.client.get("/risk/forecast", params={"days": 0}, headers=self.headers).status_code, 422)
        self.assertEqual(self.client.get("/risk/forecast", params={"days": 366}, headers=self.headers).status_code, 422)


class TestAlertsAndDashboardAPI(APITestCase):
    def setUp(self):
        super().setUp()
        self.company = self.make_company()
        self.alert = RiskAlertService().create_alert(
            self.db,
            tenant_id=TENANT,
            client_company_id=self.company.id,
            document_id=None,
            type="RISK_THRESHOLD_EXCEEDED",
            title="High-risk client company",
            message="score 75",
            severity="high",
        )

    def test_list_and_patch_alert(self):
        r = self.client.get("/risk/alerts", params={"status": "open"}, headers=self.headers)
        self.assertEqual(r.json()["meta"]["total"], 1)

        r = self.client.patch(
            f"/risk/alerts/{self.alert.id}", json={"status": "closed", "resolved_by": "auditor"}, headers=self.headers
        )
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["data"]["status"], "closed")
        self.assertIsNotNone(r.json()["data"]["resolved_at"])

        r = self.client.get("/risk/alerts", params={"status": "open"}, headers=self.headers)
        self.assertEqual(r.json()["meta"]["total"], 0)

    def test_alert_filters_are_validated(self):
        self.assertEqual(self.client.get("/risk/alerts", params={"severity": "urgent"}, headers=self.headers).status_code, 422)
        self.assertEqual(self.client.get("/risk/alerts", params={"page_size": 500}, headers=self.headers).status_code, 422)
        r = self.client.patch(f"/risk/alerts/{self.alert.id}", json={"status": "done"}, headers=self.headers)
        self.assertEqual(r.status_code, 422)

    def test_other_tenant_cannot_patch(self):
        r = self.client.patch(f"/risk/alerts/{self.alert.id}", json={"status": "closed"}, headers={"X-Tenant-ID": OTHER_TENANT})
        self.assertEqual(r.status_code, 404)

    def test_dashboard_is_cached_until_alert_changes(self):
        r = self.client.get("/dashboard/summary", headers=self.headers)
        body = r.json()
        self.assertFalse(body["meta"]["cached"])
        self.assertEqual(body["data"]["companies"], 1)
        self.assertEqual(body["data"]["open_alerts"]["high"], 1)

        r = self.client.get("/dashboard/summary", headers=self.headers)
        self.assertTrue(r.json()["meta"]["cached"])

        self.client.patch(f"/risk/alerts/{self.alert.id}", json={"status": "closed"}, headers=self.headers)

        r = self.client.get("/dashboard/summary", headers=self.headers)
        self.assertFalse(r.json()["meta"]["cached"])
        self.assertEqual(r.json()["data"]["open_alerts"]["high"], 0)

    def test_fraud_check_clears_dashboard_cache(self):
        self.client.get("/dashboard/summary", headers=self.headers)
        self.assertTrue(self.client.get("/dashboard/summary", headers=self.headers).json()["meta"]["cached"])

        r = self.client.post(f"/risk/companies/{self.company.id}/fraud-check", headers=self.headers)
        self.assertEqual(r.status_code, 200, r.text)

        r = self.client.get("/dashboard/summary", headers=self.headers)
        self.assertFalse(r.json()["meta"]["cached"])

    def test_dashboard_cache_is_per_tenant(self):
        self.client.get("/dashboard/summary", headers=self.headers)

        r = self.client.get("/dashboard/summary", headers={"X-Tenant-ID": OTHER_TENANT})
        self.assertFalse(r.json()["meta"]["cached"])
        self.assertEqual(r.json()["data"]["companies"], 0)


class TestSyncAPI(APITestCase):
    def test_manual_sync_runs_one_cycle(self):
        company = self.make_company()

        async def fake_cycle(db, tenant_id, client_company_id):
            return {"status": "ok", "tenant": tenant_id, "company": client_company_id}

        sync = MagicMock()
        sync.run_one_cycle = fake_cycle
        self.app.dependency_overrides[container.get_sync_service] = lambda: sync

        r = self.client.post("/sync/run", params={"client_company_id": company.id}, headers=self.headers)
        self.assertEqual(r.status_code, 200, r.text)
        data = r.json()["data"]
        self.assertEqual(data["status"], "ok")
        self.assertEqual(data["tenant"], TENANT)
        self.assertEqual(data["company"], company.id)
        self.assertIn("ttl_cache_cleared_keys", data)

    def test_company_id_is_required(self):
        self.assertEqual(self.client.post("/sync/run", headers=self.headers).status_code, 422)


if __name__ == "__main__":
    unittest.main()
