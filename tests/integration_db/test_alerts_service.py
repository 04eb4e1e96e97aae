import unittest

from _db import DBTestCase, OTHER_TENANT, TENANT

from core.errors import NotFoundError, ValidationError
from models.risk import RiskAlert
from services.risk_alerts import RiskAlertService


class TestRiskAlertService(DBTestCase):
    def setUp(self):
        super().setUp()
        self.service = RiskAlertService()
        self.company = self.make_company()

    def _create(self, tenant_id: str = TENANT, type: str = "RISK_THRESHOLD_EXCEEDED", severity: str = "high", **kw):
        return self.service.create_alert(
            self.db,
            tenant_id=tenant_id,
            client_company_id=kw.get("client_company_id", self.company.id),
            document_id=kw.get("document_id"),
            type=type,
            title="Alert",
            message=kw.get("message", "score 75"),
            severity=severity,
        )

    def test_open_alert_is_refreshed_not_duplicated(self):
        first = self._create(message="score 75")
        second = self._create(message="score 95", severity="critical")

        self.assertEqual(first.id, second.id)
        self.assertEqual(second.message, "score 95")
        self.assertEqual(second.severity, "critical")
        self.assertEqual(self.db.query(RiskAlert).count(), 1)

    def test_resolved_alert_allows_a_new_one(self):
        first = self._create()
        self.service.update_status(self.db, TENANT, first.id, "closed", resolved_by="auditor")

        second = self._create()

        self.assertNotEqual(first.id, second.id)
        self.assertEqual(self.db.query(RiskAlert).count(), 2)

    def test_different_type_is_a_separate_alert(self):
        a = self._create(type="RISK_THRESHOLD_EXCEEDED")
        b = self._create(type="INVOICE_DUPLICATE")
        self.assertNotEqual(a.id, b.id)

    def test_status_transitions_track_resolution(self):
        alert = self._create()

        alert = self.service.update_status(self.db, TENANT, alert.id, "in_progress")
        self.assertIsNone(alert.resolved_at)

        alert = self.service.update_status(self.db, TENANT, alert.id, "ignored", resolved_by="auditor")
        self.assertIsNotNone(alert.resolved_at)
        self.assertEqual(alert.resolved_by, "auditor")

        alert = self.service.update_status(self.db, TENANT, alert.id, "open")
        self.assertIsNone(alert.resolved_at)
        self.assertIsNone(alert.resolved_by)

    def test_invalid_status_is_rejected(self):
        alert = self._create()
        with self.assertRaises(ValidationError):
            self.service.update_status(self.db, TENANT, alert.id, "done")

    def test_other_tenant_alert_is_not_found(self):
        alert = self._create()
        with self.assertRaises(NotFoundError):
            self.service.update_status(self.db, OTHER_TENANT, alert.id, "closed")

    def test_list_filters_and_paginates(self):
        for doc_id in range(1, 6):
            self._create(document_id=doc_id, severity="high" if doc_id % 2 else "low")
        foreign = self.make_company(OTHER_TENANT, "Foreign Ltd")
        self._create(tenant_id=OTHER_TENANT, client_company_id=foreign.id)

        page = self.service.list_alerts(self.db, TENANT, page=2, page_size=2)
        self.assertEqual(page["total"], 5)
        self.assertEqual(len(page["data"]), 2)
        self.assertTrue(all(a.tenant_id == TENANT for a in page["data"]))

        highs = self.service.list_alerts(self.db, TENANT, severity="high")
        self.assertEqual(highs["total"], 3)

        self.service.update_status(self.db, TENANT, highs["data"][0].id, "closed")
        self.assertEqual(self.service.list_alerts(self.db, TENANT, status="open")["total"], 4)


if __name__ == "__main__":
    unittest.main()
