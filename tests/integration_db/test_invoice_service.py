import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from _db import DBTestCase, OTHER_TENANT, TENANT

from core.errors import NotFoundError, ValidationError
from models.invoice import Invoice
from models.risk import RiskAlert
from services.counterparty import CounterpartyAnalyzer
from services.invoice_service import InvoiceService


ISSUED = datetime(2026, 1, 15, 10, 0)


def _payload(company_id: int, **overrides) -> dict:
    total = overrides.pop("total_amount", 1000.0)
    data = {
        "client_company_id": company_id,
        "external_id": "INV-7",
        "issue_date": ISSUED,
        "total_amount": total,
        "counterparty_name": "Vendor A",
        "lines": [{"line_number": 1, "description": "Service", "quantity": 1, "unit_price": total, "line_total": total}],
    }
    data.update(overrides)
    return data


class TestInvoiceService(DBTestCase):
    def setUp(self):
        super().setUp()
        self.service = InvoiceService()
        self.company = self.make_company()

    def _alerts(self, type: str) -> list[RiskAlert]:
        return self.db.query(RiskAlert).filter_by(tenant_id=TENANT, type=type).all()

    def test_create_persists_invoice_and_lines(self):
        inv = self.service.create_invoice(self.db, TENANT, _payload(self.company.id))

        self.assertEqual(inv.tenant_id, TENANT)
        self.assertEqual(inv.source, "manual")
        self.assertEqual(len(inv.lines), 1)
        self.assertEqual(inv.lines[0].line_total, 1000.0)

    def test_line_total_mismatch_is_rejected(self):
        data = _payload(self.company.id)
        data["lines"][0]["line_total"] = 900.0

        with self.assertRaises(ValidationError):
            self.service.create_invoice(self.db, TENANT, data)
        self.assertEqual(self.db.query(Invoice).count(), 0)

    def test_rounding_within_tolerance_is_accepted(self):
        data = _payload(self.company.id)
        data["lines"] = [
            {"line_number": 1, "line_total": 333.33},
            {"line_number": 2, "line_total": 333.33},
            {"line_number": 3, "line_total": 333.33},
        ]
        data["total_amount"] = 999.99
        inv = self.service.create_invoice(self.db, TENANT, data)
        self.assertEqual(len(inv.lines), 3)

    def test_foreign_company_is_not_found(self):
        foreign = self.make_company(OTHER_TENANT, "Foreign Ltd")
        with self.assertRaises(NotFoundError):
            self.service.create_invoice(self.db, TENANT, _payload(foreign.id))

    # ---------------------------
    # Duplicates
    # ---------------------------

    def test_duplicates_are_reported_both_ways(self):
        a = self.service.create_invoice(self.db, TENANT, _payload(self.company.id))
        b = self.service.create_invoice(self.db, TENANT, _payload(self.company.id, total_amount=1000.004))

        dup_of_a = self.service.check_invoice_level_duplicates(self.db, TENANT, a.id)
        dup_of_b = self.service.check_invoice_level_duplicates(self.db, TENANT, b.id)

        self.assertEqual([d["invoice_id"] for d in dup_of_a], [b.id])
        self.assertEqual([d["invoice_id"] for d in dup_of_b], [a.id])

        alerts = self._alerts("INVOICE_DUPLICATE")
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].severity, "high")

    def test_different_date_or_amount_is_not_a_duplicate(self):
        a = self.service.create_invoice(self.db, TENANT, _payload(self.company.id))
        self.service.create_invoice(self.db, TENANT, _payload(self.company.id, issue_date=ISSUED + timedelta(days=1)))
        self.service.create_invoice(self.db, TENANT, _payload(self.company.id, total_amount=1000.5))

        self.assertEqual(self.service.check_invoice_level_duplicates(self.db, TENANT, a.id), [])
        self.assertEqual(self._alerts("INVOICE_DUPLICATE"), [])

    def test_other_tenant_invoice_is_not_a_duplicate(self):
        foreign = self.make_company(OTHER_TENANT, "Foreign Ltd")
        self.service.create_invoice(self.db, OTHER_TENANT, _payload(foreign.id))
        mine = self.service.create_invoice(self.db, TENANT, _payload(self.company.id))

        self.assertEqual(self.service.check_invoice_level_duplicates(self.db, TENANT, mine.id), [])

    # ---------------------------
    # Counterparty
    # ---------------------------

    def test_new_counterparty_raises_high_alert(self):
        self.service.create_invoice(self.db, TENANT, _payload(self.company.id))

        alerts = self._alerts("UNUSUAL_COUNTERPARTY")
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].severity, "high")
        self.assertIn("Vendor A", alerts[0].message)

    def test_amount_far_above_average_is_unusual(self):
        analyzer = CounterpartyAnalyzer()
        self.make_invoice(self.company, external_id="OLD-1", total_amount=1000.0, issue_date=ISSUED - timedelta(days=10))

        analysis = analyzer.analyze(self.db, TENANT, self.company.id, "Vendor A", None, 5000.0, ISSUED)

        self.assertFalse(analysis.is_new)
        self.assertTrue(analysis.is_unusual)

    def test_dormant_counterparty_is_unusual(self):
        analyzer = CounterpartyAnalyzer()
        self.make_invoice(self.company, external_id="OLD-1", total_amount=1000.0, issue_date=ISSUED - timedelta(days=120))

        analysis = analyzer.analyze(self.db, TENANT, self.company.id, "Vendor A", None, 1000.0, ISSUED)

        self.assertTrue(analysis.is_unusual)
        self.assertTrue(any("dormant" in p for p in analysis.patterns))

    def test_regular_counterparty_is_not_unusual(self):
        analyzer = CounterpartyAnalyzer()
        self.make_invoice(self.company, external_id="OLD-1", total_amount=1000.0, issue_date=ISSUED - timedelta(days=10))

        analysis = analyzer.analyze(self.db, TENANT, self.company.id, "Vendor A", None, 1200.0, ISSUED)

        self.assertFalse(analysis.is_new)
        self.assertFalse(analysis.is_unusual)

    def test_side_check_failure_never_fails_the_write(self):
        with patch.object(CounterpartyAnalyzer, "check_and_alert", side_effect=RuntimeError("boom")):
            inv = self.service.create_invoice(self.db, TENANT, _payload(self.company.id))

        self.assertIsNotNone(inv.id)
        self.assertEqual(self.db.query(Invoice).count(), 1)

    # ---------------------------
    # Update
    # ---------------------------

    def test_update_replaces_lines(self):
        inv = self.service.create_invoice(self.db, TENANT, _payload(self.company.id))

        updated = self.service.update_invoice(
            self.db,
            TENANT,
            inv.id,
            {
                "total_amount": 1500.0,
                "lines": [
                    {"line_number": 1, "line_total": 1000.0},
                    {"line_number": 2, "line_total": 500.0},
                ],
            },
        )

        self.assertEqual(updated.total_amount, 1500.0)
        self.assertEqual([ln.line_number for ln in updated.lines], [1, 2])

    def test_update_checks_totals_against_existing_header(self):
        inv = self.service.create_invoice(self.db, TENANT, _payload(self.company.id))

        with self.assertRaises(ValidationError):
            self.service.update_invoice(self.db, TENANT, inv.id, {"lines": [{"line_number": 1, "line_total": 10.0}]})

    def test_update_other_tenant_invoice_is_not_found(self):
        inv = self.service.create_invoice(self.db, TENANT, _payload(self.company.id))

        with self.assertRaises(NotFoundError):
            self.service.update_invoice(self.db, OTHER_TENANT, inv.id, {"status": "approved"})


if __name__ == "__main__":
    unittest.main()
