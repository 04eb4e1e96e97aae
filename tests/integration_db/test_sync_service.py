import asyncio
import unittest
from datetime import datetime
from unittest.mock import MagicMock

from _db import DBTestCase, TENANT

from core.config import settings
from core.errors import NotFoundError
from models.invoice import Invoice
from queries.sync_state import get_state, set_state
from services.invoice_service import InvoiceService
from services.sync_service import SYNC_STATE_KEY, SyncService, invoice_payload


def _details(number: str, total: float = 100.0, **extra) -> dict:
    data = {
        "id": number,
        "number": number,
        "issue_date": "2026-01-10",
        "due_date": "2026-02-10",
        "total_amount": total,
        "currency": "EUR",
        "counterparty_name": "Vendor A",
        "lines": [{"line_number": 1, "description": "Service", "quantity": 1, "unit_price": total, "line_total": total}],
    }
    data.update(extra)
    return data


class FakeAccountingClient:
    def __init__(self, rows=None, details=None, fail_ids=()):
        self.rows = rows or []
        self.details = details or {}
        self.fail_ids = set(fail_ids)
        self.list_calls = []
        self.fetched = []

    async def list_changed_invoices(self, modified_since=None, limit=50):
        self.list_calls.append(modified_since)
        return list(self.rows)

    async def get_invoice(self, invoice_id):
        self.fetched.append(invoice_id)
        if invoice_id in self.fail_ids:
            raise RuntimeError("accounting system unavailable")
        return self.details[invoice_id]


class TestInvoicePayload(unittest.TestCase):
    def test_maps_accounting_fields(self):
        data = invoice_payload(_details("A-1", 250.0, issue_date="10.01.2026"), "A-1")

        self.assertEqual(data["external_id"], "A-1")
        self.assertEqual(data["issue_date"], datetime(2026, 1, 10))
        self.assertEqual(data["due_date"], datetime(2026, 2, 10))
        self.assertEqual(data["total_amount"], 250.0)
        self.assertEqual(data["currency"], "EUR")
        self.assertEqual(data["type"], "purchase")

    def test_missing_issue_date_is_rejected(self):
        with self.assertRaises(ValueError):
            invoice_payload({"number": "A-1"}, "A-1")


class TestSyncService(DBTestCase):
    def setUp(self):
        super().setUp()
        self.company = self.make_company()
        self.risk_calculation = MagicMock()

    def _service(self, client: FakeAccountingClient) -> SyncService:
        return SyncService(settings, client=client, invoices=InvoiceService(), risk_calculation=self.risk_calculation)

    def _run(self, service: SyncService) -> dict:
        return asyncio.run(service.run_one_cycle(self.db, TENANT, self.company.id))

    def test_first_cycle_imports_changed_invoices(self):
        client = FakeAccountingClient(
            rows=[
                {"id": "A-2", "modified": "2026-01-11 09:00:00"},
                {"id": "A-1", "modified": "2026-01-10 09:00:00"},
            ],
            details={"A-1": _details("A-1"), "A-2": _details("A-2", 300.0)},
        )

        stats = self._run(self._service(client))

        self.assertEqual(stats["status"], "ok")
        self.assertEqual(stats["candidates"], 2)
        self.assertEqual(stats["db_updated"], 2)
        self.assertEqual(stats["failed_invoices"], [])
        self.assertTrue(stats["risk_recalculated"])
        self.risk_calculation.calculate_company.assert_called_once_with(self.db, TENANT, self.company.id)

        invoices = self.db.query(Invoice).order_by(Invoice.external_id).all()
        self.assertEqual([i.external_id for i in invoices], ["A-1", "A-2"])
        self.assertTrue(all(i.source == "sync" for i in invoices))
        self.assertEqual(invoices[1].source_modified, "2026-01-11 09:00:00")
        self.assertIsNotNone(invoices[1].lines_hash)

        self.assertEqual(get_state(self.db, TENANT, SYNC_STATE_KEY), "2026-01-11 09:00:00")

    def test_cursor_filters_already_seen_rows(self):
        rows = [{"id": "A-1", "modified": "2026-01-10 09:00:00"}]
        client = FakeAccountingClient(rows=rows, details={"A-1": _details("A-1")})
        service = self._service(client)

        self._run(service)
        stats = self._run(service)

        self.assertEqual(client.list_calls, [None, "2026-01-10 09:00:00"])
        self.assertEqual(stats["candidates"], 0)
        self.assertEqual(stats["db_updated"], 0)
        self.assertFalse(stats["risk_recalculated"])
        self.assertEqual(client.fetched, ["A-1"])

    def test_unchanged_invoice_is_skipped_by_hash(self):
        rows = [{"id": "A-1", "modified": "2026-01-10 09:00:00"}]
        client = FakeAccountingClient(rows=rows, details={"A-1": _details("A-1")})
        service = self._service(client)

        self._run(service)
        set_state(self.db, TENANT, SYNC_STATE_KEY, None)
        stats = self._run(service)

        self.assertEqual(stats["skipped_same_hash"], 1)
        self.assertEqual(stats["db_updated"], 0)
        self.assertEqual(self.db.query(Invoice).count(), 1)

    def test_modified_invoice_replaces_lines(self):
        client = FakeAccountingClient(
            rows=[{"id": "A-1", "modified": "2026-01-10 09:00:00"}],
            details={"A-1": _details("A-1")},
        )
        service = self._service(client)
        self._run(service)

        client.rows = [{"id": "A-1", "modified": "2026-01-12 09:00:00"}]
        client.details["A-1"] = _details(
            "A-1",
            150.0,
            lines=[
                {"line_number": 1, "line_total": 100.0},
                {"line_number": 2, "line_total": 50.0},
                {"line_number": 2, "line_total": 999.0},
            ],
        )
        stats = self._run(service)

        self.assertEqual(stats["db_updated"], 1)
        invoice = self.db.query(Invoice).one()
        self.assertEqual(invoice.total_amount, 150.0)
        self.assertEqual([ln.line_total for ln in invoice.lines], [100.0, 50.0])

    def test_one_failing_invoice_does_not_stop_the_cycle(self):
        client = FakeAccountingClient(
            rows=[
                {"id": "A-1", "modified": "2026-01-10 09:00:00"},
                {"id": "A-2", "modified": "2026-01-10 10:00:00"},
                {"id": "A-3", "modified": "2026-01-10 11:00:00"},
            ],
            details={"A-1": _details("A-1"), "A-3": _details("A-3", issue_date=None)},
            fail_ids={"A-2"},
        )

        stats = self._run(self._service(client))

        self.assertEqual(stats["status"], "ok")
        self.assertEqual(stats["db_updated"], 1)
        self.assertEqual(sorted(stats["failed_invoices"]), ["A-2", "A-3"])
        self.assertEqual(self.db.query(Invoice).count(), 1)

    def test_list_failure_reports_error(self):
        class BrokenClient(FakeAccountingClient):
            async def list_changed_invoices(self, modified_since=None, limit=50):
                raise RuntimeError("connection refused")

        stats = self._run(self._service(BrokenClient()))

        self.assertEqual(stats["status"], "error")
        self.assertEqual(stats["step"], "list_changed_invoices")
        self.assertIsNone(get_state(self.db, TENANT, SYNC_STATE_KEY))

    def test_concurrent_cycle_is_skipped(self):
        service = self._service(FakeAccountingClient())

        async def run_while_locked():
            async with service._lock:
                return await service.run_one_cycle(self.db, TENANT, self.company.id)

        stats = asyncio.run(run_while_locked())
        self.assertEqual(stats["status"], "skipped")

    def test_unknown_company_is_not_found(self):
        service = self._service(FakeAccountingClient())
        with self.assertRaises(NotFoundError):
            asyncio.run(service.run_one_cycle(self.db, TENANT, 9999))


if __name__ == "__main__":
    unittest.main()
