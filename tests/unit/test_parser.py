import unittest
from datetime import date
from types import SimpleNamespace
from unittest.mock import Mock

from core.config import Settings
from services.ai_parser import AIParseClient
from services.parser import PARSER_VERSION, PARSER_VERSION_AI, DocumentParser, parse_amount, parse_date


INVOICE_TEXT = """FATURA
Fatura No: ABC-2026-001
Fatura Tarihi: 15.01.2026
Vade Tarihi: 14.02.2026
Satıcı: Atlas Ofis Malzemeleri
Vergi No: 1234567890
Kalem A 2 x 500,00 = 1.000,00
Ara Toplam: 1.000,00
KDV (%20): 200,00
Genel Toplam: 1.200,00 TL
"""

STATEMENT_TEXT = """BANKA HESAP EKSTRESİ
IBAN: TR120006200000000123456789
Başlangıç Bakiye: 10.000,00
01.03.2026 Kira odemesi -2.500,00
15.03.2026 Tahsilat 4.000,00
Bitiş Bakiye: 11.500,00
"""


class TestAmountAndDateParsing(unittest.TestCase):
    def test_turkish_and_international_amounts(self):
        self.assertEqual(parse_amount("1.234,56"), 1234.56)
        self.assertEqual(parse_amount("1,234.56"), 1234.56)
        self.assertEqual(parse_amount("1.234.567"), 1234567.0)
        self.assertEqual(parse_amount("1,234"), 1234.0)
        self.assertEqual(parse_amount("-50,5"), -50.5)

    def test_unparseable_amount_is_none(self):
        self.assertIsNone(parse_amount(None))
        self.assertIsNone(parse_amount(""))
        self.assertIsNone(parse_amount("abc"))

    def test_dates(self):
        self.assertEqual(parse_date("15.01.2026"), date(2026, 1, 15))
        self.assertEqual(parse_date("15/01/2026"), date(2026, 1, 15))
        self.assertEqual(parse_date("2026-01-15"), date(2026, 1, 15))
        self.assertIsNone(parse_date("31.02.2026"))
        self.assertIsNone(parse_date("not a date"))
        self.assertIsNone(parse_date(None))


class TestDocumentParser(unittest.TestCase):
    def setUp(self):
        self.parser = DocumentParser()

    def test_invoice_fields(self):
        parsed = self.parser.parse(INVOICE_TEXT, "INVOICE")

        self.assertEqual(parsed.document_type, "invoice")
        self.assertEqual(parsed.parser_version, PARSER_VERSION)

        f = parsed.fields
        self.assertEqual(f["invoice_number"], "ABC-2026-001")
        self.assertEqual(f["issue_date"], "15.01.2026")
        self.assertEqual(f["due_date"], "14.02.2026")
        self.assertEqual(f["total_amount"], 1200.0)
        self.assertEqual(f["tax_amount"], 200.0)
        self.assertEqual(f["net_amount"], 1000.0)
        self.assertEqual(f["currency"], "TRY")
        self.assertEqual(f["counterparty_name"], "Atlas Ofis Malzemeleri")
        self.assertEqual(f["counterparty_tax_number"], "1234567890")
        self.assertEqual(
            f["line_items"],
            [{"description": "Kalem A", "quantity": 2.0, "unit_price": 500.0, "line_total": 1000.0}],
        )

    def test_type_detected_from_text_without_hint(self):
        self.assertEqual(self.parser.parse(INVOICE_TEXT, None).document_type, "invoice")
        self.assertEqual(self.parser.parse(STATEMENT_TEXT, "").document_type, "bank_statement")

    def test_bank_statement_fields(self):
        f = self.parser.parse(STATEMENT_TEXT, "BANK_STATEMENT").fields

        self.assertEqual(f["account_number"], "TR120006200000000123456789")
        self.assertEqual(f["start_date"], "01.03.2026")
        self.assertEqual(f["end_date"], "15.03.2026")
        self.assertEqual(f["starting_balance"], 10000.0)
        self.assertEqual(f["ending_balance"], 11500.0)
        self.assertEqual([t["amount"] for t in f["transactions"]], [-2500.0, 4000.0])

    def test_receipt_fields(self):
        parsed = self.parser.parse("MAKBUZ\nTarih: 03.03.2026\nToplam: 150,75", "RECEIPT")

        self.assertEqual(parsed.document_type, "receipt")
        self.assertEqual(parsed.fields, {"amount": 150.75, "date": "03.03.2026"})

    def test_unknown_type_has_no_fields(self):
        parsed = self.parser.parse("hello world", "OTHER")
        self.assertEqual(parsed.document_type, "unknown")
        self.assertEqual(parsed.fields, {})

    def test_empty_text_never_raises(self):
        parsed = self.parser.parse("", "INVOICE")
        self.assertEqual(parsed.document_type, "invoice")
        self.assertNotIn("invoice_number", parsed.fields)


class TestAICompletion(unittest.TestCase):
    def _client(self, content: str) -> Mock:
        client = Mock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
        )
        return client

    def _config(self) -> Settings:
        return Settings(AI_ENABLED=True, AI_PROVIDER="openai", OPENAI_API_KEY="test-key")

    def test_ai_fills_only_missing_fields(self):
        client = self._client('{"invoice_number": "AI-77", "total_amount": "999", "counterparty_name": null}')
        parser = DocumentParser(AIParseClient(self._config(), client=client))

        parsed = parser.parse("FATURA\nToplam: 1.200,00", "INVOICE")

        self.assertEqual(parsed.parser_version, PARSER_VERSION_AI)
        self.assertEqual(parsed.fields["invoice_number"], "AI-77")
        # regex result wins
        self.assertEqual(parsed.fields["total_amount"], 1200.0)
        self.assertNotIn("counterparty_name", parsed.fields)

    def test_ai_failure_keeps_regex_result(self):
        client = Mock()
        client.chat.completions.create.side_effect = RuntimeError("quota")
        parser = DocumentParser(AIParseClient(self._config(), client=client))

        parsed = parser.parse("FATURA\nToplam: 1.200,00", "INVOICE")

        self.assertEqual(parsed.parser_version, PARSER_VERSION)
        self.assertEqual(parsed.fields["total_amount"], 1200.0)

    def test_disabled_client_is_never_called(self):
        client = Mock()
        ai = AIParseClient(Settings(AI_ENABLED=False), client=client)

        self.assertFalse(ai.enabled)
        self.assertEqual(ai.complete_invoice_fields(raw_text="x", missing=["invoice_number"]), {})
        client.chat.completions.create.assert_not_called()


if __name__ == "__main__":
    unittest.main()
