import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional

from services.ai_parser import AIParseClient

log = logging.getLogger("parser")


PARSER_VERSION = "1.1-regex"
PARSER_VERSION_AI = "1.1-regex+ai"

DATE_RE = re.compile(r"\b(\d{1,2})[./](\d{1,2})[./](\d{4})\b")
NUMBER = r"(-?\d[\d.,]*)"

INVOICE_NUMBER_RE = re.compile(
    r"(?:Fatura|Invoice)\s*(?:No|Numaras[ıi]|Numara|Number)\.?[ \t]*:?[ \t]*([A-Z0-9][A-Z0-9\-/]*)",
    re.IGNORECASE,
)
ISSUE_DATE_LABEL_RE = re.compile(r"(?:Fatura\s*Tarihi|D[üu]zenleme\s*Tarihi|(?<!Vade )Tarihi?|Issue\s*Date|(?<!Due )Date)[ \t]*:?[ \t]*", re.IGNORECASE)
DUE_DATE_LABEL_RE = re.compile(r"(?:Vade(?:\s*Tarihi)?|Son\s*[ÖO]deme(?:\s*Tarihi)?|Due\s*Date)[ \t]*:?[ \t]*", re.IGNORECASE)

TOTAL_RES = [
    re.compile(r"Genel\s*Toplam[ \t]*:?[ \t]*" + NUMBER, re.IGNORECASE),
    re.compile(r"(?<!Ara )(?<!Net )\b(?:Toplam|Total|Tutar)[ \t]*:?[ \t]*" + NUMBER, re.IGNORECASE),
    re.compile(NUMBER + r"[ \t]*(?:TL|TRY|EUR|USD)\b"),
]
TAX_RE = re.compile(r"(?:KDV|VAT)(?:\s*Tutar[ıi])?[ \t]*(?:\(?%[ \t]*\d+\)?)?[ \t]*:?[ \t]*" + NUMBER, re.IGNORECASE)
NET_RE = re.compile(r"(?:Ara\s*Toplam|Net\s*Tutar|Subtotal)[ \t]*:?[ \t]*" + NUMBER, re.IGNORECASE)
CURRENCY_RE = re.compile(r"(?:Para\s*Birimi|Currency)[ \t]*:?[ \t]*([A-Z]{3})", re.IGNORECASE)
COUNTERPARTY_RE = re.compile(
    r"^[ \t]*(?:M[üu]şteri|Al[ıi]c[ıi]|Sat[ıi]c[ıi]|Firma|Company|Firm|Supplier)[ \t]*:[ \t]*(.+?)[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
TAX_NUMBER_RE = re.compile(r"(?:Vergi\s*No|VKN|TCKN|Tax\s*No)[ \t]*:?[ \t]*(\d{10,11})\b", re.IGNORECASE)
LINE_ITEM_RE = re.compile(
    r"^[ \t]*(?P<desc>\S.*?)[ \t]+(?P<qty>\d+(?:[.,]\d+)?)[ \t]*[xX×][ \t]*(?P<price>\d[\d.,]*)[ \t]*=[ \t]*(?P<total>-?\d[\d.,]*)[ \t]*$",
    re.MULTILINE,
)

ACCOUNT_RE = re.compile(r"(?:Hesap\s*No|IBAN)[ \t]*:?[ \t]*([A-Z0-9][A-Z0-9 ]*[A-Z0-9])", re.IGNORECASE)
STARTING_BALANCE_RE = re.compile(r"(?:Ba[şs]lang[ıi][çc]|A[çc][ıi]l[ıi][şs])\s*Bakiye(?:si)?[ \t]*:?[ \t]*" + NUMBER, re.IGNORECASE)
ENDING_BALANCE_RE = re.compile(r"(?:Biti[şs]|Kapan[ıi][şs])\s*Bakiye(?:si)?[ \t]*:?[ \t]*" + NUMBER, re.IGNORECASE)
STATEMENT_TXN_RE = re.compile(
    r"^[ \t]*(?P<date>\d{1,2}[./]\d{1,2}[./]\d{4})[ \t]+(?P<desc>.+?)[ \t]+(?P<amount>-?\d[\d.,]*)[ \t]*$",
    re.MULTILINE,
)
RECEIPT_TOTAL_RE = re.compile(r"(?:Toplam|Tutar|Total)[ \t]*:?[ \t]*" + NUMBER, re.IGNORECASE)


@dataclass
class ParsedDocument:
    document_type: str
    fields: Dict[str, Any] = field(default_factory=dict)
    parser_version: str = PARSER_VERSION


# ---------------------------
# Value helpers (shared with the feature extractor)
# ---------------------------

def parse_amount(raw: Optional[str]) -> Optional[float]:
    """
    Accepts Turkish (1.234,56) and international (1,234.56) notation.
    """
    if raw is None:
        return None
    s = str(raw).strip().replace(" ", "").rstrip(".,")
    if not s:
        return None

    negative = s.startswith("-")
    s = s.lstrip("-")

    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        head, _, tail = s.rpartition(",")
        if s.count(",") == 1 and len(tail) <= 2:
            s = head + "." + tail
        else:
            s = s.replace(",", "")
    elif s.count(".") > 1:
        s = s.replace(".", "")

    try:
        value = float(s)
    except ValueError:
        return None
    return -value if negative else value


def parse_date(raw: Any) -> Optional[date]:
    """
    DD.MM.YYYY / DD/MM/YYYY (or ISO YYYY-MM-DD); None when unparseable.
    """
    if raw is None:
        return None
    if isinstance(raw, date):
        return raw

    s = str(raw).strip()
    m = DATE_RE.fullmatch(s)
    try:
        if m:
            return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def _first_amount(patterns, text: str) -> Optional[float]:
    for pattern in patterns:
        for m in pattern.finditer(text):
            value = parse_amount(m.group(1))
            if value is not None:
                return value
    return None


def _labelled_date(label_re: re.Pattern, text: str) -> Optional[re.Match]:
    for label in label_re.finditer(text):
        m = DATE_RE.match(text, label.end())
        if m:
            return m
    return None


class DocumentParser:
    """
    Rule-based field extraction keyed by document type.
    Never raises: unmatched fields are simply absent.
    """

    def __init__(self, ai_client: AIParseClient | None = None) -> None:
        self.ai = ai_client

    def parse(self, raw_text: str, type_hint: str | None) -> ParsedDocument:
        text = raw_text or ""
        document_type = self.detect_type(type_hint or "", text)

        try:
            if document_type == "invoice":
                fields = self._parse_invoice(text)
            elif document_type == "bank_statement":
                fields = self._parse_bank_statement(text)
            elif document_type == "receipt":
                fields = self._parse_receipt(text)
            else:
                fields = {}
        except Exception as e:
            log.exception("parse failed for type %s: %s", document_type, e)
            fields = {}

        version = PARSER_VERSION
        if document_type == "invoice" and self.ai is not None and self.ai.enabled and text.strip():
            if self._complete_with_ai(text, fields):
                version = PARSER_VERSION_AI

        return ParsedDocument(document_type=document_type, fields=fields, parser_version=version)

    @staticmethod
    def detect_type(hint: str, text: str) -> str:
        upper_hint = hint.upper()
        upper_text = text.upper()

        if "INVOICE" in upper_hint or "FATURA" in upper_text:
            return "invoice"
        if "BANK" in upper_hint or "BANKA" in upper_text or "EKSTRE" in upper_text:
            return "bank_statement"
        if "RECEIPT" in upper_hint or any(k in upper_text for k in ("FİŞ", "FIŞ", "MAKBUZ")):
            return "receipt"
        return "unknown"

    # -------------------------
    # Invoice
    # -------------------------

    def _parse_invoice(self, text: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}

        m = INVOICE_NUMBER_RE.search(text)
        if m:
            fields["invoice_number"] = m.group(1).strip()

        all_dates = list(DATE_RE.finditer(text))
        issue = _labelled_date(ISSUE_DATE_LABEL_RE, text)
        due = _labelled_date(DUE_DATE_LABEL_RE, text)
        if issue is not None and due is not None and issue.start() == due.start():
            issue = None
        if issue is None:
            issue = next((d for d in all_dates if due is None or d.start() != due.start()), None)
        if due is None and issue is not None:
            due = next((d for d in all_dates if d.start() != issue.start()), None)

        if issue is not None:
            fields["issue_date"] = issue.group(0)
        if due is not None:
            fields["due_date"] = due.group(0)

        total = _first_amount(TOTAL_RES, text)
        if total is not None:
            fields["total_amount"] = total

        tax = _first_amount([TAX_RE], text)
        if tax is not None:
            fields["tax_amount"] = tax

        net = _first_amount([NET_RE], text)
        if net is not None:
            fields["net_amount"] = net

        currency = self._currency(text)
        if currency:
            fields["currency"] = currency

        m = COUNTERPARTY_RE.search(text)
        if m and len(m.group(1).strip()) > 3:
            fields["counterparty_name"] = m.group(1).strip()

        m = TAX_NUMBER_RE.search(text)
        if m:
            fields["counterparty_tax_number"] = m.group(1)

        lines = []
        for m in LINE_ITEM_RE.finditer(text):
            line_total = parse_amount(m.group("total"))
            if line_total is None:
                continue
            lines.append(
                {
                    "description": m.group("desc").strip(),
                    "quantity": parse_amount(m.group("qty")) or 0.0,
                    "unit_price": parse_amount(m.group("price")) or 0.0,
                    "line_total": line_total,
                }
            )
        if lines:
            fields["line_items"] = lines

        return fields

    # -------------------------
    # Bank statement
    # -------------------------

    def _parse_bank_statement(self, text: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}

        m = ACCOUNT_RE.search(text)
        if m:
            fields["account_number"] = m.group(1).strip()

        currency = self._currency(text)
        if currency:
            fields["currency"] = currency

        dates = DATE_RE.findall(text)
        if len(dates) >= 2:
            first, last = dates[0], dates[-1]
            fields["start_date"] = f"{first[0]}.{first[1]}.{first[2]}"
            fields["end_date"] = f"{last[0]}.{last[1]}.{last[2]}"

        m = STARTING_BALANCE_RE.search(text)
        if m:
            fields["starting_balance"] = parse_amount(m.group(1))

        m = ENDING_BALANCE_RE.search(text)
        if m:
            fields["ending_balance"] = parse_amount(m.group(1))

        txns = []
        for m in STATEMENT_TXN_RE.finditer(text):
            amount = parse_amount(m.group("amount"))
            if amount is None:
                continue
            txns.append({"date": m.group("date"), "description": m.group("desc").strip(), "amount": amount})
        if txns:
            fields["transactions"] = txns

        return fields

    # -------------------------
    # Receipt
    # -------------------------

    def _parse_receipt(self, text: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}

        amount = _first_amount([RECEIPT_TOTAL_RE], text)
        if amount is not None:
            fields["amount"] = amount

        m = DATE_RE.search(text)
        if m:
            fields["date"] = m.group(0)

        return fields

    # -------------------------
    # Helpers
    # -------------------------

    @staticmethod
    def _currency(text: str) -> Optional[str]:
        m = CURRENCY_RE.search(text)
        if m:
            return m.group(1).upper()
        if re.search(r"\b(?:TRY|TL)\b", text):
            return "TRY"
        for code in ("EUR", "USD", "GBP"):
            if re.search(rf"\b{code}\b", text):
                return code
        return None

    def _complete_with_ai(self, text: str, fields: Dict[str, Any]) -> bool:
        missing = [k for k in AIParseClient.FIELDS if k not in fields]
        if not missing:
            return False

        extra = self.ai.complete_invoice_fields(raw_text=text, missing=missing)
        added = False
        for key in missing:
            if extra.get(key) is not None:
                fields[key] = extra[key]
                added = True
        return added
