import json
import logging
from typing import Any, Dict, List

from openai import OpenAI

from core.config import Settings, settings

log = logging.getLogger("ai")


class AIParseClient:
    """
    OpenAI-based field completion for invoices.
    This client NEVER overrides regex results.
    It only proposes values for fields the rule-based parser left empty.
    """

    FIELDS = (
        "invoice_number",
        "issue_date",
        "due_date",
        "total_amount",
        "tax_amount",
        "net_amount",
        "currency",
        "counterparty_name",
        "counterparty_tax_number",
    )
    NUMERIC_FIELDS = ("total_amount", "tax_amount", "net_amount")

    def __init__(self, config: Settings = settings, client: Any = None) -> None:
        if not config.AI_ENABLED or config.AI_PROVIDER != "openai":
            self.enabled = False
            self.client = None
            return

        self.enabled = True
        self.client = client or OpenAI(api_key=config.OPENAI_API_KEY)
        self.model = config.OPENAI_MODEL

    def complete_invoice_fields(self, *, raw_text: str, missing: List[str]) -> Dict[str, Any]:
        """
        Returns only keys from `missing`, each validated.
        If AI fails -> returns {}.
        """
        if not self.enabled or not missing:
            return {}

        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                temperature=0.0,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "You extract fields from OCR text of Turkish invoices. "
                            "You MUST respond with VALID JSON ONLY. "
                            "Use null for values you cannot find."
                        ),
                    },
                    {"role": "user", "content": self._build_prompt(raw_text=raw_text, missing=missing)},
                ],
                timeout=15,
            )

            data = self._safe_parse_json(resp.choices[0].message.content)
            return self._validate(data, missing)

        except Exception as e:
            # parsing must never fail because of AI
            log.warning("AI field completion failed: %s", e)
            return {}

    # -------------------------
    # Helpers
    # -------------------------

    def _build_prompt(self, *, raw_text: str, missing: List[str]) -> str:
        return f"""
Extract the following fields from the invoice text below.

FIELDS:
{", ".join(missing)}

FORMAT:
- dates as DD.MM.YYYY
- amounts as plain numbers (no thousands separators)
- currency as ISO 4217 code

Invoice text:
{raw_text[:6000]}

Return a JSON object whose keys are exactly the field names above.
"""

    def _safe_parse_json(self, raw: str | None) -> Dict[str, Any]:
        raw = (raw or "").strip()
        if raw.startswith("```"):
            raw = raw.strip("`")
            raw = raw[raw.find("{"):]
        data = json.loads(raw)
        return data if isinstance(data, dict) else {}

    def _validate(self, data: Dict[str, Any], missing: List[str]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key in missing:
            value = data.get(key)
            if value is None or value == "":
                continue
            if key in self.NUMERIC_FIELDS:
                try:
                    out[key] = float(value)
                except (TypeError, ValueError):
                    continue
            else:
                out[key] = str(value).strip()
        return out
