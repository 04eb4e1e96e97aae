import logging
from collections import Counter
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from queries.risk import list_company_scores
from services.risk_rules import RiskRuleService

log = logging.getLogger("risk.breakdown")


CATEGORIES = ("fraud", "compliance", "financial", "operational")
# first match wins; anything else is operational
CATEGORY_KEYWORDS = (
    ("fraud", ("FRAUD", "DUPLICATE", "BENFORD", "ROUND_NUMBER", "TIMING")),
    ("compliance", ("VAT", "TAX", "COMPLIANCE")),
    ("financial", ("AMOUNT", "TRANSACTION", "FINANCIAL")),
)
TOP_FACTORS = 5


def rule_category(code: str) -> str:
    upper = code.upper()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in upper for k in keywords):
            return category
    return "operational"


class RiskBreakdownService:
    def __init__(self, rules: RiskRuleService | None = None) -> None:
        self.rules = rules or RiskRuleService()

    def tenant_breakdown(self, db: Session, tenant_id: str) -> Dict[str, Any]:
        """
        Where the tenant's company risk comes from.

        Every rule hit on the latest company scores contributes weight x hits
        to its category; the biggest contributors are the top risk factors.
        Codes without an active rule (deleted or disabled since scoring) are skipped.
        """
        scores = list_company_scores(db, tenant_id)
        hits = Counter(code for s in scores for code in (s.triggered_rule_codes or []))
        rules = {r.code: r for r in self.rules.load_active_rules(db, tenant_id)}

        triggered: List[Dict[str, Any]] = []
        for code, count in hits.items():
            rule = rules.get(code)
            if rule is None:
                continue
            triggered.append(
                {
                    "code": code,
                    "description": rule.description,
                    "weight": float(rule.weight),
                    "severity": rule.default_severity,
                    "count": count,
                }
            )

        categories = {c: 0.0 for c in CATEGORIES}
        for t in triggered:
            categories[rule_category(t["code"])] += t["weight"] * t["count"]
        total = sum(categories.values())

        ranked = sorted(triggered, key=lambda t: (-t["weight"] * t["count"], t["code"]))
        top = [
            {
                "name": t["description"] or t["code"],
                "rule_code": t["code"],
                "contribution": t["weight"] * t["count"] / total if total else 0.0,
                "severity": t["severity"],
            }
            for t in ranked[:TOP_FACTORS]
        ]

        average = sum(float(s.score) for s in scores) / len(scores) if scores else 0.0
        log.info("breakdown tenant=%s companies=%s rules=%s", tenant_id, len(scores), len(triggered))

        return {
            "total_risk_score": round(average, 2),
            "category_breakdown": {
                c: {"score": v, "percentage": v / total * 100 if total else 0.0} for c, v in categories.items()
            },
            "top_risk_factors": top,
            "triggered_rules": sorted(triggered, key=lambda t: (-t["count"], t["code"])),
        }
