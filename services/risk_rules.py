import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from core.errors import NotFoundError, ValidationError
from models.risk import RiskRule
from queries.risk import get_rule, get_rule_by_code, list_rules_for_tenant

log = logging.getLogger("risk.rules")


RULE_SCOPES = ("document", "company")

DEFAULT_RULES: List[Dict[str, Any]] = [
    # document scope
    {"scope": "document", "code": "INV_DUE_BEFORE_ISSUE", "weight": 30, "default_severity": "high",
     "description": "Due date is earlier than issue date"},
    {"scope": "document", "code": "INV_TOTAL_MISMATCH", "weight": 20, "default_severity": "medium",
     "description": "Invoice total differs from the sum of its lines"},
    {"scope": "document", "code": "INV_DUPLICATE_NUMBER", "weight": 40, "default_severity": "high",
     "description": "Invoice number already used in this tenant"},
    {"scope": "document", "code": "INV_DUPLICATE_INVOICE", "weight": 35, "default_severity": "high",
     "description": "Same amount and counterparty within 30 days"},
    {"scope": "document", "code": "INV_MISSING_NUMBER", "weight": 20, "default_severity": "medium",
     "description": "Invoice number could not be read"},
    {"scope": "document", "code": "INV_MISSING_COUNTERPARTY", "weight": 10, "default_severity": "low",
     "description": "Counterparty name and tax number are missing"},
    {"scope": "document", "code": "INV_NEGATIVE_AMOUNT", "weight": 30, "default_severity": "high",
     "description": "Negative invoice total"},
    {"scope": "document", "code": "INV_HIGH_AMOUNT", "weight": 15, "default_severity": "medium",
     "description": "Invoice total above 1,000,000"},
    {"scope": "document", "code": "NEW_COUNTERPARTY", "weight": 10, "default_severity": "low",
     "description": "Counterparty never seen before for this company"},
    {"scope": "document", "code": "UNUSUAL_COUNTERPARTY", "weight": 20, "default_severity": "medium",
     "description": "Dormant counterparty or amount far above its average"},
    {"scope": "document", "code": "BENFORDS_LAW_VIOLATION", "weight": 15, "default_severity": "medium",
     "description": "Company amounts deviate from Benford's law"},
    {"scope": "document", "code": "ROUND_NUMBER_SUSPICIOUS", "weight": 10, "default_severity": "low",
     "description": "More than 30% of company amounts are round"},
    {"scope": "document", "code": "UNUSUAL_TIMING", "weight": 10, "default_severity": "low",
     "description": "Odd-hour, weekend or month-end clustering"},
    {"scope": "document", "code": "DOC_PARSING_FAILED", "weight": 25, "default_severity": "medium",
     "description": "Document type unknown or no fields extracted"},
    # company scope
    {"scope": "company", "code": "COMP_MANY_HIGH_RISK_DOCS", "weight": 30, "default_severity": "high",
     "description": "Many high-risk documents in the window", "config": {"threshold": 5, "days": 90}},
    {"scope": "company", "code": "COMP_HIGH_RISK_RATIO", "weight": 25, "default_severity": "high",
     "description": "High share of high-risk invoices", "config": {"threshold": 0.3}},
    {"scope": "company", "code": "COMP_PEAK_DOCUMENT_RISK", "weight": 20, "default_severity": "medium",
     "description": "At least one document scored critical", "config": {"threshold": 90}},
    {"scope": "company", "code": "COMP_FREQUENT_DUPLICATES", "weight": 20, "default_severity": "medium",
     "description": "Repeated duplicate invoice numbers", "config": {"threshold": 3}},
    {"scope": "company", "code": "COMP_BENFORDS_LAW_VIOLATION", "weight": 15, "default_severity": "medium",
     "description": "Company amounts deviate from Benford's law"},
    {"scope": "company", "code": "COMP_ROUND_NUMBERS", "weight": 10, "default_severity": "low",
     "description": "More than 30% of company amounts are round"},
    {"scope": "company", "code": "COMP_UNUSUAL_TIMING", "weight": 10, "default_severity": "low",
     "description": "Odd-hour, weekend or month-end clustering"},
    {"scope": "company", "code": "COMP_HIGH_FRAUD_PATTERNS", "weight": 25, "default_severity": "high",
     "description": "Many fraud patterns detected", "config": {"threshold": 3}},
]


class RiskRuleService:
    def ensure_default_rules(self, db: Session) -> int:
        """
        Insert missing global rules. Safe to call on every startup.
        """
        added = 0
        for entry in DEFAULT_RULES:
            if get_rule_by_code(db, None, entry["code"]):
                continue
            db.add(
                RiskRule(
                    tenant_id=None,
                    scope=entry["scope"],
                    code=entry["code"],
                    description=entry["description"],
                    weight=float(entry["weight"]),
                    is_active=True,
                    default_severity=entry["default_severity"],
                    config=dict(entry.get("config") or {}),
                )
            )
            added += 1

        if added:
            db.commit()
            log.info("seeded %s default risk rules", added)
        return added

    def load_active_rules(self, db: Session, tenant_id: str, scope: str | None = None) -> List[RiskRule]:
        """
        Global rules overlaid by tenant rules with the same code
        (an inactive tenant rule disables the global one).
        """
        by_code: Dict[str, RiskRule] = {}
        rows = list_rules_for_tenant(db, tenant_id)

        for rule in rows:
            if rule.tenant_id is None:
                by_code[rule.code] = rule
        for rule in rows:
            if rule.tenant_id == tenant_id:
                by_code[rule.code] = rule

        rules = [r for r in by_code.values() if r.is_active]
        if scope:
            rules = [r for r in rules if r.scope == scope]
        return sorted(rules, key=lambda r: r.code)

    def list_rules(self, db: Session, tenant_id: str) -> List[RiskRule]:
        return list_rules_for_tenant(db, tenant_id)

    def create_rule(self, db: Session, tenant_id: str, data: Dict[str, Any]) -> RiskRule:
        if data.get("scope") not in RULE_SCOPES:
            raise ValidationError(f"scope must be one of {', '.join(RULE_SCOPES)}")
        if get_rule_by_code(db, tenant_id, data["code"]):
            raise ValidationError(f"rule {data['code']} already exists for this tenant")

        rule = RiskRule(
            tenant_id=tenant_id,
            scope=data["scope"],
            code=data["code"],
            description=data.get("description") or "",
            weight=float(data.get("weight") or 0),
            is_active=bool(data.get("is_active", True)),
            default_severity=data.get("default_severity") or "medium",
            config=dict(data.get("config") or {}),
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    def update_rule(self, db: Session, tenant_id: str, rule_id: int, changes: Dict[str, Any]) -> RiskRule:
        """
        Tenant rules are edited in place; editing a global rule creates
        (or updates) the tenant's override with the same code.
        """
        rule = get_rule(db, rule_id)
        if not rule or (rule.tenant_id is not None and rule.tenant_id != tenant_id):
            raise NotFoundError(f"risk rule {rule_id} not found")

        if rule.tenant_id is None:
            override = get_rule_by_code(db, tenant_id, rule.code)
            if not override:
                override = RiskRule(
                    tenant_id=tenant_id,
                    scope=rule.scope,
                    code=rule.code,
                    description=rule.description,
                    weight=rule.weight,
                    is_active=rule.is_active,
                    default_severity=rule.default_severity,
                    config=dict(rule.config or {}),
                )
                db.add(override)
            rule = override

        for key in ("description", "weight", "is_active", "default_severity", "config"):
            if key in changes and changes[key] is not None:
                setattr(rule, key, changes[key])

        db.commit()
        db.refresh(rule)
        return rule
