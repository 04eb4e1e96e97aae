"""
Statistical fraud scoring for a client company.

Outliers are found with a combined Z-score (> 2 sigma) and IQR (1.5 * IQR)
test per feature dimension. This is plain statistical outlier scoring,
not an isolation forest.
"""
import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Sequence

import numpy as np
from sqlalchemy.orm import Session

from core.config import Settings, settings
from helpers import months_ago, utcnow
from models.invoice import Invoice
from models.transaction import Transaction
from queries.companies import require_company
from queries.invoices import list_company_invoices_since
from queries.transactions import list_company_transactions_since
from services.fraud_patterns import is_month_end
from services.risk_alerts import RiskAlertService

log = logging.getLogger("risk.ml")


MIN_RECORDS = 10
SATURATION_RECORDS = 100
FEATURES = ("amount", "day_of_week", "day_of_month", "hour", "month", "counterparty_count", "line_count", "vat_rate")
PATTERN_WEIGHTS = {"high": 0.4, "medium": 0.2, "low": 0.1}


@dataclass
class Record:
    kind: str  # "transaction" | "invoice"
    date: datetime
    amount: float
    line_count: int = 1
    vat_rate: float = 0.0
    counterparty: str | None = None


@dataclass
class FraudScore:
    overall_score: int
    confidence: float
    factors: List[Dict[str, Any]] = field(default_factory=list)
    patterns: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------
# Feature extraction
# ---------------------------

def to_records(transactions: Sequence[Transaction], invoices: Sequence[Invoice]) -> List[Record]:
    records: List[Record] = []

    for t in transactions:
        records.append(Record(kind="transaction", date=t.date, amount=float(t.amount), line_count=len(t.lines)))

    for inv in invoices:
        total = float(inv.total_amount or 0)
        tax = float(inv.tax_amount or 0)
        vat_rate = tax / (total - tax) if tax and total and total != tax else 0.0
        records.append(
            Record(
                kind="invoice",
                date=inv.issue_date,
                amount=total,
                line_count=max(1, len(inv.lines or [])),
                vat_rate=vat_rate,
                counterparty=inv.counterparty_tax_number or inv.counterparty_name,
            )
        )

    records.sort(key=lambda r: r.date)
    return records


def feature_matrix(records: Sequence[Record]) -> np.ndarray:
    rows = [
        [
            math.log10(abs(r.amount) + 1),
            r.date.weekday(),
            r.date.day,
            r.date.hour,
            r.date.month,
            1 if r.counterparty else 0,
            r.line_count,
            r.vat_rate,
        ]
        for r in records
    ]
    return np.array(rows, dtype=float).reshape(len(records), len(FEATURES))


# ---------------------------
# Outlier score
# ---------------------------

def outlier_score(X: np.ndarray) -> float:
    """
    0..1: mean per-record anomaly plus a consensus boost of at most 0.2.
    """
    n = X.shape[0]
    if n < MIN_RECORDS:
        return 0.0

    mean = X.mean(axis=0)
    std = X.std(axis=0)
    std[std == 0] = 1.0

    ordered = np.sort(X, axis=0)
    q1 = ordered[int(n * 0.25)]
    q3 = ordered[int(n * 0.75)]
    iqr = q3 - q1
    iqr[iqr == 0] = 1.0

    z = np.abs((X - mean) / std)
    z_hit = z > 2
    z_part = np.where(z_hit, np.minimum(1.0, (z - 2) / 3), 0.0)

    lower = q1 - 1.5 * iqr
    upper = q3 + 1.5 * iqr
    below = X < lower
    above = X > upper
    deviation = np.where(below, (lower - X) / iqr, np.where(above, (X - upper) / iqr, 0.0))
    iqr_hit = below | above
    iqr_part = np.where(iqr_hit, np.minimum(1.0, deviation / 2), 0.0)

    hits = z_hit.sum(axis=1) + iqr_hit.sum(axis=1)
    sums = z_part.sum(axis=1) + iqr_part.sum(axis=1)
    per_record = np.where(hits > 0, sums / np.maximum(hits, 1) / 2, 0.0)

    consensus = min(0.2, float((per_record > 0.3).sum()) / n)
    return float(min(1.0, per_record.mean() + consensus))


# ---------------------------
# Pattern detectors
# ---------------------------

def cluster_amounts(amounts: Sequence[float]) -> List[Dict[str, float]]:
    """
    Greedy clustering: an amount joins the first cluster whose mean is within 5%.
    """
    clusters: List[List[float]] = []
    for a in amounts:
        for c in clusters:
            m = sum(c) / len(c)
            if abs(a - m) < abs(m) * 0.05:
                c.append(a)
                break
        else:
            clusters.append([a])

    out = []
    for c in clusters:
        arr = np.array(c, dtype=float)
        out.append({"mean": float(arr.mean()), "count": len(c), "variance": float(arr.var())})
    return out


def timing_score(records: Sequence[Record]) -> Dict[str, float]:
    n = len(records)
    if n == 0:
        return {"score": 0.0, "outside_hours": 0.0, "weekend": 0.0, "month_end": 0.0}

    outside = sum(1 for r in records if r.date.hour < 9 or r.date.hour >= 17) / n
    weekend = sum(1 for r in records if r.date.weekday() >= 5) / n
    month_end = sum(1 for r in records if is_month_end(r.date)) / n

    score = 0.0
    if outside > 0.3 or weekend > 0.2 or month_end > 0.4:
        score = max(outside, weekend, month_end)
    return {"score": score, "outside_hours": outside, "weekend": weekend, "month_end": month_end}


def velocity_score(records: Sequence[Record]) -> float:
    """
    Records per day over the covered span; 10/day saturates.
    """
    if len(records) < 2:
        return 0.0
    span = (max(r.date for r in records) - min(r.date for r in records)).total_seconds() / 86400
    per_day = len(records) / (span or 1)
    return min(1.0, per_day / 10)


def counterparty_ratio(records: Sequence[Record]) -> float:
    invoices = [r for r in records if r.kind == "invoice"]
    counts = Counter(r.counterparty for r in invoices if r.counterparty)
    if not invoices or not counts:
        return 0.0
    return max(counts.values()) / len(invoices)


def detect_patterns(records: Sequence[Record]) -> List[Dict[str, Any]]:
    patterns: List[Dict[str, Any]] = []

    for c in cluster_amounts([r.amount for r in records]):
        if c["count"] >= 5 and c["variance"] < c["mean"] * 0.1:
            patterns.append(
                {
                    "type": "amount_cluster",
                    "description": f"{c['count']} records with similar amounts (mean {c['mean']:.2f})",
                    "severity": "high" if c["count"] >= 10 else "medium",
                    "confidence": min(1.0, c["count"] / 20),
                }
            )

    timing = timing_score(records)
    if timing["score"] > 0.5:
        patterns.append(
            {
                "type": "unusual_timing",
                "description": (
                    f"outside hours {timing['outside_hours'] * 100:.1f}%, weekend {timing['weekend'] * 100:.1f}%, "
                    f"month end {timing['month_end'] * 100:.1f}%"
                ),
                "severity": "high" if timing["score"] > 0.7 else "medium",
                "confidence": timing["score"],
            }
        )

    velocity = velocity_score(records)
    if velocity > 0.5:
        patterns.append(
            {
                "type": "high_velocity",
                "description": "abnormal number of records in a short period",
                "severity": "high" if velocity > 0.7 else "medium",
                "confidence": velocity,
            }
        )

    invoice_count = sum(1 for r in records if r.kind == "invoice")
    ratio = counterparty_ratio(records)
    if invoice_count >= 5 and ratio > 0.5:
        patterns.append(
            {
                "type": "counterparty_concentration",
                "description": f"one counterparty holds {ratio * 100:.1f}% of invoices",
                "severity": "high" if ratio > 0.8 else "medium",
                "confidence": ratio,
            }
        )

    return patterns


# ---------------------------
# Behaviour / network
# ---------------------------

def behavioral_score(records: Sequence[Record]) -> float:
    """
    Relative change of mean amount between the first and second half of the window.
    """
    if len(records) < MIN_RECORDS:
        return 0.0
    mid = len(records) // 2
    first = np.mean([abs(r.amount) for r in records[:mid]])
    second = np.mean([abs(r.amount) for r in records[mid:]])
    if first <= 0:
        return 0.0
    return float(min(1.0, abs(second - first) / first / 2))


def network_score(records: Sequence[Record]) -> float:
    return min(1.0, counterparty_ratio(records) / 0.5)


# ---------------------------
# Combination
# ---------------------------

def recommendations_for(score: float, factors: List[Dict[str, Any]], patterns: List[Dict[str, Any]]) -> List[str]:
    out: List[str] = []
    if score >= 70:
        out.append("High fraud score: review immediately")
        out.append("Run a detailed financial audit")
    elif score >= 40:
        out.append("Medium fraud score: keep under regular review")

    high_factors = [f for f in factors if f["severity"] == "high"]
    if high_factors:
        out.append(f"{len(high_factors)} high-severity risk factors detected")

    high_patterns = [p for p in patterns if p["severity"] == "high"]
    if high_patterns:
        out.append(f"{len(high_patterns)} suspicious patterns need detailed analysis")

    if not out:
        out.append("Fraud score is normal: routine monitoring is enough")
    return out


def score_records(transactions: Sequence[Transaction], invoices: Sequence[Invoice]) -> FraudScore:
    records = to_records(transactions, invoices)
    if not records:
        return FraudScore(overall_score=0, confidence=0.0, recommendations=["Not enough data"])

    anomaly = outlier_score(feature_matrix(records))
    patterns = detect_patterns(records)
    behavioral = behavioral_score(records)
    network = network_score(records)

    pattern_contribution = sum(p["confidence"] * 100 * PATTERN_WEIGHTS[p["severity"]] for p in patterns)
    score = anomaly * 30 + behavioral * 30 + network * 20 + pattern_contribution * 0.2

    # a single strong signal sets a minimum score
    if network > 0.5:
        score = max(score, network * 100 * 0.2)
    high_patterns = [p for p in patterns if p["severity"] == "high"]
    if high_patterns:
        score = max(score, max(p["confidence"] for p in high_patterns) * 50)
    if anomaly > 0.5 or behavioral > 0.5 or network > 0.5 or patterns:
        score = max(score, 10)
    score = min(100.0, score)

    factors: List[Dict[str, Any]] = []
    for name, value, weight in (
        ("statistical_outlier", anomaly, 30),
        ("behavioral_shift", behavioral, 30),
        ("counterparty_network", network, 20),
    ):
        if value > 0.5:
            factors.append(
                {"name": name, "contribution": round(value * weight, 2), "severity": "high" if value > 0.7 else "medium"}
            )
    for p in patterns:
        factors.append(
            {
                "name": p["type"],
                "contribution": round(p["confidence"] * 100 * PATTERN_WEIGHTS[p["severity"]], 2),
                "severity": p["severity"],
            }
        )

    if factors and score == 0:
        score = max(10.0, max(f["contribution"] for f in factors) * 0.5)

    overall = int(math.floor(score + 0.5))
    confidence = round(min(1.0, len(records) / SATURATION_RECORDS), 2)

    return FraudScore(
        overall_score=overall,
        confidence=confidence,
        factors=factors,
        patterns=patterns,
        recommendations=recommendations_for(overall, factors, patterns),
    )


class MLFraudDetector:
    def __init__(self, config: Settings = settings, alerts: RiskAlertService | None = None) -> None:
        self.config = config
        self.alerts = alerts or RiskAlertService()

    def calculate_fraud_score(self, db: Session, tenant_id: str, client_company_id: int) -> FraudScore:
        require_company(db, tenant_id, client_company_id)

        since = months_ago(utcnow(), self.config.FRAUD_WINDOW_MONTHS)
        transactions = list_company_transactions_since(db, tenant_id, client_company_id, since)
        invoices = list_company_invoices_since(db, tenant_id, client_company_id, since)

        return score_records(transactions, invoices)

    def check_and_alert_fraud(self, db: Session, tenant_id: str, client_company_id: int) -> FraudScore:
        result = self.calculate_fraud_score(db, tenant_id, client_company_id)

        if result.overall_score >= self.config.FRAUD_ALERT_THRESHOLD:
            severity = "high" if result.overall_score >= self.config.FRAUD_HIGH_THRESHOLD else "medium"
            self.alerts.create_alert(
                db,
                tenant_id=tenant_id,
                client_company_id=client_company_id,
                document_id=None,
                type="ML_FRAUD_DETECTION",
                title="Statistical fraud detection",
                message=f"Fraud score {result.overall_score}/100. {'; '.join(result.recommendations)}",
                severity=severity,
            )
            log.info("fraud alert raised for company %s (score=%s)", client_company_id, result.overall_score)

        return result
