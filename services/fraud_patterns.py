import calendar
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Sequence

import numpy as np
from sqlalchemy.orm import Session

from core.config import Settings, settings
from helpers import months_ago, utcnow
from queries.companies import require_company
from queries.transactions import list_company_transactions_since


BENFORD_MIN_VALUES = 20
# chi-square critical value, 8 degrees of freedom, p = 0.05
BENFORD_CRITICAL = 15.51
BENFORD_EXPECTED = np.log10(1 + 1 / np.arange(1, 10))

ROUND_SHARE = 0.3
ODD_HOURS_SHARE = 30.0
WEEKEND_SHARE = 20.0
MONTH_END_SHARE = 40.0


@dataclass
class FraudPatternResult:
    benfords_violation: bool = False
    round_number_suspicious: bool = False
    unusual_timing: bool = False
    patterns: List[Dict[str, Any]] = field(default_factory=list)


def leading_digit(amount: float) -> int:
    a = abs(float(amount))
    if a == 0:
        return 0
    return int(a / 10 ** np.floor(np.log10(a)))


def analyze_benfords_law(amounts: Sequence[float]) -> Dict[str, Any]:
    """
    Chi-square test of leading digits against Benford's distribution.
    """
    if len(amounts) < BENFORD_MIN_VALUES:
        return {"violation": False, "chi_square": 0.0, "expected": {}, "actual": {}}

    digits = np.array([leading_digit(a) for a in amounts])
    counts = np.array([(digits == d).sum() for d in range(1, 10)], dtype=float)

    total = len(amounts)
    expected = total * BENFORD_EXPECTED
    chi_square = float(((counts - expected) ** 2 / expected).sum())

    return {
        "violation": chi_square > BENFORD_CRITICAL,
        "chi_square": chi_square,
        "expected": {d: float(e) for d, e in zip(range(1, 10), expected)},
        "actual": {d: float(c / total * 100) for d, c in zip(range(1, 10), counts)},
    }


def detect_round_numbers(amounts: Sequence[float]) -> List[Dict[str, Any]]:
    """
    Returns only the suspicious ones: x000 >= 1000, x00 >= 100, x0 >= 1000.
    """
    out: List[Dict[str, Any]] = []
    for amount in amounts:
        a = abs(float(amount))
        integer, _, decimals = f"{a:.2f}".partition(".")
        if decimals != "00":
            continue

        if integer.endswith("000"):
            roundness, suspicious = "high", a >= 1000
        elif integer.endswith("00"):
            roundness, suspicious = "medium", a >= 100
        elif integer.endswith("0"):
            roundness, suspicious = "low", a >= 1000
        else:
            continue

        if suspicious:
            out.append({"amount": amount, "roundness": roundness})
    return out


def is_month_end(d: datetime, last_days: int = 3) -> bool:
    days_in_month = calendar.monthrange(d.year, d.month)[1]
    return d.day > days_in_month - last_days


def analyze_timing_patterns(dates: Sequence[datetime]) -> Dict[str, Any]:
    """
    Odd hours (before 9 or from 18), weekends, last three days of the month.
    """
    if not dates:
        return {"unusual_timing": False, "patterns": []}

    total = len(dates)
    counts = {
        "odd_hours": sum(1 for d in dates if d.hour < 9 or d.hour >= 18),
        "weekend": sum(1 for d in dates if d.weekday() >= 5),
        "end_of_month": sum(1 for d in dates if is_month_end(d)),
    }
    limits = {"odd_hours": ODD_HOURS_SHARE, "weekend": WEEKEND_SHARE, "end_of_month": MONTH_END_SHARE}

    patterns = []
    for kind, count in counts.items():
        pct = count / total * 100
        if pct > limits[kind]:
            patterns.append({"type": kind, "count": count, "percentage": pct})

    return {"unusual_timing": bool(patterns), "patterns": patterns}


def detect_patterns(amounts: Sequence[float], dates: Sequence[datetime]) -> FraudPatternResult:
    result = FraudPatternResult()
    if not amounts and not dates:
        return result

    benford = analyze_benfords_law(amounts)
    if benford["violation"]:
        result.benfords_violation = True
        result.patterns.append(
            {
                "type": "benfords_law",
                "severity": "high" if benford["chi_square"] > 25 else "medium",
                "description": f"Benford's law violation (chi-square {benford['chi_square']:.2f})",
                "value": round(benford["chi_square"], 2),
            }
        )

    rounds = detect_round_numbers(amounts)
    if amounts and len(rounds) > len(amounts) * ROUND_SHARE:
        result.round_number_suspicious = True
        share = len(rounds) / len(amounts)
        result.patterns.append(
            {
                "type": "round_number",
                "severity": "high" if share > 0.5 else "medium",
                "description": f"{len(rounds)} suspiciously round amounts ({share * 100:.1f}%)",
                "value": len(rounds),
            }
        )

    timing = analyze_timing_patterns(dates)
    if timing["unusual_timing"]:
        result.unusual_timing = True
        for p in timing["patterns"]:
            pct = p["percentage"]
            result.patterns.append(
                {
                    "type": "unusual_timing",
                    "severity": "high" if pct > 50 else "medium" if pct > 30 else "low",
                    "description": f"{p['type']} activity: {p['count']} records ({pct:.1f}%)",
                    "value": round(pct, 1),
                }
            )

    return result


class FraudPatternDetector:
    def __init__(self, config: Settings = settings) -> None:
        self.config = config

    def detect(self, db: Session, tenant_id: str, client_company_id: int) -> FraudPatternResult:
        """
        Patterns over the company's transactions in the trailing window.
        """
        require_company(db, tenant_id, client_company_id)

        since = months_ago(utcnow(), self.config.FRAUD_WINDOW_MONTHS)
        txns = list_company_transactions_since(db, tenant_id, client_company_id, since)

        return detect_patterns([t.amount for t in txns], [t.date for t in txns])
