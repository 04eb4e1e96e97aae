import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
from sqlalchemy.orm import Session

from core.config import Settings, settings
from helpers import utcnow
from queries.risk import list_history

log = logging.getLogger("risk.forecast")


MIN_POINTS = 7
REGRESSION_POINTS = 30
VELOCITY_POINTS = 7
FALLBACK_SCORE = 50.0
FALLBACK_CONFIDENCE = 30.0


def daily_averages(rows: Sequence[Tuple[date, float]]) -> List[Tuple[date, float]]:
    buckets: Dict[date, List[float]] = defaultdict(list)
    for day, score in rows:
        buckets[day].append(float(score))
    return sorted((day, sum(v) / len(v)) for day, v in buckets.items())


def linear_fit(y: Sequence[float]) -> Tuple[float, float, float]:
    """
    OLS over x = 0..n-1. Returns (slope, intercept, r_squared).
    """
    ys = np.asarray(y, dtype=float)
    xs = np.arange(len(ys), dtype=float)
    n = len(ys)

    denom = n * (xs * xs).sum() - xs.sum() ** 2
    slope = 0.0 if denom == 0 else float((n * (xs * ys).sum() - xs.sum() * ys.sum()) / denom)
    intercept = float((ys.sum() - slope * xs.sum()) / n)

    predicted = slope * xs + intercept
    ss_res = float(((ys - predicted) ** 2).sum())
    ss_tot = float(((ys - ys.mean()) ** 2).sum())
    r_squared = 1.0 if ss_tot == 0 else 1 - ss_res / ss_tot
    return slope, intercept, r_squared


def classify_trend(velocity: float, predicted_velocity: float) -> str:
    if abs(predicted_velocity) > abs(velocity * 1.2):
        return "accelerating" if predicted_velocity > 0 else "decelerating"
    if abs(predicted_velocity) < abs(velocity * 0.8):
        return "decelerating" if predicted_velocity > 0 else "accelerating"
    return "stable"


def build_forecast(daily_history: Sequence[Tuple[date, float]], days: int, today: date) -> Dict[str, Any]:
    """
    daily_history: (day, average score) sorted ascending.
    """
    scores = [float(s) for _, s in daily_history]
    predictions: List[Dict[str, Any]] = []

    if len(scores) < MIN_POINTS:
        flat = sum(scores) / len(scores) if scores else FALLBACK_SCORE
        for i in range(1, days + 1):
            predictions.append(
                {
                    "date": (today + timedelta(days=i)).isoformat(),
                    "predicted_score": flat,
                    "confidence": FALLBACK_CONFIDENCE,
                }
            )
    else:
        recent = scores[-REGRESSION_POINTS:]
        slope, intercept, r_squared = linear_fit(recent)
        confidence = float(round(min(100.0, max(0.0, r_squared * 100))))
        last_day = daily_history[-1][0]

        for i in range(1, days + 1):
            value = slope * (len(recent) + i) + intercept
            predictions.append(
                {
                    "date": (last_day + timedelta(days=i)).isoformat(),
                    "predicted_score": round(min(100.0, max(0.0, value)), 2),
                    "confidence": confidence,
                }
            )

    current = scores[-1] if scores else 0.0
    predicted = predictions[-1]["predicted_score"] if predictions else current

    window = scores[-VELOCITY_POINTS:]
    velocity = window[-1] - window[0] if len(window) >= 2 else 0.0
    predicted_velocity = predicted - current
    trend = classify_trend(velocity, predicted_velocity)

    warnings: List[Dict[str, Any]] = []
    if predicted > 70 and current < 70:
        warnings.append(
            {
                "type": "HIGH_RISK_PREDICTION",
                "severity": "high",
                "message": f"Risk is projected to reach {predicted:.1f} within {days} days",
            }
        )
    if trend == "accelerating" and predicted_velocity > 10:
        warnings.append(
            {
                "type": "ACCELERATING_RISK",
                "severity": "medium",
                "message": f"Risk is accelerating (+{predicted_velocity:.1f} points projected)",
            }
        )
    if predicted > current + 15:
        warnings.append(
            {
                "type": "SIGNIFICANT_INCREASE",
                "severity": "medium",
                "message": f"Risk is projected to rise from {current:.1f} to {predicted:.1f}",
            }
        )

    return {
        "predicted_scores": predictions,
        "early_warnings": warnings,
        "risk_velocity": {
            "current": round(velocity, 2),
            "predicted": round(predicted_velocity, 2),
            "trend": trend,
        },
    }


class RiskForecastService:
    def __init__(self, config: Settings = settings) -> None:
        self.config = config

    def get_forecast(self, db: Session, tenant_id: str, days: int = 30) -> Dict[str, Any]:
        now = utcnow()
        since = now - timedelta(days=self.config.FORECAST_HISTORY_DAYS)

        rows = list_history(db, tenant_id, "company", since=since)
        history = daily_averages([(r.recorded_at.date(), r.score) for r in rows])

        log.info("forecast tenant=%s points=%s days=%s", tenant_id, len(history), days)
        return build_forecast(history, days, now.date())
