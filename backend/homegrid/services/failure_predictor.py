"""
failure_predictor.py

Purpose:
  Per-device failure probability, projected failure date and maintenance
  recommendations.

Decision Order:
  1. Fewer than `min_samples` readings -> "insufficient data" sentinel
     (probability 0, confidence 0).
  2. No classifier for the device category -> "model unavailable"
     (probability 0, confidence 0).
  3. Otherwise: features -> classifier -> failure date (when p > 0.3) ->
     banded recommendations plus device-type hints (when p > 0.5).

Guarantees:
  - Degradation rate is floored at 0.001/day, so a device drawing less power
    than its baseline never yields a negative days-to-failure.
  - Days-to-failure is capped at 365.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from homegrid.models.domain import (
    Device,
    DeviceType,
    FeatureVector,
    MaintenanceEvent,
    MaintenancePrediction,
    TelemetrySample,
)
from homegrid.services.feature_extractor import extract_features
from homegrid.services.model_registry import FailureClassifier

MIN_SAMPLES = 100
FAILURE_DATE_THRESHOLD = 0.3
DEVICE_HINT_THRESHOLD = 0.5
MIN_DEGRADATION_RATE = 0.001
MAX_DAYS_TO_FAILURE = 365.0

INSUFFICIENT_DATA_ACTION = "Insufficient data for prediction. Continue monitoring."
MODEL_UNAVAILABLE_ACTION = "Model not available for prediction"

# (lower bound exclusive, actions), checked top-down
_RECOMMENDATION_BANDS = (
    (0.8, [
        "URGENT: Schedule immediate maintenance inspection",
        "Consider temporary shutdown if safety critical",
        "Prepare replacement parts",
    ]),
    (0.6, [
        "Schedule maintenance within next 7 days",
        "Increase monitoring frequency",
        "Review operating conditions",
    ]),
    (0.4, [
        "Schedule preventive maintenance within 30 days",
        "Monitor device performance closely",
    ]),
    (0.2, [
        "Continue normal monitoring",
        "Follow regular maintenance schedule",
    ]),
)
_LOW_RISK_ACTIONS = ["Device operating normally", "No immediate action required"]

_DEVICE_HINTS = {
    DeviceType.SMART_THERMOSTAT: "Check HVAC system connections and calibration",
    DeviceType.SOLAR_INVERTER: "Inspect DC connections and cooling system",
    DeviceType.BATTERY_STORAGE: "Check battery cell balance and temperature management",
}

FEATURE_IMPORTANCE = {
    "avg_power": 0.25,
    "avg_temperature": 0.20,
    "operating_hours": 0.15,
    "power_trend_slope": 0.15,
    "anomaly_score": 0.10,
    "days_since_last_maintenance": 0.08,
    "avg_vibration": 0.07,
}


def recommend_actions(probability: float, device_type: Optional[DeviceType]) -> List[str]:
    actions = list(_LOW_RISK_ACTIONS)
    for lower, band_actions in _RECOMMENDATION_BANDS:
        if probability > lower:
            actions = list(band_actions)
            break
    if probability > DEVICE_HINT_THRESHOLD and device_type in _DEVICE_HINTS:
        actions.append(_DEVICE_HINTS[device_type])
    return actions


def daily_means(samples: Sequence[TelemetrySample]) -> List[float]:
    by_day: Dict[date, List[float]] = defaultdict(list)
    for s in samples:
        by_day[s.timestamp.date()].append(float(s.power_consumption))
    return [float(np.mean(by_day[d])) for d in sorted(by_day)]


def degradation_rate(samples: Sequence[TelemetrySample]) -> float:
    """
    Daily fractional growth of power draw: (mean of last 7 days - mean of
    first 30 days) / mean of first 30 days / 30, floored at 0.001.
    """
    if len(samples) < 30:
        return MIN_DEGRADATION_RATE
    days = daily_means(samples)
    baseline = float(np.mean(days[:30]))
    if baseline <= 0.0:
        return MIN_DEGRADATION_RATE
    recent = float(np.mean(days[-7:]))
    return max((recent - baseline) / baseline / 30.0, MIN_DEGRADATION_RATE)


def days_to_failure(probability: float, rate: float) -> float:
    days = (1.0 - probability) / max(rate, MIN_DEGRADATION_RATE) * 30.0
    return float(min(max(days, 0.0), MAX_DAYS_TO_FAILURE))


def degraded_prediction(device: Device, now: datetime, message: str, **flags) -> MaintenancePrediction:
    return MaintenancePrediction(
        device_id=device.id,
        device_name=device.name,
        device_type=device.type,
        failure_probability=0.0,
        confidence=0.0,
        recommended_actions=[message],
        last_updated=now,
        **flags,
    )


def predict_failure(
    device: Device,
    samples: Sequence[TelemetrySample],
    maintenance: Iterable[MaintenanceEvent],
    model: Optional[FailureClassifier],
    now: datetime,
    min_samples: int = MIN_SAMPLES,
    features: Optional[FeatureVector] = None,
) -> MaintenancePrediction:
    if len(samples) < min_samples:
        return degraded_prediction(device, now, INSUFFICIENT_DATA_ACTION, insufficient_data=True)
    if model is None:
        return degraded_prediction(device, now, MODEL_UNAVAILABLE_ACTION, model_available=False)

    if features is None:
        features = extract_features(samples, device.created_at, [m.created_at for m in maintenance], now)

    probability, confidence = model.predict(features)
    probability = float(min(1.0, max(0.0, probability)))
    confidence = float(min(1.0, max(0.0, confidence)))

    rate = degradation_rate(samples)
    failure_date = None
    if probability > FAILURE_DATE_THRESHOLD:
        failure_date = now + timedelta(days=days_to_failure(probability, rate))

    return MaintenancePrediction(
        device_id=device.id,
        device_name=device.name,
        device_type=device.type,
        failure_probability=round(probability, 4),
        predicted_failure_date=failure_date,
        confidence=round(confidence, 4),
        recommended_actions=recommend_actions(probability, device.type),
        feature_importance=dict(FEATURE_IMPORTANCE),
        degradation_rate=rate,
        last_updated=now,
    )
