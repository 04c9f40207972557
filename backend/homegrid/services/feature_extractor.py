"""
feature_extractor.py

Purpose:
  Turns a device's raw telemetry history into the fixed-size `FeatureVector`
  consumed by the failure classifiers.

Windows:
  - **recent**: the last `RECENT_WINDOW` samples (means, std-dev, trends).
  - **older**: everything before that (baseline for the anomaly score).

Guarantees:
  - Pure function of its inputs; no I/O and no hidden state.
  - Empty or degenerate windows resolve to 0 (trend, anomaly score) or to the
    365-day maintenance default, never to an exception.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

import numpy as np

from homegrid.models.domain import FeatureVector, TelemetrySample

RECENT_WINDOW = 30
MAINTENANCE_PROXIMITY = timedelta(days=7)
DEFAULT_DAYS_SINCE_MAINTENANCE = 365.0
ANOMALY_Z_CAP = 3.0


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def _pstdev(values: Sequence[float]) -> float:
    return float(np.std(values)) if len(values) else 0.0


def trend_slope(values: Sequence[float]) -> float:
    """OLS slope of value against sample index. 0 for fewer than 2 points."""
    n = len(values)
    if n < 2:
        return 0.0
    x = np.arange(n, dtype=float)
    y = np.asarray(values, dtype=float)
    x_c = x - x.mean()
    denom = float(np.sum(x_c * x_c))
    if denom == 0.0:
        return 0.0
    return float(np.sum(x_c * (y - y.mean())) / denom)


def anomaly_score(recent: Sequence[float], older: Sequence[float]) -> float:
    """Recent-vs-older mean shift in older std-devs, clipped to 3 and scaled to [0, 1]."""
    if not len(older) or not len(recent):
        return 0.0
    sd = _pstdev(older)
    if sd <= 0.0 or not np.isfinite(sd):
        return 0.0
    z = abs(_mean(recent) - _mean(older)) / sd
    return float(min(z, ANOMALY_Z_CAP) / ANOMALY_Z_CAP)


def days_since_last_maintenance(
    samples: Sequence[TelemetrySample],
    maintenance_times: Iterable[datetime],
    now: datetime,
) -> float:
    """
    Days from `now` back to the latest sample recorded within 7 days of any
    maintenance event. 365 when no sample qualifies.
    """
    events = list(maintenance_times)
    if not events:
        return DEFAULT_DAYS_SINCE_MAINTENANCE

    latest: Optional[datetime] = None
    for s in samples:
        if any(abs(s.timestamp - m) <= MAINTENANCE_PROXIMITY for m in events):
            if latest is None or s.timestamp > latest:
                latest = s.timestamp

    if latest is None:
        return DEFAULT_DAYS_SINCE_MAINTENANCE
    return max(0.0, (now - latest).total_seconds() / 86400.0)


def extract_features(
    samples: Sequence[TelemetrySample],
    device_created_at: datetime,
    maintenance_times: Iterable[datetime] = (),
    now: Optional[datetime] = None,
) -> FeatureVector:
    """
    `samples` must be ordered by timestamp (oldest first). `now` defaults to
    the newest sample's timestamp so the result depends on the inputs only.
    """
    ordered: List[TelemetrySample] = list(samples)
    if now is None:
        now = ordered[-1].timestamp if ordered else device_created_at

    recent = ordered[-RECENT_WINDOW:]
    older = ordered[:-RECENT_WINDOW] if len(ordered) > RECENT_WINDOW else []

    power_recent = [s.power_consumption for s in recent]
    power_older = [s.power_consumption for s in older]
    temps = [s.temperature for s in recent if s.temperature is not None]
    vibs = [s.vibration for s in recent if s.vibration is not None]

    return FeatureVector(
        avg_power=_mean(power_recent),
        std_dev_power=_pstdev(power_recent),
        avg_voltage=_mean([s.voltage for s in recent]),
        avg_current=_mean([s.current for s in recent]),
        avg_temperature=_mean(temps),
        avg_vibration=_mean(vibs),
        operating_hours=max(0.0, (now - device_created_at).total_seconds() / 3600.0),
        power_trend_slope=trend_slope(power_recent),
        temperature_trend_slope=trend_slope(temps),
        days_since_last_maintenance=days_since_last_maintenance(ordered, maintenance_times, now),
        anomaly_score=anomaly_score(power_recent, power_older),
    )
