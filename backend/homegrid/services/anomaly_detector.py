"""
anomaly_detector.py

Trailing-window z-score detector for short numeric series (a few hundred
points at most).

Each point i >= window is compared against the mean/std-dev of the `window`
points before it. Severity is |z| clipped at 5 and scaled to [0, 1], so a
5-sigma deviation scores 1.0. A point is anomalous when its severity exceeds
the threshold (default 0.8, i.e. 4 sigma).
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import numpy as np

from homegrid.models.domain import AnomalyDetectionResult, AnomalyPoint

DEFAULT_THRESHOLD = 0.8
SEVERITY_Z_CAP = 5.0
_EPS = 1e-12


def default_window(n: int) -> int:
    return max(1, n // 4)


def point_severity(value: float, baseline: Sequence[float]) -> float:
    mean = float(np.mean(baseline))
    sd = float(np.std(baseline))
    deviation = abs(float(value) - mean)
    if sd <= _EPS:
        # flat baseline: any visible deviation is maximally severe
        return 1.0 if deviation > _EPS * max(1.0, abs(mean)) else 0.0
    return float(min(deviation / sd, SEVERITY_Z_CAP) / SEVERITY_Z_CAP)


def synthesize_timestamps(n: int, now: datetime) -> List[datetime]:
    """One minute apart, the last one at `now`."""
    return [now - timedelta(minutes=(n - 1 - i)) for i in range(n)]


def detect_anomalies(
    values: Sequence[float],
    timestamps: Optional[Sequence[datetime]] = None,
    window_size: Optional[int] = None,
    threshold: float = DEFAULT_THRESHOLD,
    now: Optional[datetime] = None,
    device_id: Optional[int] = None,
) -> AnomalyDetectionResult:
    now = now or datetime.now()
    series = [float(v) for v in values]
    n = len(series)
    window = max(1, int(window_size)) if window_size else default_window(n)

    if timestamps is not None and len(timestamps) != n:
        raise ValueError("timestamps must match values in length")
    ts = list(timestamps) if timestamps is not None else synthesize_timestamps(n, now)

    anomalies: List[AnomalyPoint] = []
    for i in range(window, n):
        sev = point_severity(series[i], series[i - window:i])
        if sev > threshold:
            anomalies.append(AnomalyPoint(index=i, value=series[i], timestamp=ts[i], severity=sev))

    confidence = float(np.mean([a.severity for a in anomalies])) if anomalies else 0.0
    return AnomalyDetectionResult(
        device_id=device_id,
        has_anomalies=bool(anomalies),
        anomaly_count=len(anomalies),
        anomalies=anomalies,
        confidence=confidence,
        window_size=window,
        threshold=threshold,
        detected_at=now,
    )
