"""
model_registry.py

Purpose:
  Narrow, swappable model contracts used by the engine, plus the statistical
  baselines that back them by default.

Contracts:
  - `FailureClassifier.predict(features) -> (probability, confidence)`
  - `SeriesForecaster.forecast(series, horizon) -> [SeriesPoint]`

Baselines:
  - `LogisticFailureClassifier`: numpy logistic regression over the 11
    standardized features. Before `fit()` it scores with a prior built from
    the degradation signals (anomaly score, power trend, maintenance age).
  - `SeasonalNaiveForecaster`: weekly seasonal mean with a residual band.

The registry is keyed by device category. A category without a model is
reported upstream as "model unavailable" (zero confidence), never raised.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from homegrid.logging_config import logger
from homegrid.models.domain import FEATURE_NAMES, DeviceType, FeatureVector


# ============================================================
# 1) FAILURE CLASSIFIER
# ============================================================

class FailureClassifier:
    """Any binary classifier producing a failure probability and a confidence."""

    def predict(self, features: FeatureVector) -> Tuple[float, float]:
        raise NotImplementedError

    def fit(self, X: Sequence[Sequence[float]], y: Sequence[bool]) -> None:
        raise NotImplementedError


def _sigmoid(z):
    return 1.0 / (1.0 + np.exp(-np.clip(z, -30.0, 30.0)))


class LogisticFailureClassifier(FailureClassifier):
    PRIOR_QUALITY = 0.6

    def __init__(self, learning_rate: float = 0.1, epochs: int = 500, l2: float = 0.01):
        self.learning_rate = learning_rate
        self.epochs = epochs
        self.l2 = l2

        self.mean_: Optional[np.ndarray] = None
        self.scale_: Optional[np.ndarray] = None
        self.weights_: Optional[np.ndarray] = None
        self.bias_: float = 0.0
        self.quality_: float = self.PRIOR_QUALITY
        self.n_samples_: int = 0

    @property
    def is_fitted(self) -> bool:
        return self.weights_ is not None

    def _prior_probability(self, f: FeatureVector) -> float:
        # relative drift of power draw per sample over the recent window
        drift = f.power_trend_slope / f.avg_power if f.avg_power > 0 else 0.0
        z = (
            -3.0
            + 3.0 * f.anomaly_score
            + 40.0 * max(0.0, drift)
            + 1.0 * min(f.days_since_last_maintenance, 365.0) / 365.0
            + 0.2 * max(0.0, f.temperature_trend_slope)
        )
        return float(_sigmoid(z))

    def predict(self, features: FeatureVector) -> Tuple[float, float]:
        if not self.is_fitted:
            p = self._prior_probability(features)
        else:
            x = (np.asarray(features.as_list(), dtype=float) - self.mean_) / self.scale_
            p = float(_sigmoid(float(x @ self.weights_) + self.bias_))
        p = float(min(1.0, max(0.0, p)))
        confidence = float(min(1.0, max(0.0, max(p, 1.0 - p) * self.quality_)))
        return p, confidence

    def fit(self, X: Sequence[Sequence[float]], y: Sequence[bool]) -> None:
        Xa = np.asarray(X, dtype=float)
        ya = np.asarray(y, dtype=float)
        if Xa.ndim != 2 or Xa.shape[1] != len(FEATURE_NAMES) or len(ya) != Xa.shape[0]:
            raise ValueError("expected an (n, %d) feature matrix and n labels" % len(FEATURE_NAMES))

        mean = Xa.mean(axis=0)
        scale = Xa.std(axis=0)
        scale[scale == 0.0] = 1.0
        Xs = (Xa - mean) / scale

        n, d = Xs.shape
        w = np.zeros(d)
        base_rate = float(np.clip(ya.mean(), 1e-3, 1 - 1e-3))
        b = float(np.log(base_rate / (1.0 - base_rate)))

        if 0.0 < ya.mean() < 1.0:
            for _ in range(self.epochs):
                p = _sigmoid(Xs @ w + b)
                err = p - ya
                w -= self.learning_rate * ((Xs.T @ err) / n + self.l2 * w)
                b -= self.learning_rate * float(err.mean())

        predicted = _sigmoid(Xs @ w + b) >= 0.5
        self.mean_, self.scale_, self.weights_, self.bias_ = mean, scale, w, b
        self.quality_ = float((predicted == (ya >= 0.5)).mean())
        self.n_samples_ = n


# ============================================================
# 2) SERIES FORECASTER
# ============================================================

@dataclass(frozen=True)
class SeriesPoint:
    estimate: float
    lower: float
    upper: float


class SeriesForecaster:
    def forecast(self, series: Sequence[float], horizon: int) -> List[SeriesPoint]:
        raise NotImplementedError


class SeasonalNaiveForecaster(SeriesForecaster):
    """
    Step k ahead = mean of the values one, two, ... seasons back at the same
    phase. The band is 1.96 * std-dev of in-sample residuals, floored at 0.
    """

    def __init__(self, season_length: int = 7, seasons: int = 4):
        self.season_length = season_length
        self.seasons = seasons

    def _seasonal_mean(self, values: np.ndarray, position: int) -> float:
        picks = [
            values[position - k * self.season_length]
            for k in range(1, self.seasons + 1)
            if 0 <= position - k * self.season_length < len(values)
        ]
        return float(np.mean(picks)) if picks else float(values.mean())

    def forecast(self, series: Sequence[float], horizon: int) -> List[SeriesPoint]:
        values = np.asarray(series, dtype=float)
        if values.size == 0 or horizon <= 0:
            return []

        residuals = [values[i] - self._seasonal_mean(values, i) for i in range(self.season_length, len(values))]
        spread = 1.96 * float(np.std(residuals)) if residuals else 0.2 * float(values.mean())

        extended = list(values)
        out: List[SeriesPoint] = []
        for _ in range(horizon):
            est = max(0.0, self._seasonal_mean(np.asarray(extended), len(extended)))
            extended.append(est)
            out.append(SeriesPoint(estimate=est, lower=max(0.0, est - spread), upper=est + spread))
        return out


# ============================================================
# 3) REGISTRY
# ============================================================

class ModelRegistry:
    """Thread-safe map of device category -> FailureClassifier."""

    def __init__(self, models: Optional[Dict[DeviceType, FailureClassifier]] = None):
        self._models: Dict[DeviceType, FailureClassifier] = dict(models or {})
        self._lock = threading.Lock()

    @classmethod
    def with_baselines(cls) -> "ModelRegistry":
        return cls({t: LogisticFailureClassifier() for t in DeviceType})

    def get(self, device_type: DeviceType) -> Optional[FailureClassifier]:
        with self._lock:
            return self._models.get(device_type)

    def register(self, device_type: DeviceType, model: FailureClassifier) -> None:
        with self._lock:
            self._models[device_type] = model
        logger.info("Registered failure model for %s (%s)", device_type.value, type(model).__name__)

    def categories(self) -> List[DeviceType]:
        with self._lock:
            return list(self._models)
