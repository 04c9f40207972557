"""
forecaster.py

Purpose:
  Short-horizon demand and solar-generation forecasts built from explainable
  statistics.

Demand Model:
  predicted(ts) = baseline(dow, hour) * weather_adjustment(ts) * seasonal_adjustment(ts)

  - `baseline` is the household load (sum over devices, W) averaged over every
    observed hour that falls in the same (day-of-week, hour) slot.
  - Bounds are predicted * 0.8 / predicted * 1.2.
  - Confidence = 0.95 * distance_decay * slot_density, clipped to [0, 1].
    It never increases with distance from `now`.

Solar Model:
  irradiance * panel_efficiency * temperature_derate * cloud_derate (W per m2
  of panel, scaled by the installed area),
  confidence 0.75 - 0.05 * |days from now|, floored at 0.

Guarantees:
  - `now` is always an argument; identical inputs give identical output.
  - Weather and seasonal adjustments are plain callables and can be swapped.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from homegrid.models.domain import (
    EnergyForecast,
    ForecastPoint,
    SolarForecast,
    TelemetrySample,
    WeatherSample,
)

Slot = Tuple[int, int]  # (weekday, hour)

WeatherAdjustment = Callable[[datetime, Sequence[WeatherSample]], float]
SeasonalAdjustment = Callable[[datetime], float]

LOWER_FACTOR = 0.8
UPPER_FACTOR = 1.2
BASE_CONFIDENCE = 0.95
CONFIDENCE_DECAY_PER_DAY = 0.05
FULL_SLOT_OBSERVATIONS = 4   # four weeks of history makes a slot "dense"
WEATHER_MATCH_WINDOW = timedelta(hours=3)

SOLAR_BASE_CONFIDENCE = 0.75
SOLAR_CONFIDENCE_DECAY_PER_DAY = 0.05
SOLAR_REFERENCE_TEMP_C = 25.0
SOLAR_TEMP_DERATE_PER_C = 0.004
SOLAR_CLOUD_DERATE = 0.8


# ============================================================
# 1) HISTORICAL BASELINE
# ============================================================

@dataclass(frozen=True)
class SlotStats:
    mean_w: float
    std_w: float
    count: int


def _hour_floor(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


def hourly_household_load(samples: Sequence[TelemetrySample]) -> Dict[datetime, float]:
    """
    Household load per clock hour: each device's mean reading in the hour,
    summed across devices.
    """
    per_device: Dict[Tuple[datetime, int], List[float]] = defaultdict(list)
    for s in samples:
        per_device[(_hour_floor(s.timestamp), s.device_id)].append(float(s.power_consumption))

    load: Dict[datetime, float] = defaultdict(float)
    for (hour, _device_id), readings in per_device.items():
        load[hour] += float(np.mean(readings))
    return dict(load)


def build_slot_baseline(samples: Sequence[TelemetrySample]) -> Dict[Slot, SlotStats]:
    grouped: Dict[Slot, List[float]] = defaultdict(list)
    for hour, load_w in hourly_household_load(samples).items():
        grouped[(hour.weekday(), hour.hour)].append(load_w)

    return {
        slot: SlotStats(mean_w=float(np.mean(v)), std_w=float(np.std(v)), count=len(v))
        for slot, v in grouped.items()
    }


def _fallback_mean(baseline: Dict[Slot, SlotStats], hour: int) -> float:
    """Same hour on any weekday, then the overall mean, then 0."""
    same_hour = [st.mean_w for (dow, h), st in baseline.items() if h == hour]
    if same_hour:
        return float(np.mean(same_hour))
    if baseline:
        return float(np.mean([st.mean_w for st in baseline.values()]))
    return 0.0


# ============================================================
# 2) ADJUSTMENTS (pluggable)
# ============================================================

def identity_weather_adjustment(ts: datetime, weather: Sequence[WeatherSample]) -> float:
    return 1.0


def nearest_weather(ts: datetime, weather: Sequence[WeatherSample]) -> Optional[WeatherSample]:
    best: Optional[WeatherSample] = None
    best_gap: Optional[timedelta] = None
    for w in weather:
        gap = abs(w.timestamp - ts)
        if gap <= WEATHER_MATCH_WINDOW and (best_gap is None or gap < best_gap):
            best, best_gap = w, gap
    return best


def comfort_band_weather_adjustment(
    comfort_min_c: float = 20.0,
    comfort_max_c: float = 24.0,
    per_degree: float = 0.025,
    cloud_lighting: float = 0.05,
    cap: float = 1.5,
) -> WeatherAdjustment:
    """
    Heating/cooling load grows with each degree outside the comfort band;
    heavy cloud adds a little lighting load. Identity when no weather sample
    is close enough to `ts`.
    """

    def adjust(ts: datetime, weather: Sequence[WeatherSample]) -> float:
        w = nearest_weather(ts, weather)
        if w is None:
            return 1.0
        t = w.temperature_c
        outside = max(0.0, comfort_min_c - t) + max(0.0, t - comfort_max_c)
        factor = 1.0 + outside * per_degree + (w.cloud_cover_pct / 100.0) * cloud_lighting
        return float(min(cap, max(0.0, factor)))

    return adjust


_MONTH_FACTORS = {
    12: 1.15, 1: 1.15, 2: 1.10,   # heating season
    6: 1.05, 7: 1.10, 8: 1.10,    # cooling season
}


def monthly_seasonal_adjustment(ts: datetime) -> float:
    return _MONTH_FACTORS.get(ts.month, 1.0)


# ============================================================
# 3) DEMAND FORECAST
# ============================================================

def forecast_confidence(hours_ahead: float, slot_count: int) -> float:
    days_ahead = max(0.0, hours_ahead) / 24.0
    decay = max(0.0, 1.0 - days_ahead * CONFIDENCE_DECAY_PER_DAY)
    density = min(1.0, slot_count / float(FULL_SLOT_OBSERVATIONS))
    return float(min(1.0, max(0.0, BASE_CONFIDENCE * decay * density)))


def peak_and_low_periods(points: Sequence[ForecastPoint]) -> Tuple[List[datetime], List[datetime]]:
    """Timestamps above the 90th / below the 10th percentile of point estimates."""
    if not points:
        return [], []
    values = np.array([p.point_estimate for p in points], dtype=float)
    hi = float(np.percentile(values, 90))
    lo = float(np.percentile(values, 10))
    peaks = [p.timestamp for p in points if p.point_estimate > hi]
    lows = [p.timestamp for p in points if p.point_estimate < lo]
    return peaks, lows


def forecast_demand(
    history: Sequence[TelemetrySample],
    start: datetime,
    days: int,
    now: datetime,
    weather: Sequence[WeatherSample] = (),
    weather_adjustment: WeatherAdjustment = identity_weather_adjustment,
    seasonal_adjustment: SeasonalAdjustment = monthly_seasonal_adjustment,
) -> EnergyForecast:
    """Hourly demand forecast (W per hour slot) for `days` days from `start`."""
    baseline = build_slot_baseline(history)
    first = _hour_floor(start)
    hours = max(0, int(days)) * 24

    points: List[ForecastPoint] = []
    for h in range(hours):
        ts = first + timedelta(hours=h)
        stats = baseline.get((ts.weekday(), ts.hour))
        base = stats.mean_w if stats is not None else _fallback_mean(baseline, ts.hour)
        count = stats.count if stats is not None else 0

        wf = float(weather_adjustment(ts, weather))
        sf = float(seasonal_adjustment(ts))
        predicted = max(0.0, base * wf * sf)

        points.append(
            ForecastPoint(
                timestamp=ts,
                point_estimate=round(predicted, 4),
                lower_bound=round(predicted * LOWER_FACTOR, 4),
                upper_bound=round(predicted * UPPER_FACTOR, 4),
                confidence=forecast_confidence((ts - now).total_seconds() / 3600.0, count),
                weather_factor=wf,
                seasonal_factor=sf,
                sample_count=count,
            )
        )

    peaks, lows = peak_and_low_periods(points)
    return EnergyForecast(
        generated_at=now,
        start=first,
        end=first + timedelta(hours=hours),
        points=points,
        total_predicted=float(sum(p.point_estimate for p in points)),
        average_confidence=float(np.mean([p.confidence for p in points])) if points else 0.0,
        peak_periods=peaks,
        low_periods=lows,
    )


# ============================================================
# 4) SOLAR FORECAST
# ============================================================

def solar_point_estimate(w: WeatherSample, panel_efficiency: float = 0.15, panel_area_m2: float = 1.0) -> float:
    base = max(0.0, w.solar_irradiance * panel_efficiency) * panel_area_m2
    temperature_derate = 1.0 - max(0.0, w.temperature_c - SOLAR_REFERENCE_TEMP_C) * SOLAR_TEMP_DERATE_PER_C
    cloud_derate = 1.0 - (w.cloud_cover_pct / 100.0) * SOLAR_CLOUD_DERATE
    return max(0.0, base * temperature_derate * cloud_derate)


def solar_confidence(ts: datetime, now: datetime) -> float:
    days = abs((ts - now).total_seconds()) / 86400.0
    return float(min(1.0, max(0.0, SOLAR_BASE_CONFIDENCE - days * SOLAR_CONFIDENCE_DECAY_PER_DAY)))


def forecast_solar(
    weather: Sequence[WeatherSample],
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    panel_efficiency: float = 0.15,
    panel_area_m2: float = 1.0,
) -> SolarForecast:
    """One point per weather sample in [start, end), oldest first."""
    selected = sorted(
        (w for w in weather if (start is None or w.timestamp >= start) and (end is None or w.timestamp < end)),
        key=lambda w: w.timestamp,
    )
    points = []
    for w in selected:
        predicted = solar_point_estimate(w, panel_efficiency, panel_area_m2)
        points.append(
            ForecastPoint(
                timestamp=w.timestamp,
                point_estimate=round(predicted, 4),
                lower_bound=round(predicted * LOWER_FACTOR, 4),
                upper_bound=round(predicted * UPPER_FACTOR, 4),
                confidence=solar_confidence(w.timestamp, now),
            )
        )
    return SolarForecast(
        generated_at=now,
        points=points,
        total_generation=float(sum(p.point_estimate for p in points)),
    )
