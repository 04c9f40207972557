"""
config.py

Purpose:
  Environment-driven settings for the analytics and optimization engine.
  Every tariff, window and heuristic constant used by the services lives here
  so it can be tuned per deployment without touching code.

Conventions:
  - Rates are currency per kWh.
  - Hour windows are "start-end" in local hours; a window may wrap midnight
    ("23-6").
  - Intervals are minutes, delays are seconds.
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Tuple

from pydantic import BaseModel

_TRUE = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in _TRUE


def env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return int(val.strip())
    except Exception:
        return default


def env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return float(val.strip())
    except Exception:
        return default


def env_str(name: str, default: str) -> str:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip()


def env_hours(name: str, default: Tuple[int, int]) -> Tuple[int, int]:
    """Parses "17-21" into (17, 21). Falls back to default on bad input."""
    val = os.getenv(name)
    if val is None:
        return default
    try:
        start_s, end_s = val.strip().split("-", 1)
        start, end = int(start_s) % 24, int(end_s) % 24
        return start, end
    except Exception:
        return default


def hour_in_window(hour: int, window: Tuple[int, int]) -> bool:
    start, end = window
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    # wraps midnight
    return hour >= start or hour < end


class EngineSettings(BaseModel):
    # Tariffs (currency/kWh)
    peak_rate: float = 0.30
    standard_rate: float = 0.18
    offpeak_rate: float = 0.10
    solar_feed_in_rate: float = 0.05

    # Tariff windows (local hours)
    peak_hours: Tuple[int, int] = (17, 21)
    offpeak_hours: Tuple[int, int] = (23, 6)

    # Thermal comfort band (°C)
    comfort_min_c: float = 20.0
    comfort_max_c: float = 24.0

    # Policy constants (heuristics, not physical truths)
    emissions_kg_per_kwh: float = 0.5
    dr_incentive_rate: float = 0.5
    panel_efficiency: float = 0.15
    panel_area_m2: float = 20.0

    # Predictive maintenance
    min_samples_for_prediction: int = 100
    maintenance_alert_threshold: float = 0.7
    feedback_retrain_threshold: int = 50

    # Execution & scheduling
    plan_action_delay_s: float = 2.0
    auto_execute_max_comfort: float = 2.0
    auto_execute_max_strategies: int = 3
    optimization_interval_minutes: int = 15
    maintenance_interval_minutes: int = 60
    scheduler_enabled: bool = False
    worker_pool_size: int = 4

    database_url: str = "sqlite:///homegrid.db"

    def rate_for_hour(self, hour: int) -> float:
        if hour_in_window(hour, self.peak_hours):
            return self.peak_rate
        if hour_in_window(hour, self.offpeak_hours):
            return self.offpeak_rate
        return self.standard_rate

    def is_peak(self, hour: int) -> bool:
        return hour_in_window(hour, self.peak_hours)

    def is_offpeak(self, hour: int) -> bool:
        return hour_in_window(hour, self.offpeak_hours)


def load_settings() -> EngineSettings:
    d = EngineSettings()
    return EngineSettings(
        peak_rate=env_float("PEAK_RATE", d.peak_rate),
        standard_rate=env_float("STANDARD_RATE", d.standard_rate),
        offpeak_rate=env_float("OFFPEAK_RATE", d.offpeak_rate),
        solar_feed_in_rate=env_float("SOLAR_FEED_IN_RATE", d.solar_feed_in_rate),
        peak_hours=env_hours("PEAK_HOURS", d.peak_hours),
        offpeak_hours=env_hours("OFFPEAK_HOURS", d.offpeak_hours),
        comfort_min_c=env_float("COMFORT_MIN_C", d.comfort_min_c),
        comfort_max_c=env_float("COMFORT_MAX_C", d.comfort_max_c),
        emissions_kg_per_kwh=env_float("EMISSIONS_KG_PER_KWH", d.emissions_kg_per_kwh),
        dr_incentive_rate=env_float("DR_INCENTIVE_RATE", d.dr_incentive_rate),
        panel_efficiency=env_float("PANEL_EFFICIENCY", d.panel_efficiency),
        panel_area_m2=env_float("PANEL_AREA_M2", d.panel_area_m2),
        min_samples_for_prediction=env_int("MIN_SAMPLES_FOR_PREDICTION", d.min_samples_for_prediction),
        maintenance_alert_threshold=env_float("MAINTENANCE_ALERT_THRESHOLD", d.maintenance_alert_threshold),
        feedback_retrain_threshold=env_int("FEEDBACK_RETRAIN_THRESHOLD", d.feedback_retrain_threshold),
        plan_action_delay_s=env_float("PLAN_ACTION_DELAY_S", d.plan_action_delay_s),
        optimization_interval_minutes=env_int("OPTIMIZATION_INTERVAL_MINUTES", d.optimization_interval_minutes),
        maintenance_interval_minutes=env_int("MAINTENANCE_INTERVAL_MINUTES", d.maintenance_interval_minutes),
        scheduler_enabled=env_flag("SCHEDULER_ENABLED", d.scheduler_enabled),
        worker_pool_size=max(1, env_int("WORKER_POOL_SIZE", d.worker_pool_size)),
        database_url=env_str("DATABASE_URL", d.database_url),
    )


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    return load_settings()
