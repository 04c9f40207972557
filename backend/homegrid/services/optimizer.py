"""
optimizer.py

Purpose:
  Generates, scores and ranks energy-optimization strategies for a time
  window, and turns selected strategies into executable plans.

Catalogue (each generator is independent and pure):
  1. Load shifting          - move the flexible share of household load off-peak.
  2. Peak shaving           - trim non-essential controllable load during peak hours.
  3. Battery optimization   - discharge on-peak / bank forecast solar surplus.
  4. Thermal optimization   - setpoint setback inside the comfort band.
  5. Appliance scheduling   - run each deferrable appliance in the off-peak window.

Ranking:
  score = potential_savings / (1 + comfort_impact), descending; ties go to
  the lower implementation complexity. Strategies with savings <= 0 are
  dropped before ranking.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import numpy as np

from homegrid.config import EngineSettings
from homegrid.models.domain import (
    DEFERRABLE_TYPES,
    THERMAL_TYPES,
    ActionType,
    BatterySnapshot,
    Device,
    DeviceStatus,
    DeviceType,
    EnergyForecast,
    OptimizationAction,
    OptimizationPlan,
    OptimizationResult,
    OptimizationStrategy,
    OptimizationType,
    SolarForecast,
    WeatherSample,
)

TOP_PRIORITY_COUNT = 3

LOAD_SHIFT_FRACTION = 0.15
PEAK_SHAVE_FRACTION = 0.20
THERMAL_SETBACK_C = 2.0
THERMAL_SAVINGS_PER_C = 0.03
BATTERY_RESERVE_PCT = 20.0
BATTERY_CHARGE_CEILING_PCT = 90.0

# Typical run length per cycle (hours)
CYCLE_HOURS = {
    DeviceType.WASHING_MACHINE: 1.5,
    DeviceType.DRYER: 1.0,
    DeviceType.DISHWASHER: 2.0,
    DeviceType.EV_CHARGER: 4.0,
}

# Loads that must never be throttled
ESSENTIAL_TYPES = {
    DeviceType.REFRIGERATOR,
    DeviceType.ENERGY_METER,
    DeviceType.SOLAR_INVERTER,
    DeviceType.BATTERY_STORAGE,
}


@dataclass
class OptimizationInputs:
    """Current-state snapshot the generators read. Loads are in W."""
    window_start: datetime
    window_end: datetime
    devices: List[Device] = field(default_factory=list)
    device_load_w: Dict[int, float] = field(default_factory=dict)
    current_consumption_w: float = 0.0
    batteries: List[BatterySnapshot] = field(default_factory=list)
    demand_forecast: Optional[EnergyForecast] = None
    solar_forecast: Optional[SolarForecast] = None
    weather: List[WeatherSample] = field(default_factory=list)

    def window_hours(self) -> List[datetime]:
        out = []
        t = self.window_start.replace(minute=0, second=0, microsecond=0)
        while t < self.window_end:
            out.append(t)
            t += timedelta(hours=1)
        return out

    def active_devices(self) -> List[Device]:
        return [d for d in self.devices if d.status == DeviceStatus.ACTIVE and d.is_online]

    def load_of(self, device: Device) -> float:
        return float(self.device_load_w.get(device.id, device.power_rating_w))


# ============================================================
# 1) TARIFF HELPERS
# ============================================================

def peak_hours_in(inputs: OptimizationInputs, settings: EngineSettings) -> int:
    return sum(1 for h in inputs.window_hours() if settings.is_peak(h.hour))


def max_rate_in(inputs: OptimizationInputs, settings: EngineSettings) -> float:
    hours = inputs.window_hours()
    if not hours:
        return settings.rate_for_hour(inputs.window_start.hour)
    return max(settings.rate_for_hour(h.hour) for h in hours)


def mean_rate_in(inputs: OptimizationInputs, settings: EngineSettings) -> float:
    hours = inputs.window_hours()
    if not hours:
        return settings.rate_for_hour(inputs.window_start.hour)
    return float(np.mean([settings.rate_for_hour(h.hour) for h in hours]))


def solar_surplus_kwh(inputs: OptimizationInputs) -> float:
    """Forecast solar minus forecast demand, summed over the window's hours."""
    if inputs.solar_forecast is None:
        return 0.0
    demand = {}
    if inputs.demand_forecast is not None:
        demand = {p.timestamp: p.point_estimate for p in inputs.demand_forecast.points}

    surplus_wh = 0.0
    for p in inputs.solar_forecast.points:
        if inputs.window_start <= p.timestamp < inputs.window_end:
            hour = p.timestamp.replace(minute=0, second=0, microsecond=0)
            surplus_wh += max(0.0, p.point_estimate - demand.get(hour, 0.0))
    return surplus_wh / 1000.0


# ============================================================
# 2) STRATEGY GENERATORS
# ============================================================

def load_shifting_strategy(inputs: OptimizationInputs, settings: EngineSettings) -> List[OptimizationStrategy]:
    peak_h = peak_hours_in(inputs, settings)
    kwh = inputs.current_consumption_w * LOAD_SHIFT_FRACTION * peak_h / 1000.0
    savings = kwh * (settings.peak_rate - settings.offpeak_rate)
    return [
        OptimizationStrategy(
            name="Load Shifting",
            type=OptimizationType.LOAD_SHIFTING,
            description=f"Move {int(LOAD_SHIFT_FRACTION * 100)}% of household load from {peak_h} peak hour(s) to off-peak",
            energy_savings_kwh=kwh,
            potential_savings=max(0.0, savings),
            comfort_impact=2.0,
            implementation_complexity=3.0,
            auto_execute=False,
            action_type=ActionType.LOAD_SHIFTING,
            parameters={
                "shift_fraction": LOAD_SHIFT_FRACTION,
                "to_hours": list(settings.offpeak_hours),
            },
        )
    ]


def peak_shaving_strategy(inputs: OptimizationInputs, settings: EngineSettings) -> List[OptimizationStrategy]:
    peak_h = peak_hours_in(inputs, settings)
    targets = [
        d for d in inputs.active_devices()
        if d.controllable and d.type not in ESSENTIAL_TYPES and inputs.load_of(d) > 0
    ]
    reducible_w = sum(inputs.load_of(d) for d in targets) * PEAK_SHAVE_FRACTION
    kwh = reducible_w * peak_h / 1000.0
    return [
        OptimizationStrategy(
            name="Peak Shaving",
            type=OptimizationType.PEAK_SHAVING,
            description=f"Reduce non-essential load by {int(PEAK_SHAVE_FRACTION * 100)}% during peak hours",
            energy_savings_kwh=kwh,
            potential_savings=kwh * settings.peak_rate,
            comfort_impact=3.0,
            implementation_complexity=4.0,
            auto_execute=False,
            action_type=ActionType.DEVICE_CONTROL,
            parameters={
                "action": "reduce_power",
                "reduction_pct": int(PEAK_SHAVE_FRACTION * 100),
                "device_ids": [d.id for d in targets],
            },
        )
    ]


def battery_strategy(inputs: OptimizationInputs, settings: EngineSettings) -> List[OptimizationStrategy]:
    peak_h = peak_hours_in(inputs, settings)
    surplus = solar_surplus_kwh(inputs)
    out = []
    for b in inputs.batteries:
        usable = b.capacity_kwh * max(0.0, b.charge_level_pct - BATTERY_RESERVE_PCT) / 100.0
        discharge_kwh = min(usable, b.max_power_kw * peak_h)
        headroom = b.capacity_kwh * max(0.0, BATTERY_CHARGE_CEILING_PCT - b.charge_level_pct) / 100.0
        charge_kwh = min(surplus, headroom)

        savings = (
            discharge_kwh * (settings.peak_rate - settings.offpeak_rate)
            + charge_kwh * (settings.peak_rate - settings.solar_feed_in_rate)
        )
        mode = "DISCHARGING" if discharge_kwh >= charge_kwh else "CHARGING"
        out.append(
            OptimizationStrategy(
                name=f"Battery Optimization #{b.device_id}",
                type=OptimizationType.BATTERY_OPTIMIZATION,
                description="Discharge during peak tariff and bank forecast solar surplus",
                energy_savings_kwh=discharge_kwh + charge_kwh,
                potential_savings=max(0.0, savings),
                comfort_impact=0.0,
                implementation_complexity=5.0,
                auto_execute=True,
                target_device_id=b.device_id,
                action_type=ActionType.BATTERY_OPERATION,
                parameters={
                    "mode": mode,
                    "discharge_kwh": round(discharge_kwh, 4),
                    "charge_kwh": round(charge_kwh, 4),
                    "reserve_pct": BATTERY_RESERVE_PCT,
                },
            )
        )
    return out


def thermal_strategy(inputs: OptimizationInputs, settings: EngineSettings) -> List[OptimizationStrategy]:
    devices = [d for d in inputs.active_devices() if d.controllable and d.type in THERMAL_TYPES]
    if not devices:
        return []

    hours = len(inputs.window_hours())
    temps = [w.temperature_c for w in inputs.weather if inputs.window_start <= w.timestamp < inputs.window_end]
    outdoor = float(np.mean(temps)) if temps else None
    cooling = outdoor is not None and outdoor > settings.comfort_max_c
    offset = THERMAL_SETBACK_C if cooling else -THERMAL_SETBACK_C

    thermal_w = sum(inputs.load_of(d) for d in devices)
    kwh = thermal_w * hours * THERMAL_SETBACK_C * THERMAL_SAVINGS_PER_C / 1000.0
    return [
        OptimizationStrategy(
            name="Thermal Optimization",
            type=OptimizationType.THERMAL_OPTIMIZATION,
            description=f"Shift setpoints by {offset:+.1f} C within the comfort band",
            energy_savings_kwh=kwh,
            potential_savings=kwh * mean_rate_in(inputs, settings),
            comfort_impact=2.5,
            implementation_complexity=2.0,
            auto_execute=False,
            target_device_id=devices[0].id if len(devices) == 1 else None,
            action_type=ActionType.THERMAL_ADJUSTMENT,
            parameters={
                "setpoint_offset_c": offset,
                "min_c": settings.comfort_min_c,
                "max_c": settings.comfort_max_c,
                "device_ids": [d.id for d in devices],
            },
        )
    ]


def appliance_scheduling_strategy(inputs: OptimizationInputs, settings: EngineSettings) -> List[OptimizationStrategy]:
    rate_gap = max_rate_in(inputs, settings) - settings.offpeak_rate
    out = []
    for d in inputs.active_devices():
        if not d.controllable or d.type not in DEFERRABLE_TYPES:
            continue
        kwh = inputs.load_of(d) * CYCLE_HOURS.get(d.type, 1.0) / 1000.0
        out.append(
            OptimizationStrategy(
                name=f"Appliance Scheduling: {d.name}",
                type=OptimizationType.APPLIANCE_SCHEDULING,
                description=f"Run {d.name} at the start of the off-peak window",
                energy_savings_kwh=kwh,
                potential_savings=max(0.0, kwh * rate_gap),
                comfort_impact=1.0,
                implementation_complexity=2.0,
                auto_execute=True,
                target_device_id=d.id,
                action_type=ActionType.SCHEDULE_CHANGE,
                parameters={"start_hour": settings.offpeak_hours[0]},
            )
        )
    return out


GENERATORS = (
    load_shifting_strategy,
    peak_shaving_strategy,
    battery_strategy,
    thermal_strategy,
    appliance_scheduling_strategy,
)


def generate_strategies(inputs: OptimizationInputs, settings: EngineSettings) -> List[OptimizationStrategy]:
    """Every catalogue candidate with strictly positive savings, unranked."""
    out = []
    for gen in GENERATORS:
        for s in gen(inputs, settings):
            s.potential_savings = round(s.potential_savings, 4)
            if s.potential_savings > 0:
                out.append(s)
    return out


# ============================================================
# 3) RANKING & AGGREGATES
# ============================================================

def ranking_score(strategy: OptimizationStrategy) -> float:
    return strategy.potential_savings / (1.0 + strategy.comfort_impact)


def rank_strategies(strategies: Sequence[OptimizationStrategy]) -> List[OptimizationStrategy]:
    for s in strategies:
        s.ranking_score = ranking_score(s)
    return sorted(strategies, key=lambda s: (-s.ranking_score, s.implementation_complexity, s.name))


def comfort_score(strategies: Sequence[OptimizationStrategy]) -> float:
    if not strategies:
        return 1.0
    return float(1.0 - np.mean([s.comfort_impact for s in strategies]) / 10.0)


def recommended_actions(ranked: Sequence[OptimizationStrategy]) -> List[str]:
    out = []
    if ranked:
        top = ranked[0]
        out.append(f"Implement {top.name} for maximum savings of ${top.potential_savings:.2f}")
    kinds = {s.type for s in ranked}
    if kinds & {OptimizationType.LOAD_SHIFTING, OptimizationType.APPLIANCE_SCHEDULING}:
        out.append("Schedule high-energy appliances during off-peak hours")
    if OptimizationType.BATTERY_OPTIMIZATION in kinds:
        out.append("Optimize battery charging/discharging cycles based on energy rates")
    return out


def optimize(inputs: OptimizationInputs, settings: EngineSettings, now: datetime) -> OptimizationResult:
    ranked = rank_strategies(generate_strategies(inputs, settings))
    priority = ranked[:TOP_PRIORITY_COUNT]
    total_kwh = float(sum(s.energy_savings_kwh for s in ranked))

    return OptimizationResult(
        optimized_at=now,
        window_start=inputs.window_start,
        window_end=inputs.window_end,
        current_consumption_w=inputs.current_consumption_w,
        strategies=ranked,
        implementation_priority=priority,
        total_potential_savings=float(sum(s.potential_savings for s in ranked)),
        total_energy_savings_kwh=total_kwh,
        estimated_cost_savings=float(sum(s.potential_savings for s in priority)),
        comfort_score=comfort_score(ranked),
        environmental_impact_kg_co2=total_kwh * settings.emissions_kg_per_kwh,
        recommended_actions=recommended_actions(ranked),
    )


# ============================================================
# 4) SELECTION & PLAN CONVERSION
# ============================================================

def select_auto_executable(
    ranked: Sequence[OptimizationStrategy],
    max_comfort: float = 2.0,
    max_count: int = 3,
) -> List[OptimizationStrategy]:
    picked = [s for s in ranked if s.auto_execute and s.comfort_impact < max_comfort]
    return picked[:max_count]


def strategy_to_plan(strategy: OptimizationStrategy, now: Optional[datetime] = None) -> OptimizationPlan:
    """One action per targeted device, in listed order; a household-wide action when none."""
    params = {k: v for k, v in strategy.parameters.items() if k != "device_ids"}
    params["strategy"] = strategy.name

    device_ids = list(strategy.parameters.get("device_ids") or [])
    if not device_ids:
        device_ids = [strategy.target_device_id]

    actions = [
        OptimizationAction(
            action_type=strategy.action_type,
            device_id=device_id,
            parameters=dict(params),
            execution_order=i + 1,
        )
        for i, device_id in enumerate(device_ids)
    ]
    return OptimizationPlan(
        name=f"Auto: {strategy.name}",
        actions=actions,
        created_at=now or datetime.now(),
    )
