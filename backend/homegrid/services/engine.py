"""
engine.py

Purpose:
  `EnergyEngineService` is the facade every caller (HTTP routes, the periodic
  driver, tests) talks to. It wires the pure analytics to the collaborators:

    SqlDataStore  --snapshot-->  analytics  --results-->  EventBus
                                      |
                                      +--plans/commands--> PlanExecutor / CommandChannel

Key Responsibilities:
  1. **Read once per run**: each sweep loads a `ReadSnapshot` and fans
     per-device work out over a thread pool. Workers never touch the store.
  2. **Degrade, don't fail**: analytics shortfalls come back as low-confidence
     results; only unknown devices (`NotFoundError`) and collaborator outages
     (`UpstreamUnavailableError`) reach the caller.
  3. **Side effects**: maintenance records, alerts, plan status and model
     feedback are written back through the store.
"""
from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from homegrid import clock
from homegrid.config import EngineSettings
from homegrid.errors import NotFoundError
from homegrid.logging_config import logger
from homegrid.models.domain import (
    AlertSeverity,
    AnomalyDetectionResult,
    Device,
    DemandResponseEvent,
    DemandResponseResult,
    DeviceStatus,
    DeviceType,
    EnergyConsumptionPrediction,
    EnergyForecast,
    EventKind,
    MaintenanceFeedback,
    MaintenancePrediction,
    MaintenancePriority,
    MaintenanceType,
    OptimizationPlan,
    OptimizationResult,
    SolarForecast,
)
from homegrid.services.anomaly_detector import detect_anomalies
from homegrid.services.command_channel import CommandChannel
from homegrid.services.data_store import ReadSnapshot, SqlDataStore
from homegrid.services.demand_response import ControllablePool, DemandResponseOrchestrator
from homegrid.services.events import EventBus
from homegrid.services.failure_predictor import predict_failure
from homegrid.services.feature_extractor import RECENT_WINDOW, extract_features
from homegrid.services.forecaster import comfort_band_weather_adjustment, forecast_demand, forecast_solar
from homegrid.services.model_registry import (
    LogisticFailureClassifier,
    ModelRegistry,
    SeasonalNaiveForecaster,
    SeriesForecaster,
)
from homegrid.services.optimizer import (
    OptimizationInputs,
    optimize,
    select_auto_executable,
    strategy_to_plan,
)
from homegrid.services.plan_executor import PlanExecutor

T = TypeVar("T")

HISTORY_DAYS = 90
ANOMALY_SERIES_LIMIT = 200
CONSUMPTION_MIN_SAMPLES = 30
CONSUMPTION_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.1
TRAINING_MIN_SAMPLES = 50
TRAINING_MIN_EXAMPLES = 10
FAILURE_LABEL_WINDOW = timedelta(days=30)
CRITICAL_PROBABILITY = 0.8


class EnergyEngineService:
    def __init__(
        self,
        store: SqlDataStore,
        channel: CommandChannel,
        settings: EngineSettings,
        registry: Optional[ModelRegistry] = None,
        series_forecaster: Optional[SeriesForecaster] = None,
        events: Optional[EventBus] = None,
    ):
        self.store = store
        self.channel = channel
        self.settings = settings
        self.registry = registry if registry is not None else ModelRegistry.with_baselines()
        self.series_forecaster = series_forecaster or SeasonalNaiveForecaster()
        self.events = events or EventBus()

        self.executor = PlanExecutor(channel, delay_s=settings.plan_action_delay_s, store=store, events=self.events)
        self.demand_response = DemandResponseOrchestrator(
            channel, incentive_rate=settings.dr_incentive_rate, events=self.events
        )
        self.weather_adjustment = comfort_band_weather_adjustment(settings.comfort_min_c, settings.comfort_max_c)

    # -----------------------------
    # Helpers
    # -----------------------------
    def _device(self, device_id: int) -> Device:
        device = self.store.get_device(device_id)
        if device is None:
            raise NotFoundError("device", device_id)
        return device

    def _fan_out(self, items: Sequence[T], fn: Callable[[T], object]) -> List[Tuple[T, object]]:
        """Runs fn per item on the worker pool. Per-item errors are logged and skipped."""
        out: List[Tuple[T, object]] = []
        if not items:
            return out
        with ThreadPoolExecutor(max_workers=self.settings.worker_pool_size) as pool:
            futures = [(item, pool.submit(fn, item)) for item in items]
            for item, fut in futures:
                try:
                    out.append((item, fut.result()))
                except Exception:
                    logger.exception("Per-device computation failed for %r", item)
        return out

    @staticmethod
    def _device_loads(snapshot: ReadSnapshot) -> Dict[int, float]:
        loads = {}
        for device_id, samples in snapshot.telemetry.items():
            if samples:
                loads[device_id] = float(np.mean([s.power_consumption for s in samples[-RECENT_WINDOW:]]))
        return loads

    def current_energy_rate(self, now: Optional[datetime] = None) -> float:
        now = clock.to_wall_clock(now) or clock.now()
        return self.settings.rate_for_hour(now.hour)

    # -----------------------------
    # Forecasting
    # -----------------------------
    def forecast_demand(self, start: datetime, days: int, now: Optional[datetime] = None) -> EnergyForecast:
        now = clock.to_wall_clock(now) or clock.now()
        start = clock.to_wall_clock(start)
        history = self.store.get_telemetry(start=now - timedelta(days=HISTORY_DAYS), end=now)
        weather = self.store.get_weather(start - timedelta(hours=3), start + timedelta(days=days, hours=3))
        forecast = forecast_demand(
            history, start, days, now,
            weather=weather,
            weather_adjustment=self.weather_adjustment,
        )
        logger.info("Demand forecast: %d points from %s (%d history samples)", len(forecast.points), start, len(history))
        return forecast

    def forecast_solar(self, start: datetime, hours: int = 24, now: Optional[datetime] = None) -> SolarForecast:
        now = clock.to_wall_clock(now) or clock.now()
        start = clock.to_wall_clock(start)
        end = start + timedelta(hours=hours)
        weather = self.store.get_weather(start, end)
        return forecast_solar(weather, now, start, end, self.settings.panel_efficiency, self.settings.panel_area_m2)

    # -----------------------------
    # Optimization
    # -----------------------------
    def _optimization_inputs(self, snapshot: ReadSnapshot, start: datetime, end: datetime) -> OptimizationInputs:
        days = max(1, math.ceil((end - start).total_seconds() / 86400.0))
        demand = forecast_demand(
            snapshot.all_samples(), start, days, snapshot.taken_at,
            weather=snapshot.weather, weather_adjustment=self.weather_adjustment,
        )
        solar = forecast_solar(
            snapshot.weather, snapshot.taken_at, start, end,
            self.settings.panel_efficiency, self.settings.panel_area_m2,
        )
        return OptimizationInputs(
            window_start=start,
            window_end=end,
            devices=list(snapshot.devices.values()),
            device_load_w=self._device_loads(snapshot),
            current_consumption_w=snapshot.current_consumption_w(),
            batteries=snapshot.batteries,
            demand_forecast=demand,
            solar_forecast=solar,
            weather=snapshot.weather,
        )

    def optimize_energy_usage(self, start: datetime, end: datetime, now: Optional[datetime] = None) -> OptimizationResult:
        now = clock.to_wall_clock(now) or clock.now()
        start, end = clock.to_wall_clock(start), clock.to_wall_clock(end)
        if end <= start:
            raise ValueError("window end must be after start")
        snapshot = self.store.load_snapshot(now, HISTORY_DAYS)
        result = optimize(self._optimization_inputs(snapshot, start, end), self.settings, now)

        logger.info(
            "Optimization %s..%s: %d strategies, potential savings %.2f",
            start, end, len(result.strategies), result.total_potential_savings,
        )
        self.events.publish(
            EventKind.OPTIMIZATION_COMPLETED,
            f"{len(result.strategies)} strategies ranked",
            total_potential_savings=result.total_potential_savings,
            top=[s.name for s in result.implementation_priority],
        )
        return result

    def execute_plan(self, plan: OptimizationPlan) -> OptimizationPlan:
        return self.executor.execute(plan)

    def run_optimization_cycle(self, now: Optional[datetime] = None) -> Tuple[OptimizationResult, List[OptimizationPlan]]:
        """One background run: optimize the next 24h and auto-execute the safe top strategies."""
        now = clock.to_wall_clock(now) or clock.now()
        result = self.optimize_energy_usage(now, now + timedelta(hours=24), now)
        selected = select_auto_executable(
            result.strategies,
            max_comfort=self.settings.auto_execute_max_comfort,
            max_count=self.settings.auto_execute_max_strategies,
        )

        plans = []
        for strategy in selected:
            if self.executor.stopping:
                logger.info("Shutdown requested; skipping remaining auto-executed strategies")
                break
            plan = strategy_to_plan(strategy, now)
            plans.append(self.executor.execute(plan))
        return result, plans

    # -----------------------------
    # Predictive maintenance
    # -----------------------------
    def _predict_in_snapshot(self, device: Device, snapshot: ReadSnapshot) -> MaintenancePrediction:
        return predict_failure(
            device,
            snapshot.samples_for(device.id),
            snapshot.maintenance.get(device.id, []),
            self.registry.get(device.type),
            snapshot.taken_at,
            self.settings.min_samples_for_prediction,
        )

    def predict_maintenance(self, device_id: int, now: Optional[datetime] = None) -> MaintenancePrediction:
        now = clock.to_wall_clock(now) or clock.now()
        device = self._device(device_id)
        samples = self.store.get_telemetry(device_id, start=now - timedelta(days=HISTORY_DAYS), end=now + timedelta(seconds=1))
        history = self.store.get_maintenance_history(device_id)

        prediction = predict_failure(
            device, samples, history, self.registry.get(device.type), now, self.settings.min_samples_for_prediction
        )
        if prediction.insufficient_data:
            logger.info("Device %s: insufficient data for prediction (%d samples)", device_id, len(samples))
        elif not prediction.model_available:
            logger.warning("Device %s: no failure model for %s", device_id, device.type.value)

        self.events.publish(
            EventKind.PREDICTION_PRODUCED,
            f"Failure probability {prediction.failure_probability:.2f} for {device.name}",
            device_id=device_id,
            failure_probability=prediction.failure_probability,
            confidence=prediction.confidence,
        )
        return prediction

    def _active_predictions(self, now: datetime) -> List[MaintenancePrediction]:
        snapshot = self.store.load_snapshot(now, HISTORY_DAYS)
        devices = [d for d in snapshot.devices.values() if d.status == DeviceStatus.ACTIVE]
        return [p for _, p in self._fan_out(devices, lambda d: self._predict_in_snapshot(d, snapshot))]

    def get_maintenance_predictions(self, start: datetime, end: datetime, now: Optional[datetime] = None) -> List[MaintenancePrediction]:
        now = clock.to_wall_clock(now) or clock.now()
        start, end = clock.to_wall_clock(start), clock.to_wall_clock(end)
        predictions = [
            p for p in self._active_predictions(now)
            if p.predicted_failure_date is None or start <= p.predicted_failure_date <= end
        ]
        predictions.sort(key=lambda p: p.failure_probability, reverse=True)
        return predictions

    def run_maintenance_sweep(self, now: Optional[datetime] = None) -> List[MaintenancePrediction]:
        """Schedules predictive maintenance for every device above the alert threshold."""
        now = clock.to_wall_clock(now) or clock.now()
        logger.info("Maintenance sweep started")
        scheduled = []
        for p in self._active_predictions(now):
            if p.failure_probability <= self.settings.maintenance_alert_threshold:
                continue
            if self.store.has_scheduled_predictive_maintenance(p.device_id):
                continue

            critical = p.failure_probability > CRITICAL_PROBABILITY
            if p.predicted_failure_date is not None:
                when = max(now, p.predicted_failure_date - timedelta(days=7))
            else:
                when = now + timedelta(days=3)

            self.store.create_maintenance_record(
                device_id=p.device_id,
                title=f"Predictive maintenance: {p.device_name}",
                description="; ".join(p.recommended_actions),
                priority=MaintenancePriority.CRITICAL if critical else MaintenancePriority.HIGH,
                scheduled_date=when,
                failure_probability=p.failure_probability,
                predicted_failure_date=p.predicted_failure_date,
            )
            self.store.create_alert(
                device_id=p.device_id,
                alert_type="PredictiveMaintenance",
                severity=AlertSeverity.CRITICAL if critical else AlertSeverity.WARNING,
                title=f"Maintenance required: {p.device_name}",
                message=f"Failure probability {p.failure_probability:.0%}; maintenance scheduled for {when:%Y-%m-%d}",
                data={"failure_probability": p.failure_probability, "scheduled_date": when.isoformat()},
            )
            self.events.publish(
                EventKind.MAINTENANCE_SCHEDULED,
                f"Predictive maintenance scheduled for {p.device_name}",
                device_id=p.device_id,
                failure_probability=p.failure_probability,
                scheduled_date=when.isoformat(),
            )
            scheduled.append(p)

        logger.info("Maintenance sweep finished: %d record(s) created", len(scheduled))
        return scheduled

    def predict_energy_consumption(self, device_id: int, day: datetime, now: Optional[datetime] = None) -> EnergyConsumptionPrediction:
        """Daily kWh estimate for one device."""
        now = clock.to_wall_clock(now) or clock.now()
        day = clock.to_wall_clock(day)
        device = self._device(device_id)
        samples = self.store.get_telemetry(device_id, start=now - timedelta(days=HISTORY_DAYS), end=now + timedelta(seconds=1))

        if len(samples) < CONSUMPTION_MIN_SAMPLES:
            daily = device.power_rating_w * 24.0 / 1000.0
            return EnergyConsumptionPrediction(
                device_id=device.id,
                device_name=device.name,
                prediction_date=day,
                predicted_consumption_kwh=daily,
                lower_bound_kwh=0.0,
                upper_bound_kwh=daily * 1.5,
                confidence=FALLBACK_CONFIDENCE,
            )

        by_day: Dict = {}
        for s in samples:
            by_day.setdefault(s.timestamp.date(), []).append(s.power_consumption)
        first, last = min(by_day), max(by_day)
        # mean draw over the day * 24h; missing days carry the previous value
        series, prev = [], float(np.mean(by_day[first]))
        for i in range((last - first).days + 1):
            d = first + timedelta(days=i)
            if d in by_day:
                prev = float(np.mean(by_day[d]))
            series.append(prev * 24.0 / 1000.0)

        horizon = max(1, (day.date() - last).days)
        point = self.series_forecaster.forecast(series, horizon)[-1]
        return EnergyConsumptionPrediction(
            device_id=device.id,
            device_name=device.name,
            prediction_date=day,
            predicted_consumption_kwh=point.estimate,
            lower_bound_kwh=min(point.lower, point.estimate),
            upper_bound_kwh=max(point.upper, point.estimate),
            confidence=CONSUMPTION_CONFIDENCE,
        )

    def train_models(self, now: Optional[datetime] = None, categories: Optional[Sequence[DeviceType]] = None) -> Dict[str, int]:
        """
        Refits one classifier per device category. A device is labelled as a
        failure when corrective or emergency maintenance was logged within the
        last 30 days. Categories with fewer than 10 examples keep their model.
        """
        now = clock.to_wall_clock(now) or clock.now()
        snapshot = self.store.load_snapshot(now, HISTORY_DAYS)
        wanted = set(categories) if categories is not None else None

        X: Dict[DeviceType, List[List[float]]] = {}
        y: Dict[DeviceType, List[bool]] = {}
        for device in snapshot.devices.values():
            if wanted is not None and device.type not in wanted:
                continue
            samples = snapshot.samples_for(device.id)
            if len(samples) <= TRAINING_MIN_SAMPLES:
                continue
            history = snapshot.maintenance.get(device.id, [])
            features = extract_features(samples, device.created_at, [m.created_at for m in history], now)
            failed = any(
                m.type in (MaintenanceType.CORRECTIVE, MaintenanceType.EMERGENCY)
                and now - FAILURE_LABEL_WINDOW <= m.created_at <= now
                for m in history
            )
            X.setdefault(device.type, []).append(features.as_list())
            y.setdefault(device.type, []).append(failed)

        trained: Dict[str, int] = {}
        for device_type, rows in X.items():
            if len(rows) < TRAINING_MIN_EXAMPLES:
                logger.info("Skipping %s: %d training example(s)", device_type.value, len(rows))
                continue
            model = LogisticFailureClassifier()
            model.fit(rows, y[device_type])
            self.registry.register(device_type, model)
            trained[device_type.value] = len(rows)
        return trained

    def record_feedback(self, feedback: MaintenanceFeedback, now: Optional[datetime] = None) -> Dict[str, object]:
        device = self._device(feedback.device_id)
        self.store.save_feedback(feedback, device.type)
        count = self.store.count_feedback(device.type)

        retrained = False
        threshold = self.settings.feedback_retrain_threshold
        if threshold > 0 and count >= threshold and count % threshold == 0:
            logger.info("Feedback threshold reached for %s; retraining", device.type.value)
            retrained = device.type.value in self.train_models(now, categories=[device.type])
        return {"device_type": device.type.value, "feedback_count": count, "retrained": retrained}

    # -----------------------------
    # Anomalies
    # -----------------------------
    def detect_anomalies(
        self,
        device_id: int,
        series: Optional[Sequence[float]] = None,
        timestamps: Optional[Sequence[datetime]] = None,
        window_size: Optional[int] = None,
        threshold: float = 0.8,
        now: Optional[datetime] = None,
    ) -> AnomalyDetectionResult:
        now = clock.to_wall_clock(now) or clock.now()
        self._device(device_id)
        if timestamps is not None:
            timestamps = [clock.to_wall_clock(t) for t in timestamps]

        if series is None:
            samples = self.store.get_telemetry(device_id, start=now - timedelta(days=HISTORY_DAYS), end=now + timedelta(seconds=1))
            samples = samples[-ANOMALY_SERIES_LIMIT:]
            series = [s.power_consumption for s in samples]
            timestamps = [s.timestamp for s in samples]

        result = detect_anomalies(series, timestamps, window_size, threshold, now, device_id)
        if result.has_anomalies:
            self.events.publish(
                EventKind.ANOMALY_DETECTED,
                f"{result.anomaly_count} anomalous reading(s)",
                device_id=device_id,
                confidence=result.confidence,
            )
        return result

    # -----------------------------
    # Demand response
    # -----------------------------
    def handle_demand_response(self, event: DemandResponseEvent, now: Optional[datetime] = None) -> DemandResponseResult:
        now = clock.to_wall_clock(now) or clock.now()
        snapshot = self.store.load_snapshot(now, lookback_days=1)
        pool = ControllablePool(
            devices=list(snapshot.devices.values()),
            load_w=self._device_loads(snapshot),
            batteries=snapshot.batteries,
        )
        return self.demand_response.handle(event, pool, now)

    def run_due_demand_response(self, now: Optional[datetime] = None) -> int:
        return self.demand_response.scheduler.run_due(clock.to_wall_clock(now) or clock.now(), self.channel)

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def shutdown(self) -> None:
        self.executor.stop()
