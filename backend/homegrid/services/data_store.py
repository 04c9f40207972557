"""
data_store.py

Purpose:
  Persistence boundary of the engine. Everything the analytics read
  (devices, telemetry, weather, battery state, maintenance history) and
  everything they write (maintenance records, alerts, plan status, model
  feedback) goes through `SqlDataStore`.

Resource Model:
  - Every read/write opens one `Session` inside `session()` and releases it on
    exit, including on error. A failed run never keeps a connection.
  - Database failures are re-raised as `UpstreamUnavailableError`.
  - `load_snapshot()` fetches everything a run needs once; per-device
    computations then work from that immutable `ReadSnapshot`.
  - Datetime arguments are converted to naive local wall-clock time before
    they reach a query or a row; see `homegrid.clock`.
"""
from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from homegrid.clock import to_wall_clock

from homegrid.errors import UpstreamUnavailableError
from homegrid.logging_config import logger
from homegrid.models.db import (
    AlertRecord,
    BatteryStatusRecord,
    DeviceRecord,
    FeedbackRecord,
    MaintenanceRecord,
    PlanRecord,
    SolarGenerationRecord,
    TelemetryRecord,
    WeatherRecord,
    create_db_and_tables,
)
from homegrid.models.domain import (
    AlertSeverity,
    BatteryMode,
    BatterySnapshot,
    Device,
    DeviceStatus,
    DeviceType,
    MaintenanceEvent,
    MaintenanceFeedback,
    MaintenancePriority,
    MaintenanceStatus,
    MaintenanceType,
    OptimizationPlan,
    TelemetrySample,
    WeatherSample,
)


@dataclass(frozen=True)
class ReadSnapshot:
    """Everything one run reads, fetched once at run start."""
    taken_at: datetime
    devices: Dict[int, Device] = field(default_factory=dict)
    telemetry: Dict[int, List[TelemetrySample]] = field(default_factory=dict)
    maintenance: Dict[int, List[MaintenanceEvent]] = field(default_factory=dict)
    weather: List[WeatherSample] = field(default_factory=list)
    batteries: List[BatterySnapshot] = field(default_factory=list)
    solar_generation_w: float = 0.0

    def samples_for(self, device_id: int) -> List[TelemetrySample]:
        return self.telemetry.get(device_id, [])

    def all_samples(self) -> List[TelemetrySample]:
        out: List[TelemetrySample] = []
        for samples in self.telemetry.values():
            out.extend(samples)
        out.sort(key=lambda s: s.timestamp)
        return out

    def current_consumption_w(self, lookback_minutes: int = 15) -> float:
        """Sum of each device's latest reading inside the lookback window."""
        cutoff = self.taken_at - timedelta(minutes=lookback_minutes)
        total = 0.0
        for samples in self.telemetry.values():
            if samples and samples[-1].timestamp >= cutoff:
                total += float(samples[-1].power_consumption)
        return total


def _to_device(r: DeviceRecord) -> Device:
    return Device(
        id=int(r.id),
        name=r.name,
        type=DeviceType(r.type),
        status=DeviceStatus(r.status),
        power_rating_w=float(r.power_rating_w),
        created_at=r.created_at,
        is_online=bool(r.is_online),
        controllable=bool(r.controllable),
        room=r.room,
    )


def _to_sample(r: TelemetryRecord) -> TelemetrySample:
    return TelemetrySample(
        device_id=r.device_id,
        timestamp=r.ts,
        power_consumption=float(r.power_w),
        voltage=float(r.voltage),
        current=float(r.current),
        temperature=r.temperature,
        vibration=r.vibration,
    )


def _to_weather(r: WeatherRecord) -> WeatherSample:
    return WeatherSample(
        timestamp=r.ts,
        temperature_c=float(r.temperature_c),
        cloud_cover_pct=float(r.cloud_cover_pct),
        solar_irradiance=float(r.solar_irradiance),
        condition=r.condition,
        is_forecast=bool(r.is_forecast),
    )


class SqlDataStore:
    def __init__(self, engine):
        self.engine = engine

    def init_schema(self) -> None:
        try:
            create_db_and_tables(self.engine)
        except SQLAlchemyError as e:
            raise UpstreamUnavailableError("data store", "schema creation failed", e) from e

    @contextmanager
    def session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as s:
                yield s
        except SQLAlchemyError as e:
            logger.error("Data store operation failed: %s", e)
            raise UpstreamUnavailableError("data store", str(e), e) from e

    # -----------------------------
    # Reads
    # -----------------------------
    def get_device(self, device_id: int) -> Optional[Device]:
        with self.session() as s:
            r = s.get(DeviceRecord, device_id)
            return _to_device(r) if r is not None else None

    def list_devices(self, status: Optional[DeviceStatus] = None, online_only: bool = False) -> List[Device]:
        with self.session() as s:
            stmt = select(DeviceRecord).order_by(DeviceRecord.id)
            if status is not None:
                stmt = stmt.where(DeviceRecord.status == status.value)
            if online_only:
                stmt = stmt.where(DeviceRecord.is_online == True)  # noqa: E712
            return [_to_device(r) for r in s.exec(stmt).all()]

    def get_telemetry(
        self,
        device_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TelemetrySample]:
        start, end = to_wall_clock(start), to_wall_clock(end)
        with self.session() as s:
            stmt = select(TelemetryRecord)
            if device_id is not None:
                stmt = stmt.where(TelemetryRecord.device_id == device_id)
            if start is not None:
                stmt = stmt.where(TelemetryRecord.ts >= start)
            if end is not None:
                stmt = stmt.where(TelemetryRecord.ts < end)
            stmt = stmt.order_by(TelemetryRecord.ts, TelemetryRecord.id)
            return [_to_sample(r) for r in s.exec(stmt).all()]

    def get_weather(self, start: datetime, end: datetime) -> List[WeatherSample]:
        start, end = to_wall_clock(start), to_wall_clock(end)
        with self.session() as s:
            stmt = (
                select(WeatherRecord)
                .where(WeatherRecord.ts >= start)
                .where(WeatherRecord.ts <= end)
                .order_by(WeatherRecord.ts)
            )
            return [_to_weather(r) for r in s.exec(stmt).all()]

    def get_latest_battery_status(self) -> List[BatterySnapshot]:
        """Newest status row per battery, selected in the database."""
        newest = (
            select(BatteryStatusRecord.device_id, func.max(BatteryStatusRecord.ts).label("ts"))
            .group_by(BatteryStatusRecord.device_id)
            .subquery()
        )
        stmt = (
            select(BatteryStatusRecord)
            .join(
                newest,
                and_(BatteryStatusRecord.device_id == newest.c.device_id, BatteryStatusRecord.ts == newest.c.ts),
            )
            .order_by(BatteryStatusRecord.device_id, BatteryStatusRecord.id)
        )
        with self.session() as s:
            rows = s.exec(stmt).all()
        # two rows sharing a device's newest ts: the later insert wins
        latest: Dict[int, BatteryStatusRecord] = {}
        for r in rows:
            latest[r.device_id] = r
        return [
            BatterySnapshot(
                device_id=r.device_id,
                timestamp=r.ts,
                charge_level_pct=float(r.charge_level_pct),
                capacity_kwh=float(r.capacity_kwh),
                max_power_kw=float(r.max_power_kw),
                mode=BatteryMode(r.mode),
            )
            for r in latest.values()
        ]

    def get_solar_generation_w(self, since: datetime) -> float:
        """Latest reported generation per inverter since `since`, summed."""
        since = to_wall_clock(since)
        with self.session() as s:
            stmt = select(SolarGenerationRecord).where(SolarGenerationRecord.ts >= since).order_by(SolarGenerationRecord.ts)
            rows = s.exec(stmt).all()
        latest: Dict[int, float] = {}
        for r in rows:
            latest[r.device_id] = float(r.power_w)
        return float(sum(latest.values()))

    def get_maintenance_history(self, device_id: Optional[int] = None) -> List[MaintenanceEvent]:
        with self.session() as s:
            stmt = select(MaintenanceRecord).order_by(MaintenanceRecord.created_at)
            if device_id is not None:
                stmt = stmt.where(MaintenanceRecord.device_id == device_id)
            return [
                MaintenanceEvent(
                    device_id=r.device_id,
                    created_at=r.created_at,
                    type=MaintenanceType(r.type),
                    status=MaintenanceStatus(r.status),
                )
                for r in s.exec(stmt).all()
            ]

    def has_scheduled_predictive_maintenance(self, device_id: int) -> bool:
        with self.session() as s:
            stmt = (
                select(MaintenanceRecord)
                .where(MaintenanceRecord.device_id == device_id)
                .where(MaintenanceRecord.status == MaintenanceStatus.SCHEDULED.value)
                .where(MaintenanceRecord.type == MaintenanceType.PREDICTIVE.value)
            )
            return s.exec(stmt).first() is not None

    def count_feedback(self, device_type: DeviceType) -> int:
        with self.session() as s:
            stmt = select(FeedbackRecord).where(FeedbackRecord.device_type == device_type.value)
            return len(s.exec(stmt).all())

    def load_snapshot(self, now: datetime, lookback_days: int = 90, device_ids: Optional[Iterable[int]] = None) -> ReadSnapshot:
        now = to_wall_clock(now)
        start = now - timedelta(days=lookback_days)
        devices = {d.id: d for d in self.list_devices()}
        if device_ids is not None:
            wanted = set(device_ids)
            devices = {k: v for k, v in devices.items() if k in wanted}

        telemetry: Dict[int, List[TelemetrySample]] = {d: [] for d in devices}
        for sample in self.get_telemetry(start=start, end=now + timedelta(seconds=1)):
            if sample.device_id in telemetry:
                telemetry[sample.device_id].append(sample)

        maintenance: Dict[int, List[MaintenanceEvent]] = {d: [] for d in devices}
        for ev in self.get_maintenance_history():
            if ev.device_id in maintenance:
                maintenance[ev.device_id].append(ev)

        return ReadSnapshot(
            taken_at=now,
            devices=devices,
            telemetry=telemetry,
            maintenance=maintenance,
            weather=self.get_weather(now - timedelta(days=1), now + timedelta(days=8)),
            batteries=self.get_latest_battery_status(),
            solar_generation_w=self.get_solar_generation_w(now - timedelta(minutes=15)),
        )

    # -----------------------------
    # Writes
    # -----------------------------
    def create_maintenance_record(
        self,
        device_id: int,
        title: str,
        description: str,
        priority: MaintenancePriority,
        scheduled_date: datetime,
        failure_probability: Optional[float] = None,
        predicted_failure_date: Optional[datetime] = None,
        type: MaintenanceType = MaintenanceType.PREDICTIVE,
    ) -> int:
        with self.session() as s:
            r = MaintenanceRecord(
                device_id=device_id,
                type=type.value,
                status=MaintenanceStatus.SCHEDULED.value,
                priority=priority.value,
                title=title,
                description=description,
                scheduled_date=to_wall_clock(scheduled_date),
                predicted_failure_proba=failure_probability,
                predicted_failure_date=to_wall_clock(predicted_failure_date),
            )
            s.add(r)
            s.commit()
            s.refresh(r)
            return int(r.id)

    def create_alert(
        self,
        device_id: int,
        alert_type: str,
        severity: AlertSeverity,
        title: str,
        message: str,
        data: Optional[dict] = None,
    ) -> int:
        with self.session() as s:
            r = AlertRecord(
                device_id=device_id,
                alert_type=alert_type,
                severity=severity.value,
                title=title,
                message=message,
                data=json.dumps(data, default=str) if data is not None else None,
            )
            s.add(r)
            s.commit()
            s.refresh(r)
            return int(r.id)

    def list_alerts(self, device_id: Optional[int] = None) -> List[AlertRecord]:
        with self.session() as s:
            stmt = select(AlertRecord).order_by(AlertRecord.ts)
            if device_id is not None:
                stmt = stmt.where(AlertRecord.device_id == device_id)
            return list(s.exec(stmt).all())

    def save_plan(self, plan: OptimizationPlan) -> None:
        actions_json = json.dumps([a.model_dump(mode="json") for a in plan.actions])
        with self.session() as s:
            r = s.exec(select(PlanRecord).where(PlanRecord.plan_id == plan.plan_id)).first()
            if r is None:
                r = PlanRecord(plan_id=plan.plan_id, name=plan.name, status=plan.execution_status.value, created_at=to_wall_clock(plan.created_at))
            r.status = plan.execution_status.value
            r.executed_at = to_wall_clock(plan.executed_at)
            r.actions_json = actions_json
            s.add(r)
            s.commit()

    def get_plan_status(self, plan_id: str) -> Optional[str]:
        with self.session() as s:
            r = s.exec(select(PlanRecord).where(PlanRecord.plan_id == plan_id)).first()
            return r.status if r is not None else None

    def save_feedback(self, feedback: MaintenanceFeedback, device_type: DeviceType) -> None:
        with self.session() as s:
            s.add(
                FeedbackRecord(
                    device_id=feedback.device_id,
                    device_type=device_type.value,
                    predicted_failure_probability=feedback.predicted_failure_probability,
                    actual_failure=feedback.actual_failure,
                    notes=feedback.notes,
                )
            )
            s.commit()

    # -----------------------------
    # Ingestion side (seeding, tests)
    # -----------------------------
    def add_device(self, device: Device) -> Device:
        with self.session() as s:
            r = DeviceRecord(
                id=device.id,
                name=device.name,
                type=device.type.value,
                status=device.status.value,
                power_rating_w=device.power_rating_w,
                created_at=to_wall_clock(device.created_at),
                is_online=device.is_online,
                controllable=device.controllable,
                room=device.room,
            )
            s.add(r)
            s.commit()
            s.refresh(r)
            return _to_device(r)

    def add_telemetry(self, samples: Iterable[TelemetrySample]) -> int:
        n = 0
        with self.session() as s:
            for x in samples:
                s.add(
                    TelemetryRecord(
                        device_id=x.device_id,
                        ts=to_wall_clock(x.timestamp),
                        power_w=x.power_consumption,
                        voltage=x.voltage,
                        current=x.current,
                        temperature=x.temperature,
                        vibration=x.vibration,
                    )
                )
                n += 1
            s.commit()
        return n

    def add_weather(self, samples: Iterable[WeatherSample]) -> None:
        with self.session() as s:
            for w in samples:
                s.add(
                    WeatherRecord(
                        ts=to_wall_clock(w.timestamp),
                        temperature_c=w.temperature_c,
                        cloud_cover_pct=w.cloud_cover_pct,
                        solar_irradiance=w.solar_irradiance,
                        condition=w.condition,
                        is_forecast=w.is_forecast,
                    )
                )
            s.commit()

    def add_battery_status(self, snap: BatterySnapshot) -> None:
        with self.session() as s:
            s.add(
                BatteryStatusRecord(
                    device_id=snap.device_id,
                    ts=to_wall_clock(snap.timestamp),
                    charge_level_pct=snap.charge_level_pct,
                    capacity_kwh=snap.capacity_kwh,
                    max_power_kw=snap.max_power_kw,
                    mode=snap.mode.value,
                )
            )
            s.commit()

    def add_maintenance_event(self, ev: MaintenanceEvent) -> None:
        with self.session() as s:
            s.add(
                MaintenanceRecord(
                    device_id=ev.device_id,
                    type=ev.type.value,
                    status=ev.status.value,
                    created_at=to_wall_clock(ev.created_at),
                    title=f"{ev.type.value.title()} maintenance",
                )
            )
            s.commit()
