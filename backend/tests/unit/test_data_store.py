import pytest
from datetime import datetime, timedelta, timezone

from homegrid.models.domain import (
    ActionType,
    BatteryMode,
    BatterySnapshot,
    DeviceType,
    MaintenancePriority,
    OptimizationAction,
    OptimizationPlan,
    PlanStatus,
    WeatherSample,
)


def test_telemetry_round_trips_through_store(store, make_device, make_samples, now):
    store.add_device(make_device(1))
    written = store.add_telemetry(make_samples(1, 5))

    read = store.get_telemetry(1, start=now - timedelta(hours=5), end=now)

    assert written == 5
    assert [s.timestamp for s in read] == [now - timedelta(hours=5 - i) for i in range(5)]
    assert all(s.timestamp.tzinfo is None for s in read)
    assert read[0].power_consumption == 100.0


def test_aware_timestamps_are_stored_as_local_wall_clock(store, make_device, make_samples, now):
    store.add_device(make_device(1))
    aware = [s.model_copy(update={"timestamp": s.timestamp.astimezone()}) for s in make_samples(1, 3)]
    store.add_telemetry(aware)

    read = store.get_telemetry(1, start=now.astimezone() - timedelta(hours=3), end=now.astimezone())

    assert [s.timestamp for s in read] == [now - timedelta(hours=3 - i) for i in range(3)]


def test_telemetry_window_is_half_open(store, make_device, make_samples, now):
    store.add_device(make_device(1))
    store.add_telemetry(make_samples(1, 4))

    read = store.get_telemetry(1, start=now - timedelta(hours=3), end=now - timedelta(hours=1))

    assert [s.timestamp for s in read] == [now - timedelta(hours=3), now - timedelta(hours=2)]


def test_weather_window_is_inclusive(store, now):
    store.add_weather(
        WeatherSample(timestamp=now + timedelta(hours=h), temperature_c=10.0 + h, is_forecast=True)
        for h in range(4)
    )

    read = store.get_weather(now + timedelta(hours=1), now + timedelta(hours=3))

    assert [w.temperature_c for w in read] == [11.0, 12.0, 13.0]


def test_plan_status_is_saved_and_updated(store, now):
    plan = OptimizationPlan(
        name="Night plan",
        created_at=now.astimezone(timezone.utc),
        actions=[OptimizationAction(action_type=ActionType.DEVICE_CONTROL, device_id=1)],
    )
    store.save_plan(plan)
    assert store.get_plan_status(plan.plan_id) == PlanStatus.PENDING.value

    plan.execution_status = PlanStatus.COMPLETED
    plan.executed_at = datetime.now(timezone.utc)
    store.save_plan(plan)

    assert store.get_plan_status(plan.plan_id) == PlanStatus.COMPLETED.value


def test_maintenance_record_is_created_and_visible(store, make_device, now):
    store.add_device(make_device(1, DeviceType.HEAT_PUMP))

    record_id = store.create_maintenance_record(
        device_id=1,
        title="Predictive Maintenance",
        description="inspect",
        priority=MaintenancePriority.HIGH,
        scheduled_date=now + timedelta(days=3),
        failure_probability=0.8,
        predicted_failure_date=(now + timedelta(days=10)).astimezone(timezone.utc),
    )

    assert record_id > 0
    assert store.has_scheduled_predictive_maintenance(1)
    (event,) = store.get_maintenance_history(1)
    assert event.created_at.tzinfo is None


def _battery(device_id, ts, pct):
    return BatterySnapshot(device_id=device_id, timestamp=ts, charge_level_pct=pct, mode=BatteryMode.STANDBY)


def test_latest_battery_status_is_newest_per_device(store, make_device, now):
    store.add_device(make_device(1, DeviceType.BATTERY_STORAGE))
    store.add_device(make_device(2, DeviceType.BATTERY_STORAGE))
    store.add_battery_status(_battery(1, now - timedelta(minutes=5), 60.0))
    store.add_battery_status(_battery(1, now - timedelta(hours=2), 20.0))
    store.add_battery_status(_battery(2, now - timedelta(days=1), 35.0))
    store.add_battery_status(_battery(2, now - timedelta(hours=1), 90.0))

    latest = {b.device_id: b for b in store.get_latest_battery_status()}

    assert set(latest) == {1, 2}
    assert latest[1].charge_level_pct == pytest.approx(60.0)
    assert latest[1].timestamp == now - timedelta(minutes=5)
    assert latest[2].charge_level_pct == pytest.approx(90.0)


def test_latest_battery_status_is_empty_without_rows(store):
    assert store.get_latest_battery_status() == []
