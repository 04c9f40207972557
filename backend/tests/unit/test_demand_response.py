import pytest
from datetime import timedelta

from homegrid.errors import UpstreamUnavailableError
from homegrid.models.domain import (
    BatterySnapshot,
    DemandResponseEvent,
    DemandResponseEventType,
    DemandResponsePriority,
    DemandResponseState,
    DeviceType,
    EventKind,
)
from homegrid.services.command_channel import RecordingCommandChannel
from homegrid.services.demand_response import (
    ControllablePool,
    DemandResponseOrchestrator,
    InMemoryActionScheduler,
    incentive_earnings,
)
from homegrid.services.events import EventBus


def _event(now, kind, target, starts_in=timedelta(0), hours=2):
    start = now + starts_in
    return DemandResponseEvent(
        event_id="evt-1",
        event_type=kind,
        start_time=start,
        end_time=start + timedelta(hours=hours),
        target_reduction=target,
    )


@pytest.fixture
def plugs(make_device):
    def _pool(*loads):
        devices = [make_device(i + 1, DeviceType.SMART_PLUG) for i in range(len(loads))]
        return ControllablePool(devices=devices, load_w={d.id: w for d, w in zip(devices, loads)})
    return _pool


@pytest.mark.parametrize("case", [
    {"id": "enough_load", "loads": (300.0, 250.0), "total": 550.0, "achieved": True},
    {"id": "short_of_target", "loads": (250.0, 150.0), "total": 400.0, "achieved": False},
])
def test_emergency_sheds_everything(case, plugs, now):
    orchestrator = DemandResponseOrchestrator(RecordingCommandChannel())
    result = orchestrator.handle(_event(now, DemandResponseEventType.EMERGENCY_RESPONSE, 500.0), plugs(*case["loads"]), now)

    assert result.total_power_reduction == pytest.approx(case["total"])
    assert result.reduction_achieved is case["achieved"]
    assert all(a.priority == DemandResponsePriority.IMMEDIATE for a in result.actions)
    assert all(a.command == {"command": "TURN_OFF"} for a in result.actions)


def test_emergency_reports_state_history_and_incentive(plugs, now):
    events = EventBus()
    orchestrator = DemandResponseOrchestrator(RecordingCommandChannel(), incentive_rate=0.5, events=events)
    result = orchestrator.handle(_event(now, DemandResponseEventType.EMERGENCY_RESPONSE, 500.0), plugs(300.0, 250.0), now)

    assert result.state_history == [
        DemandResponseState.RECEIVED,
        DemandResponseState.CLASSIFIED,
        DemandResponseState.ACTIONS_GENERATED,
        DemandResponseState.IMMEDIATE_EXECUTED,
        DemandResponseState.REPORTED,
    ]
    assert result.state == DemandResponseState.REPORTED
    assert result.incentive_earnings == pytest.approx(0.55)
    assert result.duration_hours == pytest.approx(2.0)
    assert result.comfort_impact == pytest.approx(4.0)
    assert events.latest(kind=EventKind.DEMAND_RESPONSE_REPORTED)[0]["payload"]["event_id"] == "evt-1"


def test_peak_shaving_picks_low_comfort_first_and_defers(make_device, now):
    devices = [
        make_device(1, DeviceType.WASHING_MACHINE),
        make_device(2, DeviceType.SMART_THERMOSTAT),
        make_device(3, DeviceType.SMART_PLUG),
    ]
    pool = ControllablePool(devices=devices, load_w={1: 1000.0, 2: 2000.0, 3: 400.0})
    channel = RecordingCommandChannel()
    scheduler = InMemoryActionScheduler()
    event = _event(now, DemandResponseEventType.PEAK_SHAVING, 1200.0, starts_in=timedelta(hours=2))

    result = DemandResponseOrchestrator(channel, scheduler).handle(event, pool, now)

    assert [a.device_id for a in result.actions] == [1, 3]
    assert [a.command["command"] for a in result.actions] == ["DEFER", "REDUCE_POWER"]
    assert result.reduction_achieved is True
    assert DemandResponseState.SCHEDULED in result.state_history
    assert DemandResponseState.IMMEDIATE_EXECUTED not in result.state_history
    assert list(channel.sent) == []

    assert scheduler.run_due(now, channel) == 0
    assert scheduler.run_due(event.start_time, channel) == 2
    assert [c["device_id"] for c in channel.sent] == [1, 3]
    assert scheduler.pending() == []


def test_peak_shaving_prefers_battery(make_device, now):
    pool = ControllablePool(
        devices=[make_device(1, DeviceType.WASHING_MACHINE)],
        load_w={1: 1000.0},
        batteries=[BatterySnapshot(device_id=9, timestamp=now, charge_level_pct=80.0, max_power_kw=5.0)],
    )
    event = _event(now, DemandResponseEventType.PEAK_SHAVING, 1200.0, starts_in=timedelta(hours=2))

    result = DemandResponseOrchestrator(RecordingCommandChannel()).handle(event, pool, now)

    assert [a.device_id for a in result.actions] == [9]
    assert result.total_power_reduction == pytest.approx(5000.0)


@pytest.mark.parametrize("case", [
    {"id": "starts_soon", "starts_in": timedelta(minutes=10), "priority": DemandResponsePriority.IMMEDIATE},
    {"id": "starts_later", "starts_in": timedelta(hours=1), "priority": DemandResponsePriority.SCHEDULED},
])
def test_load_reduction_priority_follows_lead_time(case, plugs, now):
    event = _event(now, DemandResponseEventType.LOAD_REDUCTION, 100.0, starts_in=case["starts_in"])
    result = DemandResponseOrchestrator(RecordingCommandChannel()).handle(event, plugs(1000.0), now)

    (action,) = result.actions
    assert action.priority == case["priority"]
    assert action.power_reduction == pytest.approx(300.0)


def test_frequency_regulation_uses_fast_responders_only(make_device, now):
    pool = ControllablePool(
        devices=[make_device(1, DeviceType.EV_CHARGER), make_device(2, DeviceType.SMART_LIGHT)],
        load_w={1: 7000.0, 2: 60.0},
        batteries=[
            BatterySnapshot(device_id=8, timestamp=now, charge_level_pct=60.0, max_power_kw=3.0),
            BatterySnapshot(device_id=9, timestamp=now, charge_level_pct=15.0, max_power_kw=3.0),
        ],
    )
    event = _event(now, DemandResponseEventType.FREQUENCY_REGULATION, 5000.0)

    result = DemandResponseOrchestrator(RecordingCommandChannel()).handle(event, pool, now)

    assert sorted(a.device_id for a in result.actions) == [1, 8]
    assert result.total_power_reduction == pytest.approx(10000.0)


def test_essential_and_offline_devices_are_never_commanded(make_device, now):
    pool = ControllablePool(
        devices=[
            make_device(1, DeviceType.REFRIGERATOR),
            make_device(2, DeviceType.SMART_PLUG, is_online=False),
            make_device(3, DeviceType.SMART_PLUG, controllable=False),
            make_device(4, DeviceType.SMART_PLUG),
        ],
        load_w={1: 150.0, 2: 100.0, 3: 100.0, 4: 100.0},
    )
    result = DemandResponseOrchestrator(RecordingCommandChannel()).handle(
        _event(now, DemandResponseEventType.EMERGENCY_RESPONSE, 50.0), pool, now
    )
    assert [a.device_id for a in result.actions] == [4]


def test_rejected_immediate_action_does_not_stop_the_rest(plugs, now):
    channel = RecordingCommandChannel(rejected_devices=[1])
    result = DemandResponseOrchestrator(channel).handle(
        _event(now, DemandResponseEventType.EMERGENCY_RESPONSE, 500.0), plugs(300.0, 250.0), now
    )

    first, second = result.actions
    assert first.executed is False and "rejected" in first.error_message
    assert second.executed is True
    assert result.state == DemandResponseState.REPORTED


def test_bus_outage_propagates(plugs, now):
    channel = RecordingCommandChannel()
    channel.available = False
    with pytest.raises(UpstreamUnavailableError):
        DemandResponseOrchestrator(channel).handle(
            _event(now, DemandResponseEventType.EMERGENCY_RESPONSE, 500.0), plugs(300.0), now
        )


def test_incentive_scales_with_duration(now):
    event = _event(now, DemandResponseEventType.PEAK_SHAVING, 0.0, hours=3)
    assert incentive_earnings(event, 2000.0, 0.5) == pytest.approx(3.0)
