"""
demand_response.py

Purpose:
  Orchestrates the household's answer to a utility demand-response event.

State Machine (one event):
  RECEIVED -> CLASSIFIED -> ACTIONS_GENERATED -> {IMMEDIATE_EXECUTED, SCHEDULED} -> REPORTED

Action Generation (by event type, over controllable non-essential devices):
  - PEAK_SHAVING:          cheapest-comfort devices first, stop once the target is met; scheduled.
  - LOAD_REDUCTION:        30% trim on every candidate; immediate when the event starts within 15 min.
  - FREQUENCY_REGULATION:  fast responders only (batteries, deferrable loads); immediate.
  - EMERGENCY_RESPONSE:    shed every non-essential load, discharge batteries; immediate.

Execution:
  Immediate actions run sequentially; a rejected command is logged and the
  rest still run. Everything else goes to the deferred-action scheduler.

Reporting:
  reduction_achieved = total_power_reduction >= target_reduction
  incentive = rate * total_power_reduction (kW) * duration (h)
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from homegrid.errors import UpstreamUnavailableError
from homegrid.logging_config import logger
from homegrid.models.domain import (
    DEFERRABLE_TYPES,
    THERMAL_TYPES,
    BatterySnapshot,
    DemandResponseAction,
    DemandResponseEvent,
    DemandResponseEventType,
    DemandResponsePriority,
    DemandResponseResult,
    DemandResponseState,
    Device,
    DeviceStatus,
    EventKind,
)
from homegrid.services.command_channel import CommandChannel
from homegrid.services.optimizer import ESSENTIAL_TYPES

IMMEDIATE_LEAD = timedelta(minutes=15)
LOAD_REDUCTION_FRACTION = 0.30
THERMAL_SETBACK_FRACTION = 0.30
OTHER_REDUCTION_FRACTION = 0.50


@dataclass
class ControllablePool:
    """Devices the orchestrator may command, with their current load in W."""
    devices: List[Device] = field(default_factory=list)
    load_w: Dict[int, float] = field(default_factory=dict)
    batteries: List[BatterySnapshot] = field(default_factory=list)

    def candidates(self) -> List[Device]:
        return [
            d for d in self.devices
            if d.controllable and d.is_online and d.status == DeviceStatus.ACTIVE and d.type not in ESSENTIAL_TYPES
        ]

    def load_of(self, device: Device) -> float:
        return float(self.load_w.get(device.id, device.power_rating_w))


# ============================================================
# 1) PER-TYPE GENERATORS
# ============================================================

def _battery_actions(pool: ControllablePool, priority: DemandResponsePriority, when: datetime) -> List[DemandResponseAction]:
    out = []
    for b in pool.batteries:
        if b.charge_level_pct <= 20.0:
            continue
        out.append(
            DemandResponseAction(
                device_id=b.device_id,
                device_name=f"Battery #{b.device_id}",
                command={"command": "BATTERY_OPERATION", "mode": "DISCHARGING", "power_kw": b.max_power_kw},
                power_reduction=b.max_power_kw * 1000.0,
                priority=priority,
                comfort_impact=0.0,
                scheduled_for=when,
            )
        )
    return out


def _shave_action(device: Device, load_w: float, priority: DemandResponsePriority, when: datetime) -> DemandResponseAction:
    if device.type in DEFERRABLE_TYPES:
        command, reduction, comfort = {"command": "DEFER", "until": "event_end"}, load_w, 1.0
    elif device.type in THERMAL_TYPES:
        command, reduction, comfort = {"command": "SETPOINT_OFFSET", "offset_c": 2.0}, load_w * THERMAL_SETBACK_FRACTION, 3.0
    else:
        command, reduction, comfort = {"command": "REDUCE_POWER", "reduction_pct": 50}, load_w * OTHER_REDUCTION_FRACTION, 2.0
    return DemandResponseAction(
        device_id=device.id,
        device_name=device.name,
        command=command,
        power_reduction=reduction,
        priority=priority,
        comfort_impact=comfort,
        scheduled_for=when,
    )


def peak_shaving_actions(event: DemandResponseEvent, pool: ControllablePool, now: datetime) -> List[DemandResponseAction]:
    priority = DemandResponsePriority.SCHEDULED
    candidates = [_shave_action(d, pool.load_of(d), priority, event.start_time) for d in pool.candidates()]
    candidates = [a for a in candidates if a.power_reduction > 0]
    candidates.extend(_battery_actions(pool, priority, event.start_time))
    candidates.sort(key=lambda a: (a.comfort_impact, -a.power_reduction))

    picked: List[DemandResponseAction] = []
    total = 0.0
    for a in candidates:
        if total >= event.target_reduction:
            break
        picked.append(a)
        total += a.power_reduction
    return picked


def load_reduction_actions(event: DemandResponseEvent, pool: ControllablePool, now: datetime) -> List[DemandResponseAction]:
    soon = event.start_time - now <= IMMEDIATE_LEAD
    priority = DemandResponsePriority.IMMEDIATE if soon else DemandResponsePriority.SCHEDULED
    out = []
    for d in pool.candidates():
        reduction = pool.load_of(d) * LOAD_REDUCTION_FRACTION
        if reduction <= 0:
            continue
        out.append(
            DemandResponseAction(
                device_id=d.id,
                device_name=d.name,
                command={"command": "REDUCE_POWER", "reduction_pct": int(LOAD_REDUCTION_FRACTION * 100)},
                power_reduction=reduction,
                priority=priority,
                comfort_impact=2.0,
                scheduled_for=now if soon else event.start_time,
            )
        )
    return out


def frequency_regulation_actions(event: DemandResponseEvent, pool: ControllablePool, now: datetime) -> List[DemandResponseAction]:
    priority = DemandResponsePriority.IMMEDIATE
    out = _battery_actions(pool, priority, now)
    for d in pool.candidates():
        if d.type not in DEFERRABLE_TYPES or pool.load_of(d) <= 0:
            continue
        out.append(
            DemandResponseAction(
                device_id=d.id,
                device_name=d.name,
                command={"command": "PAUSE"},
                power_reduction=pool.load_of(d),
                priority=priority,
                comfort_impact=0.5,
                scheduled_for=now,
            )
        )
    return out


def emergency_response_actions(event: DemandResponseEvent, pool: ControllablePool, now: datetime) -> List[DemandResponseAction]:
    priority = DemandResponsePriority.IMMEDIATE
    out = _battery_actions(pool, priority, now)
    for d in pool.candidates():
        if pool.load_of(d) <= 0:
            continue
        if d.type in THERMAL_TYPES:
            comfort = 6.0
        elif d.type in DEFERRABLE_TYPES:
            comfort = 2.0
        else:
            comfort = 4.0
        out.append(
            DemandResponseAction(
                device_id=d.id,
                device_name=d.name,
                command={"command": "TURN_OFF"},
                power_reduction=pool.load_of(d),
                priority=priority,
                comfort_impact=comfort,
                scheduled_for=now,
            )
        )
    return out


Generator = Callable[[DemandResponseEvent, ControllablePool, datetime], List[DemandResponseAction]]

GENERATORS: Dict[DemandResponseEventType, Generator] = {
    DemandResponseEventType.PEAK_SHAVING: peak_shaving_actions,
    DemandResponseEventType.LOAD_REDUCTION: load_reduction_actions,
    DemandResponseEventType.FREQUENCY_REGULATION: frequency_regulation_actions,
    DemandResponseEventType.EMERGENCY_RESPONSE: emergency_response_actions,
}


# ============================================================
# 2) AGGREGATES
# ============================================================

def incentive_earnings(event: DemandResponseEvent, total_reduction_w: float, rate: float) -> float:
    return float(rate * (max(0.0, total_reduction_w) / 1000.0) * event.duration_hours)


def mean_comfort_impact(actions: Sequence[DemandResponseAction]) -> float:
    return float(np.mean([a.comfort_impact for a in actions])) if actions else 0.0


def summarize(
    event: DemandResponseEvent,
    actions: List[DemandResponseAction],
    history: List[DemandResponseState],
    rate: float,
    now: datetime,
) -> DemandResponseResult:
    total = float(sum(a.power_reduction for a in actions))
    return DemandResponseResult(
        event_id=event.event_id,
        responded_at=now,
        state=history[-1],
        state_history=list(history),
        actions=actions,
        total_power_reduction=total,
        target_reduction=event.target_reduction,
        reduction_achieved=total >= event.target_reduction,
        incentive_earnings=incentive_earnings(event, total, rate),
        comfort_impact=mean_comfort_impact(actions),
        duration_hours=event.duration_hours,
    )


# ============================================================
# 3) DEFERRED EXECUTION
# ============================================================

class DeferredActionScheduler:
    def schedule(self, actions: Sequence[DemandResponseAction], event: DemandResponseEvent) -> None:
        raise NotImplementedError


class InMemoryActionScheduler(DeferredActionScheduler):
    """Holds scheduled actions until `run_due()` finds them due."""

    def __init__(self):
        self._pending: List[DemandResponseAction] = []
        self._lock = threading.Lock()

    def schedule(self, actions: Sequence[DemandResponseAction], event: DemandResponseEvent) -> None:
        with self._lock:
            for a in actions:
                if a.scheduled_for is None:
                    a.scheduled_for = event.start_time
                self._pending.append(a)
        logger.info("Scheduled %d demand-response action(s) for event %s", len(actions), event.event_id)

    def pending(self) -> List[DemandResponseAction]:
        with self._lock:
            return list(self._pending)

    def run_due(self, now: datetime, channel: CommandChannel) -> int:
        with self._lock:
            due = [a for a in self._pending if a.scheduled_for is not None and a.scheduled_for <= now]
            self._pending = [a for a in self._pending if a not in due]
        for a in due:
            dispatch_action(a, channel)
        return len(due)


def dispatch_action(action: DemandResponseAction, channel: CommandChannel) -> bool:
    """Sends one action. Device rejections are recorded, bus outages propagate."""
    try:
        action.executed = bool(channel.send_command(action.device_id, action.command))
        if not action.executed:
            action.error_message = "command not accepted"
    except UpstreamUnavailableError:
        raise
    except Exception as e:
        action.executed = False
        action.error_message = str(e)
        logger.warning("Demand-response action on device %s failed: %s", action.device_id, e)
    return action.executed


# ============================================================
# 4) ORCHESTRATOR
# ============================================================

class DemandResponseOrchestrator:
    def __init__(
        self,
        channel: CommandChannel,
        scheduler: Optional[DeferredActionScheduler] = None,
        incentive_rate: float = 0.5,
        events=None,
    ):
        self.channel = channel
        self.scheduler = scheduler or InMemoryActionScheduler()
        self.incentive_rate = incentive_rate
        self.events = events

    def handle(self, event: DemandResponseEvent, pool: ControllablePool, now: datetime) -> DemandResponseResult:
        history = [DemandResponseState.RECEIVED]
        logger.info(
            "Handling demand response event %s: %s from %s to %s",
            event.event_id, event.event_type.value, event.start_time, event.end_time,
        )

        generator = GENERATORS[event.event_type]
        history.append(DemandResponseState.CLASSIFIED)

        actions = generator(event, pool, now)
        history.append(DemandResponseState.ACTIONS_GENERATED)

        immediate = [a for a in actions if a.priority == DemandResponsePriority.IMMEDIATE]
        deferred = [a for a in actions if a.priority != DemandResponsePriority.IMMEDIATE]

        if immediate:
            for a in immediate:
                dispatch_action(a, self.channel)
            history.append(DemandResponseState.IMMEDIATE_EXECUTED)
        if deferred:
            self.scheduler.schedule(deferred, event)
            history.append(DemandResponseState.SCHEDULED)

        history.append(DemandResponseState.REPORTED)
        result = summarize(event, actions, history, self.incentive_rate, now)

        logger.info(
            "Demand response %s: %.0f W of %.0f W target (%s)",
            event.event_id, result.total_power_reduction, event.target_reduction,
            "achieved" if result.reduction_achieved else "short",
        )
        if self.events is not None:
            self.events.publish(
                EventKind.DEMAND_RESPONSE_REPORTED,
                f"Demand response {event.event_id}: {result.total_power_reduction:.0f} W committed",
                event_id=event.event_id,
                reduction_achieved=result.reduction_achieved,
                incentive_earnings=result.incentive_earnings,
            )
        return result
