import pytest

from homegrid.errors import PlanAlreadyRunningError, UpstreamUnavailableError
from homegrid.models.domain import (
    ActionStatus,
    ActionType,
    EventKind,
    OptimizationAction,
    OptimizationPlan,
    PlanStatus,
)
from homegrid.services.command_channel import CommandChannel, RecordingCommandChannel
from homegrid.services.events import EventBus
from homegrid.services.plan_executor import PlanExecutor, aggregate_status


def _plan(device_ids=(1, 2, 3), orders=None):
    orders = orders or range(1, len(device_ids) + 1)
    return OptimizationPlan(
        name="Evening plan",
        actions=[
            OptimizationAction(action_type=ActionType.DEVICE_CONTROL, device_id=d, execution_order=o, parameters={"level": o})
            for d, o in zip(device_ids, orders)
        ],
    )


class StoppingChannel(RecordingCommandChannel):
    """Requests shutdown while the first command is in flight."""

    def __init__(self):
        super().__init__()
        self.executor = None

    def send_command(self, device_id, command):
        ok = super().send_command(device_id, command)
        self.executor.stop()
        return ok


class ReentrantChannel(CommandChannel):
    """Tries to start the same plan again from inside a command."""

    def __init__(self):
        self.executor = None
        self.plan = None
        self.errors = []

    def send_command(self, device_id, command):
        try:
            self.executor.execute(self.plan)
        except PlanAlreadyRunningError as e:
            self.errors.append(e)
        return True


@pytest.mark.parametrize("case", [
    {"id": "all_accepted", "rejected": (), "status": PlanStatus.COMPLETED},
    {"id": "one_rejected", "rejected": (2,), "status": PlanStatus.PARTIALLY_COMPLETED},
    {"id": "all_rejected", "rejected": (1, 2, 3), "status": PlanStatus.FAILED},
])
def test_aggregate_status_after_run(case):
    channel = RecordingCommandChannel(rejected_devices=case["rejected"])
    plan = PlanExecutor(channel, delay_s=0).execute(_plan())

    assert plan.execution_status == case["status"]
    for a in plan.actions:
        expected = ActionStatus.FAILED if a.device_id in case["rejected"] else ActionStatus.COMPLETED
        assert a.execution_status == expected
        assert a.executed_at is not None


def test_rejected_action_keeps_error_and_later_actions_run():
    channel = RecordingCommandChannel(rejected_devices=[1])
    plan = PlanExecutor(channel, delay_s=0).execute(_plan())

    assert "rejected" in plan.actions[0].error_message
    assert [c["device_id"] for c in channel.sent] == [2, 3]


def test_actions_run_in_execution_order():
    channel = RecordingCommandChannel()
    PlanExecutor(channel, delay_s=0).execute(_plan(device_ids=(7, 8, 9), orders=(3, 1, 2)))

    assert [c["device_id"] for c in channel.sent] == [8, 9, 7]
    assert channel.commands_for(8)[0]["command"] == ActionType.DEVICE_CONTROL.value
    assert channel.commands_for(8)[0]["level"] == 1


def test_same_plan_cannot_run_twice_concurrently():
    channel = ReentrantChannel()
    executor = PlanExecutor(channel, delay_s=0)
    plan = _plan(device_ids=(1,))
    channel.executor, channel.plan = executor, plan

    executor.execute(plan)

    assert len(channel.errors) == 1
    assert plan.execution_status == PlanStatus.COMPLETED
    assert not executor.is_running(plan.plan_id)


def test_stop_cancels_remaining_actions():
    channel = StoppingChannel()
    executor = PlanExecutor(channel, delay_s=0)
    channel.executor = executor

    plan = executor.execute(_plan())

    assert [a.execution_status for a in plan.actions] == [
        ActionStatus.COMPLETED,
        ActionStatus.CANCELLED,
        ActionStatus.CANCELLED,
    ]
    assert plan.execution_status == PlanStatus.PARTIALLY_COMPLETED


def test_stopped_before_start_is_cancelled():
    executor = PlanExecutor(RecordingCommandChannel(), delay_s=0)
    executor.stop()
    plan = executor.execute(_plan())
    assert plan.execution_status == PlanStatus.CANCELLED

    executor.reset()
    assert executor.execute(_plan()).execution_status == PlanStatus.COMPLETED


def test_bus_outage_propagates_and_is_recorded(store):
    channel = RecordingCommandChannel()
    channel.available = False
    executor = PlanExecutor(channel, delay_s=0, store=store)
    plan = _plan()

    with pytest.raises(UpstreamUnavailableError):
        executor.execute(plan)

    assert plan.actions[0].execution_status == ActionStatus.FAILED
    assert plan.actions[1].execution_status == ActionStatus.PENDING
    assert plan.execution_status == PlanStatus.FAILED
    assert store.get_plan_status(plan.plan_id) == PlanStatus.FAILED.value
    assert not executor.is_running(plan.plan_id)


def test_completion_is_persisted_and_published(store):
    events = EventBus()
    plan = PlanExecutor(RecordingCommandChannel(rejected_devices=[3]), delay_s=0, store=store, events=events).execute(_plan())

    assert store.get_plan_status(plan.plan_id) == PlanStatus.PARTIALLY_COMPLETED.value
    (event,) = events.latest(kind=EventKind.PLAN_COMPLETED)
    assert event["plan_id"] == plan.plan_id
    assert event["payload"]["failed_actions"] == 1


def test_aggregate_of_empty_plan_is_completed():
    assert aggregate_status([]) == PlanStatus.COMPLETED


def _with_statuses(*statuses):
    plan = _plan(device_ids=tuple(range(1, len(statuses) + 1)))
    for a, s in zip(plan.actions, statuses):
        a.execution_status = s
    return plan.actions


@pytest.mark.parametrize("case", [
    {"id": "stopped_nothing_ran", "statuses": (ActionStatus.CANCELLED, ActionStatus.CANCELLED), "status": PlanStatus.CANCELLED},
    {"id": "stopped_after_failure", "statuses": (ActionStatus.FAILED, ActionStatus.CANCELLED), "status": PlanStatus.CANCELLED},
    {"id": "stopped_after_success", "statuses": (ActionStatus.COMPLETED, ActionStatus.CANCELLED), "status": PlanStatus.PARTIALLY_COMPLETED},
])
def test_aggregate_status_when_stopped(case):
    assert aggregate_status(_with_statuses(*case["statuses"]), stopped=True) == case["status"]


def test_failed_plan_without_stop_is_never_cancelled():
    actions = _with_statuses(ActionStatus.FAILED, ActionStatus.FAILED)
    assert aggregate_status(actions) == PlanStatus.FAILED
