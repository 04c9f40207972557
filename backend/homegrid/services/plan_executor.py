"""
plan_executor.py

Purpose:
  Applies an `OptimizationPlan` to devices through the command channel.

Execution Rules:
  - Actions run one at a time in ascending `execution_order`.
  - A failed action is recorded (FAILED + error message) and the next action
    still runs. Nothing is rolled back.
  - A paced delay separates consecutive actions (`plan_action_delay_s`).
  - One in-flight execution per plan id; a second call raises
    `PlanAlreadyRunningError`.
  - Shutdown (`stop()`) lets the current command finish; the remaining
    actions are marked CANCELLED.
  - A command-bus outage aborts the run and propagates; statuses already
    recorded stand.

Aggregate Status:
  COMPLETED if every action completed, PARTIALLY_COMPLETED if at least one
  did, CANCELLED if stopped before any completed, else FAILED.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from homegrid.errors import ActionExecutionError, PlanAlreadyRunningError, UpstreamUnavailableError
from homegrid.logging_config import logger
from homegrid.models.domain import (
    ActionStatus,
    EventKind,
    OptimizationAction,
    OptimizationPlan,
    PlanStatus,
)
from homegrid.services.command_channel import CommandChannel


def aggregate_status(actions: Sequence[OptimizationAction], stopped: bool = False) -> PlanStatus:
    """
    Plan outcome from its action outcomes.

    The base rule is COMPLETED / PARTIALLY_COMPLETED / FAILED. CANCELLED extends
    it for one case only: `stopped` is set and no action completed, i.e. a
    shutdown interrupted the plan before it changed anything. A stopped plan
    with some completed actions is still PARTIALLY_COMPLETED.
    """
    statuses = [a.execution_status for a in actions]
    if all(s == ActionStatus.COMPLETED for s in statuses):
        return PlanStatus.COMPLETED
    if any(s == ActionStatus.COMPLETED for s in statuses):
        return PlanStatus.PARTIALLY_COMPLETED
    if stopped:
        return PlanStatus.CANCELLED
    return PlanStatus.FAILED


def build_command(action: OptimizationAction) -> Dict[str, Any]:
    cmd: Dict[str, Any] = {"command": action.action_type.value, "action_id": action.action_id}
    cmd.update(action.parameters)
    return cmd


class PlanExecutor:
    def __init__(self, channel: CommandChannel, delay_s: float = 2.0, store=None, events=None):
        self.channel = channel
        self.delay_s = max(0.0, float(delay_s))
        self.store = store
        self.events = events

        self._stop = threading.Event()
        self._running: Set[str] = set()
        self._lock = threading.Lock()

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def stop(self) -> None:
        self._stop.set()

    def reset(self) -> None:
        self._stop.clear()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def is_running(self, plan_id: str) -> bool:
        with self._lock:
            return plan_id in self._running

    def _acquire(self, plan_id: str) -> None:
        with self._lock:
            if plan_id in self._running:
                raise PlanAlreadyRunningError(plan_id)
            self._running.add(plan_id)

    def _release(self, plan_id: str) -> None:
        with self._lock:
            self._running.discard(plan_id)

    # -----------------------------
    # Execution
    # -----------------------------
    def _run_action(self, action: OptimizationAction) -> None:
        action.execution_status = ActionStatus.IN_PROGRESS
        try:
            accepted = self.channel.send_command(action.device_id, build_command(action))
            if not accepted:
                raise ActionExecutionError(action.device_id, "command not accepted")
            action.execution_status = ActionStatus.COMPLETED
            action.error_message = None
        except UpstreamUnavailableError as e:
            action.execution_status = ActionStatus.FAILED
            action.error_message = str(e)
            raise
        except Exception as e:
            action.execution_status = ActionStatus.FAILED
            action.error_message = str(e)
            logger.warning("Action %s on device %s failed: %s", action.action_id, action.device_id, e)
        finally:
            action.executed_at = datetime.now()

    def execute(self, plan: OptimizationPlan) -> OptimizationPlan:
        """Runs the plan in place and returns it."""
        self._acquire(plan.plan_id)
        logger.info("Executing optimization plan %s (%s, %d actions)", plan.plan_id, plan.name, len(plan.actions))

        plan.execution_status = PlanStatus.IN_PROGRESS
        ordered: List[OptimizationAction] = sorted(plan.actions, key=lambda a: a.execution_order)
        stopped = False
        try:
            for i, action in enumerate(ordered):
                if i > 0 and self.delay_s > 0:
                    self._stop.wait(self.delay_s)
                if self._stop.is_set():
                    stopped = True
                    for rest in ordered[i:]:
                        rest.execution_status = ActionStatus.CANCELLED
                    logger.info("Plan %s stopped before action %d", plan.plan_id, action.execution_order)
                    break
                self._run_action(action)
        finally:
            plan.execution_status = aggregate_status(ordered, stopped=stopped)
            plan.executed_at = datetime.now()
            self._release(plan.plan_id)
            self._finish(plan)

        return plan

    def _finish(self, plan: OptimizationPlan) -> None:
        logger.info("Optimization plan %s finished: %s", plan.plan_id, plan.execution_status.value)
        if self.store is not None:
            self.store.save_plan(plan)
        if self.events is not None:
            failed = sum(1 for a in plan.actions if a.execution_status == ActionStatus.FAILED)
            self.events.publish(
                EventKind.PLAN_COMPLETED,
                f"Plan '{plan.name}' finished with status {plan.execution_status.value}",
                plan_id=plan.plan_id,
                status=plan.execution_status.value,
                failed_actions=failed,
            )
