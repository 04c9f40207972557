"""
errors.py

Error taxonomy surfaced to callers of the engine.

Only collaborator failures and invalid arguments are raised. Analytics
shortfalls (too few samples, no trained model) are reported as degraded
results with zero confidence, never as exceptions.
"""
from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class NotFoundError(EngineError):
    def __init__(self, kind: str, key: object):
        super().__init__(f"{kind} with id {key} not found")
        self.kind = kind
        self.key = key


class UpstreamUnavailableError(EngineError):
    """Persistence or transport collaborator failed."""

    def __init__(self, collaborator: str, detail: str, cause: Optional[BaseException] = None):
        super().__init__(f"{collaborator} unavailable: {detail}")
        self.collaborator = collaborator
        self.detail = detail
        self.__cause__ = cause


class ActionExecutionError(EngineError):
    """A single device command was rejected. Recorded per action, never aborts a plan."""

    def __init__(self, device_id: Optional[int], message: str):
        super().__init__(message)
        self.device_id = device_id


class PlanAlreadyRunningError(EngineError):
    def __init__(self, plan_id: str):
        super().__init__(f"plan {plan_id} is already executing")
        self.plan_id = plan_id
