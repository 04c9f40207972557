"""
scheduler.py

Purpose:
  Periodic background driver. One asyncio task per sweep:
    - optimization (default every 15 min, auto-executes safe strategies)
    - maintenance  (default every 60 min)
    - deferred demand-response actions (every minute)

Shutdown Semantics:
  `stop()` sets the stop event so no new run starts, and tells the plan
  executor to stop after its current device command. It then waits for the
  in-flight runs to return.

Each run body is blocking engine code, executed with `asyncio.to_thread` so
the event loop keeps serving requests.
"""
from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from homegrid.logging_config import logger


class PeriodicDriver:
    def __init__(self, engine, optimization_interval_s: float, maintenance_interval_s: float, dr_interval_s: float = 60.0):
        self.engine = engine
        self.intervals = {
            "optimization": float(optimization_interval_s),
            "maintenance": float(maintenance_interval_s),
            "demand_response": float(dr_interval_s),
        }
        self._stop: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []
        self.runs = {name: 0 for name in self.intervals}

    @classmethod
    def from_settings(cls, engine, settings) -> "PeriodicDriver":
        return cls(
            engine,
            optimization_interval_s=settings.optimization_interval_minutes * 60.0,
            maintenance_interval_s=settings.maintenance_interval_minutes * 60.0,
        )

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def _job(self, name: str) -> Callable[[], object]:
        if name == "optimization":
            return self.engine.run_optimization_cycle
        if name == "maintenance":
            return self.engine.run_maintenance_sweep
        return self.engine.run_due_demand_response

    async def _loop(self, name: str, interval_s: float) -> None:
        job = self._job(name)
        while not self._stop.is_set():
            try:
                await asyncio.to_thread(job)
                self.runs[name] += 1
            except Exception:
                logger.exception("Background %s run failed", name)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                pass

    async def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self.engine.executor.reset()
        self._tasks = [
            asyncio.create_task(self._loop(name, interval), name=f"homegrid-{name}")
            for name, interval in self.intervals.items()
        ]
        logger.info("Periodic driver started: %s", ", ".join(f"{k}={v:.0f}s" for k, v in self.intervals.items()))

    async def stop(self) -> None:
        if self._stop is None:
            return
        self._stop.set()
        self.engine.shutdown()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Periodic driver stopped")
