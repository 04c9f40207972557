"""
routes_optimization.py

Endpoints:
  - **POST /optimization/run**: ranks strategies for a window `[start, end)`.
  - **POST /optimization/cycle**: one background-style run (next 24h) with
    auto-execution of the safe top strategies.
  - **POST /optimization/plans/execute**: executes a plan and returns it with
    per-action and aggregate status. 409 if that plan is already executing.
  - **GET /optimization/rate**: tariff in force right now.
"""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from homegrid.deps import get_engine_service, to_http
from homegrid.errors import EngineError
from homegrid.models.domain import OptimizationPlan, OptimizationResult
from homegrid.schemas.requests import EnergyRateResponse, OptimizationCycleResponse, OptimizationRequest
from homegrid.services.engine import EnergyEngineService

router = APIRouter()

@router.post("/run", response_model=OptimizationResult)
def optimization_run(
    req: OptimizationRequest,
    svc: EnergyEngineService = Depends(get_engine_service),
) -> OptimizationResult:
    try:
        return svc.optimize_energy_usage(req.start, req.end)
    except EngineError as e:
        raise to_http(e) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.post("/cycle", response_model=OptimizationCycleResponse)
def optimization_cycle(svc: EnergyEngineService = Depends(get_engine_service)) -> OptimizationCycleResponse:
    try:
        result, plans = svc.run_optimization_cycle()
    except EngineError as e:
        raise to_http(e) from e
    return OptimizationCycleResponse(
        strategies=len(result.strategies),
        plans=[{"plan_id": p.plan_id, "name": p.name, "status": p.execution_status.value} for p in plans],
    )


@router.post("/plans/execute", response_model=OptimizationPlan)
def plan_execute(
    plan: OptimizationPlan,
    svc: EnergyEngineService = Depends(get_engine_service),
) -> OptimizationPlan:
    try:
        return svc.execute_plan(plan)
    except EngineError as e:
        raise to_http(e) from e


@router.get("/rate", response_model=EnergyRateResponse)
def energy_rate(svc: EnergyEngineService = Depends(get_engine_service)) -> EnergyRateResponse:
    now = datetime.now()
    if svc.settings.is_peak(now.hour):
        band = "peak"
    elif svc.settings.is_offpeak(now.hour):
        band = "offpeak"
    else:
        band = "standard"
    return EnergyRateResponse(ts=now.isoformat(), rate=svc.current_energy_rate(now), band=band)
