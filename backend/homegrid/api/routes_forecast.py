from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from homegrid.deps import get_engine_service, to_http
from homegrid.errors import EngineError
from homegrid.models.domain import EnergyForecast, SolarForecast
from homegrid.services.engine import EnergyEngineService

router = APIRouter()

@router.get("/demand", response_model=EnergyForecast)
def forecast_demand(
    start: Optional[datetime] = Query(None, description="Forecast start (defaults to now)"),
    days: int = Query(1, ge=1, le=14, description="Horizon in days"),
    svc: EnergyEngineService = Depends(get_engine_service),
) -> EnergyForecast:
    """Hourly household demand forecast (W per hour) with 80%/120% bounds."""
    try:
        return svc.forecast_demand(start or datetime.now(), days)
    except EngineError as e:
        raise to_http(e) from e


@router.get("/solar", response_model=SolarForecast)
def forecast_solar(
    start: Optional[datetime] = Query(None, description="Forecast start (defaults to now)"),
    hours: int = Query(24, ge=1, le=168),
    svc: EnergyEngineService = Depends(get_engine_service),
) -> SolarForecast:
    try:
        return svc.forecast_solar(start or datetime.now(), hours)
    except EngineError as e:
        raise to_http(e) from e
