from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from homegrid.deps import get_engine_service, to_http
from homegrid.errors import EngineError
from homegrid.models.domain import DemandResponseAction, DemandResponseEvent, DemandResponseResult
from homegrid.services.engine import EnergyEngineService

router = APIRouter()

@router.post("/events", response_model=DemandResponseResult)
def handle_event(
    event: DemandResponseEvent,
    svc: EnergyEngineService = Depends(get_engine_service),
) -> DemandResponseResult:
    """
    Classifies a utility event, runs IMMEDIATE actions now and queues the
    rest. The result reports committed reduction vs target and incentive.
    """
    try:
        return svc.handle_demand_response(event)
    except EngineError as e:
        raise to_http(e) from e


@router.get("/scheduled", response_model=List[DemandResponseAction])
def scheduled_actions(svc: EnergyEngineService = Depends(get_engine_service)) -> List[DemandResponseAction]:
    return svc.demand_response.scheduler.pending()
