from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from homegrid.deps import get_engine_service
from homegrid.models.domain import EventKind, EventsLatestResponse
from homegrid.services.engine import EnergyEngineService

router = APIRouter()

@router.get("/latest", response_model=EventsLatestResponse)
async def events_latest(
    limit: int = Query(60, ge=1, le=200, description="Max number of events to return"),
    kind: Optional[EventKind] = Query(None),
    svc: EnergyEngineService = Depends(get_engine_service),
) -> EventsLatestResponse:
    """Recent domain events (predictions, plans, demand response) for dashboards."""
    return EventsLatestResponse(ts=datetime.now().isoformat(), events=svc.events.latest(limit=limit, kind=kind))


@router.get("/stream", response_class=EventSourceResponse)
async def events_stream(svc: EnergyEngineService = Depends(get_engine_service)):
    """Streams new domain events every 1s (SSE)."""
    bus = svc.events

    async def event_generator():
        cursor, _ = bus.since(0)
        while True:
            cursor, fresh = bus.since(cursor)
            for e in fresh:
                yield {"event": e["kind"], "data": json.dumps(e)}
            await asyncio.sleep(1.0)

    return EventSourceResponse(event_generator())
