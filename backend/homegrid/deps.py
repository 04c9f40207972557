"""
deps.py

Purpose:
  Dependency container for the API layer. Builds one `EnergyEngineService`
  per process and hands it to routes through `Depends(get_engine_service)`.

Pattern:
  - `lru_cache` keeps the engine a singleton (shared event buffer, executor
    locks and model registry across requests).
  - Tests swap it with `app.dependency_overrides[get_engine_service]`.
"""
from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from homegrid.config import get_settings
from homegrid.errors import EngineError, NotFoundError, PlanAlreadyRunningError, UpstreamUnavailableError
from homegrid.models.db import engine as db_engine
from homegrid.services.command_channel import RecordingCommandChannel
from homegrid.services.data_store import SqlDataStore
from homegrid.services.engine import EnergyEngineService


@lru_cache(maxsize=1)
def get_engine_service() -> EnergyEngineService:
    store = SqlDataStore(db_engine)
    store.init_schema()
    return EnergyEngineService(store=store, channel=RecordingCommandChannel(), settings=get_settings())


def to_http(exc: EngineError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PlanAlreadyRunningError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, UpstreamUnavailableError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
