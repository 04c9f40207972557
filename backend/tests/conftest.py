from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional

import pytest
from fastapi.testclient import TestClient

from homegrid.config import EngineSettings
from homegrid.models.db import make_engine
from homegrid.models.domain import Device, DeviceType, TelemetrySample
from homegrid.services.command_channel import RecordingCommandChannel
from homegrid.services.data_store import SqlDataStore
from homegrid.services.engine import EnergyEngineService

# Monday, outside the seasonal adjustment months
NOW = datetime(2026, 3, 2, 12, 0, 0)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(plan_action_delay_s=0.0, worker_pool_size=2, database_url="sqlite://")


@pytest.fixture
def store() -> SqlDataStore:
    s = SqlDataStore(make_engine("sqlite://"))
    s.init_schema()
    return s


@pytest.fixture
def channel() -> RecordingCommandChannel:
    return RecordingCommandChannel()


@pytest.fixture
def service(store, channel, settings) -> EnergyEngineService:
    return EnergyEngineService(store=store, channel=channel, settings=settings)


@pytest.fixture
def make_device() -> Callable[..., Device]:
    def _make(device_id: int, type: DeviceType = DeviceType.SMART_PLUG, rating: float = 500.0, **kw) -> Device:
        return Device(
            id=device_id,
            name=kw.pop("name", f"{type.value.title()} {device_id}"),
            type=type,
            power_rating_w=rating,
            created_at=kw.pop("created_at", NOW - timedelta(days=400)),
            **kw,
        )
    return _make


@pytest.fixture
def make_samples() -> Callable[..., List[TelemetrySample]]:
    """Evenly spaced samples ending one step before `end` (oldest first)."""
    def _make(
        device_id: int,
        n: int,
        power: Callable[[int], float] = lambda i: 100.0,
        end: datetime = NOW,
        step: timedelta = timedelta(hours=1),
        temperature: Optional[Callable[[int], float]] = None,
    ) -> List[TelemetrySample]:
        first = end - step * n
        return [
            TelemetrySample(
                device_id=device_id,
                timestamp=first + step * i,
                power_consumption=float(power(i)),
                voltage=230.0,
                current=float(power(i)) / 230.0,
                temperature=temperature(i) if temperature else None,
            )
            for i in range(n)
        ]
    return _make


@pytest.fixture
def client(service):
    from homegrid.deps import get_engine_service
    from homegrid.main import app

    app.dependency_overrides[get_engine_service] = lambda: service
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
