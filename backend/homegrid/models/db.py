from typing import Optional
from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel, create_engine

from homegrid.config import get_settings

# ============================================================
# DB MODELS
# ============================================================
# Timestamps are naive local wall-clock values (see homegrid.clock); the columns
# are plain DateTime so no timezone is attached or demanded on the way in.

class DeviceRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    type: str = Field(index=True)
    status: str = Field(default="ACTIVE", index=True)
    power_rating_w: float = 0.0
    created_at: datetime = Field(default_factory=datetime.now, sa_column=Column(DateTime, nullable=False))
    is_online: bool = True
    controllable: bool = True
    room: Optional[str] = None

class TelemetryRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key="devicerecord.id", index=True)
    ts: datetime = Field(sa_column=Column(DateTime, index=True, nullable=False))

    power_w: float
    voltage: float = 0.0
    current: float = 0.0
    temperature: Optional[float] = None
    vibration: Optional[float] = None

class SolarGenerationRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key="devicerecord.id", index=True)
    ts: datetime = Field(sa_column=Column(DateTime, index=True, nullable=False))
    power_w: float

class BatteryStatusRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key="devicerecord.id", index=True)
    ts: datetime = Field(sa_column=Column(DateTime, index=True, nullable=False))
    charge_level_pct: float
    capacity_kwh: float = 10.0
    max_power_kw: float = 5.0
    mode: str = "STANDBY"

class WeatherRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    ts: datetime = Field(sa_column=Column(DateTime, index=True, nullable=False))
    temperature_c: float
    cloud_cover_pct: float = 0.0
    solar_irradiance: float = 0.0
    condition: Optional[str] = None
    is_forecast: bool = False

class MaintenanceRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key="devicerecord.id", index=True)
    type: str
    status: str
    priority: str = "MEDIUM"
    title: str = ""
    description: str = ""
    scheduled_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    created_at: datetime = Field(default_factory=datetime.now, sa_column=Column(DateTime, index=True, nullable=False))

    predicted_failure_proba: Optional[float] = None
    predicted_failure_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))

class AlertRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key="devicerecord.id", index=True)
    ts: datetime = Field(default_factory=datetime.now, sa_column=Column(DateTime, index=True, nullable=False))
    alert_type: str
    severity: str
    title: str
    message: str
    data: Optional[str] = None  # JSON payload

class PlanRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    plan_id: str = Field(index=True, unique=True)
    name: str
    status: str
    created_at: datetime = Field(default_factory=datetime.now, sa_column=Column(DateTime, nullable=False))
    executed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    actions_json: str = "[]"

class FeedbackRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key="devicerecord.id", index=True)
    device_type: str = Field(index=True)
    ts: datetime = Field(default_factory=datetime.now, sa_column=Column(DateTime, nullable=False))
    predicted_failure_probability: float
    actual_failure: bool
    notes: Optional[str] = None

# ============================================================
# SETUP
# ============================================================

def make_engine(url: str):
    connect_args = {}
    kwargs = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection so every session sees the same in-memory db
            kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=False, connect_args=connect_args, **kwargs)

DATABASE_URL = get_settings().database_url

engine = make_engine(DATABASE_URL)

def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)
