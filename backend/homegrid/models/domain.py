from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from homegrid.clock import WallClock


# ============================================================
# 0) ENUMS (Type Safety)
# ============================================================

class DeviceType(str, Enum):
    SMART_THERMOSTAT = "SMART_THERMOSTAT"
    SMART_LIGHT = "SMART_LIGHT"
    SMART_PLUG = "SMART_PLUG"
    SOLAR_INVERTER = "SOLAR_INVERTER"
    BATTERY_STORAGE = "BATTERY_STORAGE"
    AIR_CONDITIONER = "AIR_CONDITIONER"
    HEAT_PUMP = "HEAT_PUMP"
    WATER_HEATER = "WATER_HEATER"
    REFRIGERATOR = "REFRIGERATOR"
    WASHING_MACHINE = "WASHING_MACHINE"
    DRYER = "DRYER"
    DISHWASHER = "DISHWASHER"
    EV_CHARGER = "EV_CHARGER"
    ENERGY_METER = "ENERGY_METER"
    OTHER = "OTHER"


# Loads whose run time can move without occupant impact
DEFERRABLE_TYPES = {
    DeviceType.WASHING_MACHINE,
    DeviceType.DRYER,
    DeviceType.DISHWASHER,
    DeviceType.EV_CHARGER,
}

THERMAL_TYPES = {
    DeviceType.SMART_THERMOSTAT,
    DeviceType.AIR_CONDITIONER,
    DeviceType.HEAT_PUMP,
    DeviceType.WATER_HEATER,
}

class DeviceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"
    ERROR = "ERROR"
    OFFLINE = "OFFLINE"

class BatteryMode(str, Enum):
    CHARGING = "CHARGING"
    DISCHARGING = "DISCHARGING"
    STANDBY = "STANDBY"
    BACKUP = "BACKUP"

class MaintenanceType(str, Enum):
    PREVENTIVE = "PREVENTIVE"
    PREDICTIVE = "PREDICTIVE"
    CORRECTIVE = "CORRECTIVE"
    EMERGENCY = "EMERGENCY"

class MaintenanceStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    OVERDUE = "OVERDUE"

class MaintenancePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

class OptimizationType(str, Enum):
    LOAD_SHIFTING = "LOAD_SHIFTING"
    PEAK_SHAVING = "PEAK_SHAVING"
    BATTERY_OPTIMIZATION = "BATTERY_OPTIMIZATION"
    THERMAL_OPTIMIZATION = "THERMAL_OPTIMIZATION"
    APPLIANCE_SCHEDULING = "APPLIANCE_SCHEDULING"

class ActionType(str, Enum):
    DEVICE_CONTROL = "DEVICE_CONTROL"
    SCHEDULE_CHANGE = "SCHEDULE_CHANGE"
    BATTERY_OPERATION = "BATTERY_OPERATION"
    LOAD_SHIFTING = "LOAD_SHIFTING"
    THERMAL_ADJUSTMENT = "THERMAL_ADJUSTMENT"

class ActionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

class PlanStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    PARTIALLY_COMPLETED = "PARTIALLY_COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

class DemandResponseEventType(str, Enum):
    PEAK_SHAVING = "PEAK_SHAVING"
    LOAD_REDUCTION = "LOAD_REDUCTION"
    FREQUENCY_REGULATION = "FREQUENCY_REGULATION"
    EMERGENCY_RESPONSE = "EMERGENCY_RESPONSE"

class DemandResponsePriority(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    SCHEDULED = "SCHEDULED"

class DemandResponseState(str, Enum):
    RECEIVED = "RECEIVED"
    CLASSIFIED = "CLASSIFIED"
    ACTIONS_GENERATED = "ACTIONS_GENERATED"
    IMMEDIATE_EXECUTED = "IMMEDIATE_EXECUTED"
    SCHEDULED = "SCHEDULED"
    REPORTED = "REPORTED"

class EventKind(str, Enum):
    PREDICTION_PRODUCED = "prediction.produced"
    MAINTENANCE_SCHEDULED = "maintenance.scheduled"
    ANOMALY_DETECTED = "anomaly.detected"
    OPTIMIZATION_COMPLETED = "optimization.completed"
    PLAN_COMPLETED = "plan.completed"
    DEMAND_RESPONSE_REPORTED = "demand_response.reported"


def _new_id() -> str:
    return str(uuid.uuid4())


# ============================================================
# 1) INPUTS (read from the data store)
# ============================================================

class Device(BaseModel):
    id: int
    name: str
    type: DeviceType = DeviceType.OTHER
    status: DeviceStatus = DeviceStatus.ACTIVE
    power_rating_w: float = 0.0
    created_at: WallClock
    is_online: bool = True
    controllable: bool = True
    room: Optional[str] = None


class TelemetrySample(BaseModel):
    """One reading from a device. Power in W, voltage in V, current in A."""
    model_config = ConfigDict(frozen=True)

    device_id: int
    timestamp: WallClock
    power_consumption: float
    voltage: float = 0.0
    current: float = 0.0
    temperature: Optional[float] = None
    vibration: Optional[float] = None


class WeatherSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: WallClock
    temperature_c: float
    cloud_cover_pct: float = 0.0       # 0..100
    solar_irradiance: float = 0.0      # W/m2
    condition: Optional[str] = None
    is_forecast: bool = False


class BatterySnapshot(BaseModel):
    device_id: int
    timestamp: WallClock
    charge_level_pct: float
    capacity_kwh: float = 10.0
    max_power_kw: float = 5.0
    mode: BatteryMode = BatteryMode.STANDBY


class MaintenanceEvent(BaseModel):
    device_id: int
    created_at: WallClock
    type: MaintenanceType = MaintenanceType.PREVENTIVE
    status: MaintenanceStatus = MaintenanceStatus.COMPLETED


# ============================================================
# 2) ANALYTICS OUTPUTS
# ============================================================

FEATURE_NAMES: Tuple[str, ...] = (
    "avg_power",
    "std_dev_power",
    "avg_voltage",
    "avg_current",
    "avg_temperature",
    "avg_vibration",
    "operating_hours",
    "power_trend_slope",
    "temperature_trend_slope",
    "days_since_last_maintenance",
    "anomaly_score",
)


class FeatureVector(BaseModel):
    avg_power: float = 0.0
    std_dev_power: float = 0.0
    avg_voltage: float = 0.0
    avg_current: float = 0.0
    avg_temperature: float = 0.0
    avg_vibration: float = 0.0
    operating_hours: float = 0.0
    power_trend_slope: float = 0.0
    temperature_trend_slope: float = 0.0
    days_since_last_maintenance: float = 365.0
    anomaly_score: float = Field(0.0, ge=0.0, le=1.0)

    def as_list(self) -> List[float]:
        return [float(getattr(self, name)) for name in FEATURE_NAMES]


class AnomalyPoint(BaseModel):
    index: int
    value: float
    timestamp: datetime
    severity: float


class AnomalyDetectionResult(BaseModel):
    device_id: Optional[int] = None
    has_anomalies: bool
    anomaly_count: int
    anomalies: List[AnomalyPoint] = Field(default_factory=list)
    confidence: float = 0.0
    window_size: int
    threshold: float
    detected_at: datetime


class ForecastPoint(BaseModel):
    timestamp: datetime
    point_estimate: float
    lower_bound: float
    upper_bound: float
    confidence: float = Field(..., ge=0.0, le=1.0)

    # Explainability (optional)
    weather_factor: Optional[float] = None
    seasonal_factor: Optional[float] = None
    sample_count: Optional[int] = None


class EnergyForecast(BaseModel):
    generated_at: datetime
    start: datetime
    end: datetime
    points: List[ForecastPoint] = Field(default_factory=list)
    total_predicted: float = 0.0
    average_confidence: float = 0.0
    peak_periods: List[datetime] = Field(default_factory=list)
    low_periods: List[datetime] = Field(default_factory=list)


class SolarForecast(BaseModel):
    generated_at: datetime
    points: List[ForecastPoint] = Field(default_factory=list)
    total_generation: float = 0.0


class MaintenancePrediction(BaseModel):
    device_id: int
    device_name: Optional[str] = None
    device_type: Optional[DeviceType] = None
    failure_probability: float = Field(0.0, ge=0.0, le=1.0)
    predicted_failure_date: Optional[datetime] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    recommended_actions: List[str] = Field(default_factory=list)
    feature_importance: Dict[str, float] = Field(default_factory=dict)
    degradation_rate: Optional[float] = None
    insufficient_data: bool = False
    model_available: bool = True
    last_updated: Optional[datetime] = None


class EnergyConsumptionPrediction(BaseModel):
    device_id: int
    device_name: Optional[str] = None
    prediction_date: datetime
    predicted_consumption_kwh: float
    lower_bound_kwh: float
    upper_bound_kwh: float
    confidence: float


class MaintenanceFeedback(BaseModel):
    device_id: int
    predicted_failure_probability: float = Field(..., ge=0.0, le=1.0)
    actual_failure: bool
    notes: Optional[str] = None


# ============================================================
# 3) OPTIMIZATION & PLANS
# ============================================================

class OptimizationStrategy(BaseModel):
    name: str
    type: OptimizationType
    description: str = ""

    energy_savings_kwh: float = 0.0
    potential_savings: float = Field(0.0, ge=0.0)
    comfort_impact: float = Field(0.0, ge=0.0, le=10.0)
    implementation_complexity: float = Field(0.0, ge=0.0, le=10.0)

    auto_execute: bool = False
    target_device_id: Optional[int] = None
    action_type: ActionType = ActionType.DEVICE_CONTROL
    parameters: Dict[str, Any] = Field(default_factory=dict)

    ranking_score: float = 0.0


class OptimizationResult(BaseModel):
    optimized_at: datetime
    window_start: datetime
    window_end: datetime
    current_consumption_w: float = 0.0

    strategies: List[OptimizationStrategy] = Field(default_factory=list)
    implementation_priority: List[OptimizationStrategy] = Field(default_factory=list)

    total_potential_savings: float = 0.0
    total_energy_savings_kwh: float = 0.0
    estimated_cost_savings: float = 0.0
    comfort_score: float = 1.0
    environmental_impact_kg_co2: float = 0.0
    recommended_actions: List[str] = Field(default_factory=list)


class OptimizationAction(BaseModel):
    action_id: str = Field(default_factory=_new_id)
    action_type: ActionType = ActionType.DEVICE_CONTROL
    device_id: Optional[int] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    execution_order: int = 1

    execution_status: ActionStatus = ActionStatus.PENDING
    executed_at: Optional[WallClock] = None
    error_message: Optional[str] = None


class OptimizationPlan(BaseModel):
    plan_id: str = Field(default_factory=_new_id)
    name: str = "Default Plan"
    actions: List[OptimizationAction] = Field(default_factory=list)
    execution_status: PlanStatus = PlanStatus.PENDING
    created_at: WallClock = Field(default_factory=datetime.now)
    executed_at: Optional[WallClock] = None


# ============================================================
# 4) DEMAND RESPONSE
# ============================================================

class DemandResponseEvent(BaseModel):
    event_id: str
    event_type: DemandResponseEventType
    start_time: WallClock
    end_time: WallClock
    target_reduction: float = Field(..., ge=0.0)   # W

    @property
    def duration_hours(self) -> float:
        return max(0.0, (self.end_time - self.start_time).total_seconds() / 3600.0)


class DemandResponseAction(BaseModel):
    action_id: str = Field(default_factory=_new_id)
    device_id: Optional[int] = None
    device_name: Optional[str] = None
    command: Dict[str, Any] = Field(default_factory=dict)
    power_reduction: float = 0.0   # W
    priority: DemandResponsePriority = DemandResponsePriority.SCHEDULED
    comfort_impact: float = 0.0
    scheduled_for: Optional[datetime] = None

    executed: bool = False
    error_message: Optional[str] = None


class DemandResponseResult(BaseModel):
    event_id: str
    responded_at: datetime
    state: DemandResponseState
    state_history: List[DemandResponseState] = Field(default_factory=list)

    actions: List[DemandResponseAction] = Field(default_factory=list)
    total_power_reduction: float = 0.0
    target_reduction: float = 0.0
    reduction_achieved: bool = False
    incentive_earnings: float = 0.0
    comfort_impact: float = 0.0
    duration_hours: float = 0.0


# ============================================================
# 5) ENGINE EVENTS & API RESPONSES
# ============================================================

class EngineEvent(BaseModel):
    ts: str
    kind: EventKind
    message: str
    device_id: Optional[int] = None
    plan_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class EventsLatestResponse(BaseModel):
    ts: str
    events: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    ts: str
