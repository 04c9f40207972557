from __future__ import annotations
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, model_validator

from homegrid.clock import WallClock

class OptimizationRequest(BaseModel):
    start: WallClock
    end: WallClock                 # exclusive

    @model_validator(mode="after")
    def _ordered(self):
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

class AnomalyRequest(BaseModel):
    series: Optional[List[float]] = Field(None, max_length=1000)   # None = read stored telemetry
    timestamps: Optional[List[WallClock]] = None
    window_size: Optional[int] = Field(None, ge=1)
    threshold: float = Field(0.8, ge=0.0, le=1.0)

class FeedbackResponse(BaseModel):
    device_type: str
    feedback_count: int
    retrained: bool

class TrainingResponse(BaseModel):
    ts: str
    trained: Dict[str, int]       # device type -> training examples

class EnergyRateResponse(BaseModel):
    ts: str
    rate: float
    band: str                     # "peak" | "offpeak" | "standard"

class OptimizationCycleResponse(BaseModel):
    strategies: int
    plans: List[Dict[str, object]]
