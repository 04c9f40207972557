"""
routes_maintenance.py

Predictive-maintenance endpoints. Unknown devices answer 404; a store outage
answers 503. Thin data or a missing model still answers 200 with a
zero-confidence prediction.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from homegrid.deps import get_engine_service, to_http
from homegrid.errors import EngineError
from homegrid.models.domain import (
    AnomalyDetectionResult,
    EnergyConsumptionPrediction,
    MaintenanceFeedback,
    MaintenancePrediction,
)
from homegrid.schemas.requests import AnomalyRequest, FeedbackResponse, TrainingResponse
from homegrid.services.engine import EnergyEngineService

router = APIRouter()

@router.get("/predict/{device_id}", response_model=MaintenancePrediction)
def predict_maintenance(device_id: int, svc: EnergyEngineService = Depends(get_engine_service)) -> MaintenancePrediction:
    try:
        return svc.predict_maintenance(device_id)
    except EngineError as e:
        raise to_http(e) from e


@router.get("/predictions", response_model=List[MaintenancePrediction])
def maintenance_predictions(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    svc: EnergyEngineService = Depends(get_engine_service),
) -> List[MaintenancePrediction]:
    """Active devices whose projected failure falls in [start, end] (or is unknown), riskiest first."""
    now = datetime.now()
    try:
        return svc.get_maintenance_predictions(start or now, end or now + timedelta(days=30), now)
    except EngineError as e:
        raise to_http(e) from e


@router.post("/sweep", response_model=List[MaintenancePrediction])
def maintenance_sweep(svc: EnergyEngineService = Depends(get_engine_service)) -> List[MaintenancePrediction]:
    try:
        return svc.run_maintenance_sweep()
    except EngineError as e:
        raise to_http(e) from e


@router.get("/consumption/{device_id}", response_model=EnergyConsumptionPrediction)
def consumption_prediction(
    device_id: int,
    day: Optional[datetime] = Query(None, description="Day to predict (defaults to tomorrow)"),
    svc: EnergyEngineService = Depends(get_engine_service),
) -> EnergyConsumptionPrediction:
    try:
        return svc.predict_energy_consumption(device_id, day or datetime.now() + timedelta(days=1))
    except EngineError as e:
        raise to_http(e) from e


@router.post("/anomalies/{device_id}", response_model=AnomalyDetectionResult)
def detect_anomalies(
    device_id: int,
    req: AnomalyRequest,
    svc: EnergyEngineService = Depends(get_engine_service),
) -> AnomalyDetectionResult:
    try:
        return svc.detect_anomalies(
            device_id,
            series=req.series,
            timestamps=req.timestamps,
            window_size=req.window_size,
            threshold=req.threshold,
        )
    except EngineError as e:
        raise to_http(e) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.post("/feedback", response_model=FeedbackResponse)
def record_feedback(
    feedback: MaintenanceFeedback,
    svc: EnergyEngineService = Depends(get_engine_service),
) -> FeedbackResponse:
    try:
        return FeedbackResponse(**svc.record_feedback(feedback))
    except EngineError as e:
        raise to_http(e) from e


@router.post("/train", response_model=TrainingResponse)
def train_models(svc: EnergyEngineService = Depends(get_engine_service)) -> TrainingResponse:
    try:
        trained = svc.train_models()
    except EngineError as e:
        raise to_http(e) from e
    return TrainingResponse(ts=datetime.now().isoformat(), trained=trained)
