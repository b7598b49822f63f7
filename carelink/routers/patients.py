"""
Patients API — pass-through endpoints to the directory / data-store API.

Endpoints:
  GET   /api/patients/of/{aide_id}            Patients assigned to a caregiver
  GET   /api/prescriptions/{patient_id}       Read prescriptions
  POST  /api/prescriptions/{patient_id}       Record a dispensed dose
  GET   /api/medocs/{patient_id}              Medications of a patient
  PATCH /api/medocs/{medoc_id}/distribute     Decrement a medication's stock
  POST  /api/distributions                    Stock update + caregiver notification
  GET   /api/device/{device_id}/status        Box diagnostic
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from carelink.dependencies import get_gateway_component, require_api_key
from carelink.gateway.alerts import AlertType
from carelink.gateway.api_client import ApiError
from carelink.gateway.datastore import (
    InsufficientStockError,
    missing_dose_fields,
    stock_quantity,
)

logger = logging.getLogger("gateway.api.patients")

router = APIRouter(prefix="/api", tags=["patients"], dependencies=[Depends(require_api_key)])


class DoseRequest(BaseModel):
    heure_distrib: Optional[str] = None
    nom_medoc: Optional[str] = None
    quantite_totale: Optional[int] = None
    quantite_restante: Optional[int] = None
    compartiment: Optional[int] = None


class DistributeRequest(BaseModel):
    quantite_distribuee: Optional[int] = None


class DistributionRequest(BaseModel):
    patientId: Optional[str] = None
    medocId: Optional[str] = None
    quantite: Optional[int] = None
    timestamp: Optional[str] = None


def _datastore():
    datastore = get_gateway_component("datastore")
    if not datastore.configured:
        raise HTTPException(status_code=500, detail="API_BASE_URL not configured")
    return datastore


def _upstream_error(exc: ApiError) -> HTTPException:
    logger.error("Upstream API error: %s", exc)
    return HTTPException(
        status_code=exc.status_code or 502, detail=exc.detail or str(exc)
    )


@router.get("/patients/of/{aide_id}")
async def patients_of(aide_id: str):
    cache = get_gateway_component("directory_cache")
    records = await cache.patients_of(aide_id)
    return {
        "patients": [
            {
                "id_patient": r.get("id_patient"),
                "nomFamille": r.get("nomFamille"),
                "prenom": r.get("prenom"),
            }
            for r in records
        ]
    }


@router.get("/prescriptions/{patient_id}")
async def get_prescriptions(patient_id: str):
    datastore = _datastore()
    try:
        return await datastore.get_prescriptions(patient_id)
    except ApiError as exc:
        raise _upstream_error(exc)


@router.post("/prescriptions/{patient_id}")
async def record_dose(patient_id: str, request: DoseRequest):
    dose = request.model_dump()
    missing = missing_dose_fields(dose)
    if missing:
        raise HTTPException(
            status_code=400, detail=f"Missing required fields: {', '.join(missing)}"
        )
    datastore = _datastore()
    try:
        data = await datastore.record_dose(patient_id, dose)
    except ApiError as exc:
        raise _upstream_error(exc)
    return {"success": True, "data": data}


@router.get("/medocs/{patient_id}")
async def get_medications(patient_id: str):
    datastore = _datastore()
    try:
        return await datastore.get_medications(patient_id)
    except ApiError as exc:
        if exc.status_code == 404:
            return []
        raise _upstream_error(exc)


@router.patch("/medocs/{medoc_id}/distribute")
async def distribute(medoc_id: str, request: DistributeRequest):
    if not request.quantite_distribuee:
        raise HTTPException(status_code=400, detail="quantite_distribuee required")
    datastore = _datastore()
    try:
        remaining, data = await datastore.distribute(medoc_id, request.quantite_distribuee)
    except InsufficientStockError as exc:
        raise HTTPException(
            status_code=400,
            detail={"error": "Insufficient stock", "remaining": exc.remaining},
        )
    except ApiError as exc:
        raise _upstream_error(exc)
    return {"success": True, "quantite_restante": remaining, "data": data}


@router.post("/distributions")
async def record_distribution(request: DistributionRequest):
    """Decrement stock, then notify the patient's caregiver."""
    if not request.patientId or not request.medocId:
        raise HTTPException(status_code=400, detail="patientId and medocId required")
    datastore = _datastore()
    quantity = request.quantite or 1
    try:
        await datastore.distribute(request.medocId, quantity)
    except InsufficientStockError as exc:
        raise HTTPException(
            status_code=400,
            detail={"error": "Insufficient stock", "remaining": exc.remaining},
        )
    except ApiError as exc:
        raise _upstream_error(exc)

    cache = get_gateway_component("directory_cache")
    dispatcher = get_gateway_component("dispatcher")
    caregiver_id = await cache.get_caregiver(request.patientId)
    notified = False
    if caregiver_id:
        notified = await dispatcher.dispatch(
            caregiver_id,
            {
                "type": AlertType.DISTRIBUTION_CONFIRMED,
                "patientId": request.patientId,
                "alertType": "distribution",
                "message": f"{quantity} x {request.medocId}",
                "medocId": request.medocId,
                "quantite": quantity,
                "distributedAt": request.timestamp
                or datetime.now(timezone.utc).isoformat(),
            },
        )
    return {"success": True, "notified": notified}


@router.get("/device/{device_id}/status")
async def device_status(device_id: str):
    datastore = _datastore()
    try:
        patient: Any = await datastore.get_patient(device_id)
    except ApiError as exc:
        if exc.is_transport_error:
            raise _upstream_error(exc)
        patient = None

    medications: list[Any] = []
    if patient is not None:
        try:
            medications = await datastore.get_medications(device_id)
        except ApiError as exc:
            logger.warning("Medications for device %s unavailable: %s", device_id, exc)

    total_stock = sum(
        stock_quantity(m.get("quantite_restante")) or 0
        for m in medications
        if isinstance(m, dict)
    )
    return {
        "deviceId": device_id,
        "registered": patient is not None,
        "patient": patient,
        "medicaments": {
            "count": len(medications),
            "total_stock": total_stock,
            "details": medications,
        },
        "aide_soignant": patient.get("fk_aide_soignant") if isinstance(patient, dict) else None,
    }
