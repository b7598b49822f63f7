"""
Alerts API — operational endpoints around the alert engine.

Endpoints:
  GET  /api/clients       Open sessions per caregiver
  GET  /api/status        Connectivity, sessions, queue depth, sweeper state
  POST /api/send-alert    Dispatch a manual alert (operational testing)
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from carelink.dependencies import get_gateway_component, require_api_key
from carelink.gateway import setup
from carelink.gateway.alerts import AlertType

logger = logging.getLogger("gateway.api")

router = APIRouter(prefix="/api", tags=["alerts"], dependencies=[Depends(require_api_key)])


# ── Request / Response Models ──


class SendAlertRequest(BaseModel):
    """Request body for POST /api/send-alert."""

    aideId: Optional[str] = None
    patientId: Optional[str] = None
    alertType: Optional[str] = None
    message: Optional[str] = None


class SendAlertResponse(BaseModel):
    sent: bool
    alertId: str = ""


class GatewayStatusResponse(BaseModel):
    """Response for GET /api/status."""

    status: str = "ok"
    mqttConnected: bool = False
    clients: dict[str, int] = Field(default_factory=dict)
    activeAides: list[str] = Field(default_factory=list)
    pendingAlerts: dict[str, int] = Field(default_factory=dict)
    retryRunning: bool = False


# ── Endpoints ──


@router.get("/clients")
async def list_clients():
    registry = get_gateway_component("registry")
    return {"clients": registry.summarize()}


@router.get("/status", response_model=GatewayStatusResponse)
async def gateway_status():
    registry = get_gateway_component("registry")
    store = get_gateway_component("store")
    sweeper = setup.get_retry_sweeper()
    return GatewayStatusResponse(
        mqttConnected=setup.mqtt_connected(),
        clients=registry.summarize(),
        activeAides=registry.connected_caregivers,
        pendingAlerts=store.summarize(),
        retryRunning=bool(sweeper and sweeper.running),
    )


@router.post("/send-alert", response_model=SendAlertResponse)
async def send_alert(request: SendAlertRequest):
    """Dispatch a ``box_alert`` straight to a caregiver."""
    if not request.aideId or not request.patientId or not request.alertType:
        raise HTTPException(
            status_code=400, detail="aideId, patientId and alertType required"
        )
    dispatcher = get_gateway_component("dispatcher")

    alert, sent = await dispatcher.dispatch_alert(
        request.aideId,
        {
            "type": AlertType.BOX_ALERT,
            "patientId": request.patientId,
            "alertType": request.alertType,
            "message": request.message or "(manual)",
            "topic": f"alert/box/{request.patientId}/manual",
        },
    )
    logger.info("Manual alert %s for caregiver %s (sent=%s)", alert.alertId, request.aideId, sent)
    return SendAlertResponse(sent=sent, alertId=alert.alertId)
