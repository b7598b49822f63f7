from fastapi import APIRouter

from carelink import settings
from carelink.gateway import setup

router = APIRouter()


@router.get("/")
async def root():
    return {
        "status": "CareLink Alert Gateway is Running",
        "endpoints": {
            "operator_ws": "/ws?id=<aideId>&pwd=<password>&token=<API_KEY>",
            "health": "/api/health",
            "status": "/api/status",
            "clients": "/api/clients",
            "send_alert": "/api/send-alert",
        },
    }


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "carelink-gateway",
        "port": settings.PORT,
    }


@router.get("/api/health")
async def api_health():
    """Connectivity summary: broker link and caregivers online."""
    registry = setup.get_registry()
    store = setup.get_store()
    return {
        "status": "ok",
        "mqttConnected": setup.mqtt_connected(),
        "activeAides": registry.connected_caregivers if registry else [],
        "pendingAlerts": store.total_pending if store else 0,
    }
