import logging
from fastapi import APIRouter, WebSocket

from carelink import settings
from carelink.gateway import setup
from carelink.gateway.handshake import ConnectionHandshake

router = APIRouter()
logger = logging.getLogger("gateway.ws")


@router.websocket("/")
@router.websocket("/ws")
async def operator_socket(websocket: WebSocket):
    """Caregiver alert stream: ?id=<aideId>&pwd=<password>&token=<API_KEY>"""
    registry = setup.get_registry()
    store = setup.get_store()
    directory = setup.get_directory_client()
    if registry is None or store is None or directory is None:
        await websocket.close(code=1011, reason="Service unavailable")
        return

    handshake = ConnectionHandshake(
        websocket, registry, store, directory, api_key=settings.API_KEY
    )
    await handshake.run()
