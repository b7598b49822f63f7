"""
CareLink Alert Gateway — Application Factory
"""

import time
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from carelink import settings

# ── 1. Configure logging ──
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("carelink-server")

_startup_time = time.time()
logger.info("Server initialization started...")

# ── 2. Create FastAPI app ──
app = FastAPI(title="CareLink Alert Gateway")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── 3. Register routers ──
from carelink.routers import (
    health,
    alerts_api,
    patients,
    operator_ws,
)

app.include_router(health.router)
app.include_router(alerts_api.router)
app.include_router(patients.router)
app.include_router(operator_ws.router)


# ── 4. Startup / shutdown ──
@app.on_event("startup")
async def startup_event():
    logger.info("=" * 60)
    logger.info("CareLink Alert Gateway Starting")
    logger.info(f"Listening on port: {settings.PORT}")
    logger.info(f"Total init time: {time.time() - _startup_time:.2f}s")
    logger.info("=" * 60)

    from carelink.gateway.setup import initialize_gateway
    await initialize_gateway(start_mqtt=settings.MQTT_ENABLED)


@app.on_event("shutdown")
async def shutdown_event():
    from carelink.gateway.setup import shutdown_gateway
    await shutdown_gateway()
