"""
Centralized configuration for the CareLink gateway.
Every value comes from the environment (optionally a .env file).
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Shared secret (REST api_key header + WebSocket token) ---
API_KEY = os.getenv("API_KEY", "")

# --- MQTT broker ---
MQTT_URL = os.getenv("MQTT_URL", "mqtt://localhost:1883")
MQTT_ENABLED = _flag("MQTT_ENABLED", "true")
MQTT_TOPIC = os.getenv("MQTT_TOPIC", "alert/box/#")

# --- Directory / data-store API ---
API_BASE_URL = os.getenv("API_BASE_URL", "").rstrip("/")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
PATIENTS_CACHE_TTL_SECONDS = float(os.getenv("PATIENTS_CACHE_TTL_SECONDS", "30"))

# --- Retry sweeper ---
RETRY_INTERVAL_SECONDS = int(os.getenv("RETRY_INTERVAL_MS", "10000")) / 1000
RETRY_BACKOFF_FACTOR = float(os.getenv("RETRY_BACKOFF_FACTOR", "1.0"))
RETRY_MAX_INTERVAL_SECONDS = float(os.getenv("RETRY_MAX_INTERVAL_SECONDS", "300"))

# --- Topic routing ---
NOTIFY_DELIVERIES = _flag("NOTIFY_DELIVERIES")

# --- Server ---
PORT = int(os.getenv("PORT", "3200"))
