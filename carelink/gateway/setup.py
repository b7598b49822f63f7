"""
Gateway Setup — initializes and wires together all gateway components.

Called once during app startup.  If the MQTT broker is unreachable the
ingest keeps retrying in the background; the WebSocket side and the
REST endpoints work regardless.
"""

from __future__ import annotations

import asyncio
import logging

from carelink import settings
from carelink.gateway.datastore import DataStoreClient
from carelink.gateway.directory import CaregiverDirectoryCache, DirectoryClient
from carelink.gateway.dispatcher import AlertDispatcher
from carelink.gateway.ingest.mqtt_ingest import MqttIngest
from carelink.gateway.pending import PendingAlertStore
from carelink.gateway.retry import RetrySweeper
from carelink.gateway.sessions import SessionRegistry
from carelink.gateway.topics import TopicRouter

logger = logging.getLogger("gateway.setup")

# Module-level singletons (set during initialize)
_registry: SessionRegistry | None = None
_store: PendingAlertStore | None = None
_dispatcher: AlertDispatcher | None = None
_directory_client: DirectoryClient | None = None
_directory_cache: CaregiverDirectoryCache | None = None
_datastore: DataStoreClient | None = None
_topic_router: TopicRouter | None = None
_retry_sweeper: RetrySweeper | None = None
_mqtt_ingest: MqttIngest | None = None


async def initialize_gateway(start_mqtt: bool = settings.MQTT_ENABLED) -> AlertDispatcher:
    """
    Wire together all gateway components and start background tasks.

    Returns the AlertDispatcher, the entry point for new alerts.
    """
    global _registry, _store, _dispatcher, _directory_client
    global _directory_cache, _datastore, _topic_router
    global _retry_sweeper, _mqtt_ingest

    logger.info("Initializing CareLink gateway...")

    # 1. Shared in-memory state
    _registry = SessionRegistry()
    _store = PendingAlertStore()
    _dispatcher = AlertDispatcher(_registry, _store)

    # 2. Remote API collaborators
    if not settings.API_BASE_URL:
        logger.warning("API_BASE_URL not set - directory lookups will find nobody")
    _directory_client = DirectoryClient()
    _directory_cache = CaregiverDirectoryCache(_directory_client)
    _datastore = DataStoreClient()

    # 3. Topic routing
    _topic_router = TopicRouter(_directory_cache, _dispatcher, _datastore)

    # 4. Retry sweeper
    _retry_sweeper = RetrySweeper(_registry, _store)
    _retry_sweeper.start()

    # 5. MQTT ingest
    if start_mqtt:
        try:
            _mqtt_ingest = MqttIngest(_topic_router, asyncio.get_running_loop())
            _mqtt_ingest.start()
        except Exception as exc:
            logger.error("MQTT ingest failed to start: %s", exc)
            _mqtt_ingest = None
    else:
        logger.info("MQTT ingest disabled")

    logger.info(
        "Gateway initialized: retry every %.1fs, directory TTL %.0fs",
        settings.RETRY_INTERVAL_SECONDS, settings.PATIENTS_CACHE_TTL_SECONDS,
    )
    return _dispatcher


async def shutdown_gateway() -> None:
    """Stop background tasks and close every operator socket."""
    global _mqtt_ingest
    if _retry_sweeper:
        await _retry_sweeper.stop()
    if _mqtt_ingest:
        try:
            _mqtt_ingest.stop()
        except Exception as exc:
            logger.warning("MQTT ingest stop failed: %s", exc)
        _mqtt_ingest = None
    if _registry:
        await _registry.close_all()
    logger.info("Gateway shutdown complete")


def get_registry() -> SessionRegistry | None:
    return _registry


def get_store() -> PendingAlertStore | None:
    return _store


def get_dispatcher() -> AlertDispatcher | None:
    return _dispatcher


def get_directory_client() -> DirectoryClient | None:
    return _directory_client


def get_directory_cache() -> CaregiverDirectoryCache | None:
    return _directory_cache


def get_datastore() -> DataStoreClient | None:
    return _datastore


def get_topic_router() -> TopicRouter | None:
    return _topic_router


def get_retry_sweeper() -> RetrySweeper | None:
    return _retry_sweeper


def get_mqtt_ingest() -> MqttIngest | None:
    return _mqtt_ingest


def mqtt_connected() -> bool:
    return bool(_mqtt_ingest and _mqtt_ingest.connected)
