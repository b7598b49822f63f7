"""
Connection Handshake — authenticates a caregiver WebSocket and then
serves it until it closes.

    CONNECTING ──► AUTHENTICATING_CREDENTIAL ──► AUTHENTICATED ──► CLOSED
         │                    │
         └────────────────────┴──► CLOSED   (rejection)

Checks run in a fixed order: operator id, password, shared-secret
token, then the stored credential from the directory.  A rejection
sends exactly one ``{"error": <reason>}`` frame and closes the socket.

Once authenticated, every pending alert is flushed to the new socket,
and the socket accepts two message kinds:
  {"type": "ack", "alertId": "..."}   remove the alert from the queue
  {"type": "resend_pending"}          flush the queue again
Anything else is ignored.
"""

from __future__ import annotations

import hmac
import json
import logging
from enum import Enum
from typing import Any

from starlette.websockets import WebSocket, WebSocketDisconnect

from carelink import settings
from carelink.gateway.alerts import error_message
from carelink.gateway.directory import DirectoryClient, DirectoryError
from carelink.gateway.pending import PendingAlertStore
from carelink.gateway.sessions import OperatorSession, SessionRegistry

logger = logging.getLogger("gateway.handshake")

MISSING_ID = "Missing 'id' query param"
MISSING_PASSWORD = "Missing 'pwd' query param"
INVALID_TOKEN = "Invalid token"
DIRECTORY_FAILURE = "Authentication failed due to API error"
INVALID_PASSWORD = "Invalid password"
INTERNAL_ERROR = "Internal server error."


class HandshakeState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING_CREDENTIAL = "authenticating_credential"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ConnectionHandshake:
    """Drives one caregiver socket from accept to close."""

    def __init__(
        self,
        websocket: WebSocket,
        registry: SessionRegistry,
        store: PendingAlertStore,
        directory: DirectoryClient,
        api_key: str = settings.API_KEY,
    ) -> None:
        self.websocket = websocket
        self._registry = registry
        self._store = store
        self._directory = directory
        self._api_key = api_key
        self.state = HandshakeState.CONNECTING
        self.caregiver_id: str | None = None
        self.rejection: str | None = None

    def _transition(self, new_state: HandshakeState) -> None:
        logger.debug(
            "Handshake %s: %s -> %s",
            self.caregiver_id or "?", self.state.value, new_state.value,
        )
        self.state = new_state

    async def run(self) -> None:
        await self.websocket.accept()

        session = await self._authenticate()
        if session is None:
            return

        self._registry.register(session.caregiver_id, session)
        self._transition(HandshakeState.AUTHENTICATED)
        logger.info("Caregiver connected: %s", session.caregiver_id)
        try:
            await self._send_pending(session)
            await self._serve(session)
        except WebSocketDisconnect:
            pass
        except Exception as exc:
            logger.error(
                "Session %s for caregiver %s failed: %s",
                session.session_id, session.caregiver_id, exc, exc_info=True,
            )
        finally:
            self._registry.unregister(session.caregiver_id, session)
            self._transition(HandshakeState.CLOSED)
            logger.info("Caregiver disconnected: %s", session.caregiver_id)

    # ── Authentication ──

    async def _authenticate(self) -> OperatorSession | None:
        params = self.websocket.query_params
        caregiver_id = params.get("id")
        password = params.get("pwd")
        token = params.get("token")

        if not caregiver_id:
            await self._reject(MISSING_ID)
            return None
        self.caregiver_id = caregiver_id
        if not password:
            await self._reject(MISSING_PASSWORD)
            return None
        if self._api_key and not _secrets_match(token or "", self._api_key):
            logger.warning("[WS Auth] Invalid token for caregiver %s", caregiver_id)
            await self._reject(INVALID_TOKEN)
            return None

        self._transition(HandshakeState.AUTHENTICATING_CREDENTIAL)
        try:
            stored = await self._directory.fetch_credential(caregiver_id)
        except DirectoryError as exc:
            if exc.is_transport_error:
                logger.error(
                    "[WS Auth] Directory unreachable for caregiver %s: %s",
                    caregiver_id, exc,
                )
            else:
                logger.error(
                    "[WS Auth] API call failed for caregiver %s: HTTP %s",
                    caregiver_id, exc.status_code,
                )
            await self._reject(DIRECTORY_FAILURE)
            return None
        except Exception as exc:
            logger.error("[WS Auth] Error: %s", exc, exc_info=True)
            await self._reject(INTERNAL_ERROR)
            return None

        if stored is None or not _secrets_match(str(stored), password):
            logger.warning("[WS Auth] Invalid password for caregiver %s", caregiver_id)
            await self._reject(INVALID_PASSWORD)
            return None

        return OperatorSession(self.websocket, caregiver_id)

    async def _reject(self, reason: str) -> None:
        self.rejection = reason
        try:
            await self.websocket.send_json(error_message(reason))
            await self.websocket.close()
        except Exception as exc:
            logger.debug("Could not deliver rejection %r: %s", reason, exc)
        self._transition(HandshakeState.CLOSED)

    # ── Authenticated ──

    async def _send_pending(self, session: OperatorSession) -> int:
        sent = 0
        for alert in self._store.drain(session.caregiver_id):
            try:
                if await session.send_json(alert.to_message()):
                    sent += 1
            except Exception as exc:
                logger.warning(
                    "Flush to session %s failed: %s", session.session_id, exc
                )
                break
        if sent:
            logger.info(
                "Flushed %d pending alert(s) to caregiver %s",
                sent, session.caregiver_id,
            )
        return sent

    async def _serve(self, session: OperatorSession) -> None:
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

            data = _decode(message)
            if data is None:
                continue

            kind = data.get("type")
            if kind == "ack" and data.get("alertId"):
                self._store.acknowledge(session.caregiver_id, str(data["alertId"]))
            elif kind == "resend_pending":
                await self._send_pending(session)


def _secrets_match(given: str, expected: str) -> bool:
    """Constant-time comparison that accepts any unicode text."""
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def _decode(message: dict[str, Any]) -> dict[str, Any] | None:
    raw = message.get("text")
    if raw is None and message.get("bytes") is not None:
        try:
            raw = message["bytes"].decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
