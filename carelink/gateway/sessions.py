"""
Session Registry — which caregiver sockets are connected right now.

One caregiver may be logged in on several devices, so the registry maps
caregiver_id → set of OperatorSession.  The registry never owns the
sockets: the handshake that created a session is responsible for
unregistering it when the socket closes.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

from starlette.websockets import WebSocket, WebSocketState

logger = logging.getLogger("gateway.sessions")


class OperatorSession:
    """One authenticated, live WebSocket bound to a caregiver."""

    def __init__(self, websocket: WebSocket, caregiver_id: str) -> None:
        self.websocket = websocket
        self.caregiver_id = caregiver_id
        self.session_id = str(uuid.uuid4())
        self.connected_at = datetime.now(timezone.utc)
        self.messages_sent = 0

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, data: dict[str, Any]) -> bool:
        """
        Send one JSON frame.

        Returns False (without raising) when the socket is already closed;
        transport errors on an open socket propagate to the caller.
        """
        if not self.is_open:
            return False
        await self.websocket.send_json(data)
        self.messages_sent += 1
        return True

    def get_session_info(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "caregiver_id": self.caregiver_id,
            "connected_at": self.connected_at.isoformat(),
            "messages_sent": self.messages_sent,
        }

    def __repr__(self) -> str:
        return f"OperatorSession({self.caregiver_id!r}, {self.session_id[:8]})"


class SessionRegistry:
    """
    Thread-safe caregiver_id → {OperatorSession} index.

    All mutation goes through register/unregister.  Reads hand out
    snapshots, so a broadcast in progress is never affected by a
    concurrent connect or disconnect.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, set[OperatorSession]] = {}
        self._lock = threading.Lock()

    def register(self, caregiver_id: str, session: OperatorSession) -> None:
        with self._lock:
            self._sessions.setdefault(caregiver_id, set()).add(session)
            count = len(self._sessions[caregiver_id])
        logger.info(
            "Registered session %s for caregiver %s (%d open)",
            session.session_id, caregiver_id, count,
        )

    def unregister(self, caregiver_id: str, session: OperatorSession) -> None:
        with self._lock:
            sessions = self._sessions.get(caregiver_id)
            if sessions is None or session not in sessions:
                return
            sessions.discard(session)
            if not sessions:
                del self._sessions[caregiver_id]
        logger.info(
            "Unregistered session %s for caregiver %s",
            session.session_id, caregiver_id,
        )

    def sessions_for(self, caregiver_id: str) -> list[OperatorSession]:
        with self._lock:
            return list(self._sessions.get(caregiver_id, ()))

    def is_connected(self, caregiver_id: str) -> bool:
        with self._lock:
            return bool(self._sessions.get(caregiver_id))

    @property
    def connected_caregivers(self) -> list[str]:
        with self._lock:
            return list(self._sessions.keys())

    def summarize(self) -> dict[str, int]:
        """caregiver_id → number of open sessions."""
        with self._lock:
            return {cid: len(s) for cid, s in self._sessions.items()}

    async def broadcast(self, caregiver_id: str, message: dict[str, Any]) -> int:
        """
        Send ``message`` to every session of ``caregiver_id``.

        Best-effort: a failing socket is logged and skipped.
        Returns the number of sessions the frame was written to.
        """
        delivered = 0
        for session in self.sessions_for(caregiver_id):
            try:
                if await session.send_json(message):
                    delivered += 1
            except Exception as exc:
                logger.warning(
                    "Send to session %s of caregiver %s failed: %s",
                    session.session_id, caregiver_id, exc,
                )
        return delivered

    async def close_all(self, code: int = 1001) -> None:
        """Close every open socket (server shutdown)."""
        with self._lock:
            sessions = [s for group in self._sessions.values() for s in group]
            self._sessions.clear()
        for session in sessions:
            try:
                if session.is_open:
                    await session.websocket.close(code=code)
            except Exception as exc:
                logger.debug("Error closing session %s: %s", session.session_id, exc)
        if sessions:
            logger.info("Closed %d operator sessions", len(sessions))
