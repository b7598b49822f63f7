"""
Alert Dispatcher — enqueue an alert, then try to push it right away.
"""

from __future__ import annotations

import logging
from typing import Any

from carelink.gateway.alerts import Alert
from carelink.gateway.pending import PendingAlertStore
from carelink.gateway.sessions import SessionRegistry

logger = logging.getLogger("gateway.dispatcher")


class AlertDispatcher:
    """
    The only way new alerts enter the system.

    The alert is stored before any delivery attempt, so a caregiver who
    is offline still gets it on the next connect or retry sweep.
    ``delivered`` is True when at least one socket was open for the
    caregiver, which says nothing about whether the app acknowledged it.
    """

    def __init__(self, registry: SessionRegistry, store: PendingAlertStore) -> None:
        self._registry = registry
        self._store = store

    async def dispatch(self, caregiver_id: str, fields: dict[str, Any]) -> bool:
        _, delivered = await self.dispatch_alert(caregiver_id, fields)
        return delivered

    async def dispatch_alert(
        self, caregiver_id: str, fields: dict[str, Any]
    ) -> tuple[Alert, bool]:
        """Like ``dispatch`` but also hands back the queued Alert."""
        alert = self._store.enqueue(caregiver_id, fields)

        if not self._registry.is_connected(caregiver_id):
            logger.info(
                "Caregiver %s offline - stored alert %s", caregiver_id, alert.alertId
            )
            return alert, False

        sent = await self._registry.broadcast(caregiver_id, alert.to_message())
        logger.info(
            "Sent alert %s (%s) to caregiver %s on %d session(s)",
            alert.alertId, alert.type.value, caregiver_id, sent,
        )
        return alert, True
