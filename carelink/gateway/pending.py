"""
Pending-Alert Store — alerts that no caregiver device has acknowledged yet.

One ordered dict per caregiver (alert_id → Alert).  Alerts leave the
store only through ``acknowledge``; the store lives in memory and is
lost on restart.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from carelink.gateway.alerts import Alert

logger = logging.getLogger("gateway.pending")

# Fields the store assigns itself; callers never choose them.
_STORE_ASSIGNED = ("alertId", "timestamp")


class PendingAlertStore:
    """
    Thread-safe caregiver_id → {alert_id → Alert}.

    ``drain`` returns a snapshot tuple: it can be iterated any number of
    times, and an acknowledgment that lands while a caller is iterating
    neither breaks the iteration nor yields an id twice.
    """

    def __init__(self) -> None:
        self._pending: dict[str, dict[str, Alert]] = {}
        self._lock = threading.Lock()

    def enqueue(self, caregiver_id: str, fields: dict[str, Any]) -> Alert:
        """Create an Alert with a fresh id + timestamp and store it."""
        data = {k: v for k, v in fields.items() if k not in _STORE_ASSIGNED}
        alert = Alert(**data)
        with self._lock:
            self._pending.setdefault(caregiver_id, {})[alert.alertId] = alert
            depth = len(self._pending[caregiver_id])
        logger.debug(
            "Queued alert %s for caregiver %s (depth=%d)",
            alert.alertId, caregiver_id, depth,
        )
        return alert

    def acknowledge(self, caregiver_id: str, alert_id: str) -> bool:
        """Remove an alert.  Unknown or repeated ids are a silent no-op."""
        with self._lock:
            queue = self._pending.get(caregiver_id)
            if not queue or alert_id not in queue:
                return False
            del queue[alert_id]
            if not queue:
                del self._pending[caregiver_id]
        logger.info("ACK received: caregiver=%s alertId=%s", caregiver_id, alert_id)
        return True

    def drain(self, caregiver_id: str) -> tuple[Alert, ...]:
        """Snapshot of every pending alert for a caregiver, oldest first."""
        with self._lock:
            return tuple(self._pending.get(caregiver_id, {}).values())

    def depth(self, caregiver_id: str) -> int:
        with self._lock:
            return len(self._pending.get(caregiver_id, ()))

    def contains(self, caregiver_id: str, alert_id: str) -> bool:
        with self._lock:
            return alert_id in self._pending.get(caregiver_id, {})

    @property
    def total_pending(self) -> int:
        with self._lock:
            return sum(len(q) for q in self._pending.values())

    def summarize(self) -> dict[str, int]:
        """caregiver_id → number of unacknowledged alerts."""
        with self._lock:
            return {cid: len(q) for cid, q in self._pending.items()}
