"""
Retry Sweeper — background loop that re-sends every unacknowledged alert.

On each tick, for every caregiver with at least one open session, every
pending alert is pushed again, unchanged, to every session.  Clients
de-duplicate on alertId; the server never suppresses a resend.

An optional backoff (factor > 1.0) stretches the wait after ticks that
had something to resend and snaps back after an idle tick.  The default
factor of 1.0 keeps the fixed period.
"""

from __future__ import annotations

import asyncio
import logging

from carelink import settings
from carelink.gateway.pending import PendingAlertStore
from carelink.gateway.sessions import SessionRegistry

logger = logging.getLogger("gateway.retry")


class RetrySweeper:
    """
    Usage:
        sweeper = RetrySweeper(registry, store, interval=10)
        sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        registry: SessionRegistry,
        store: PendingAlertStore,
        interval: float = settings.RETRY_INTERVAL_SECONDS,
        backoff_factor: float = settings.RETRY_BACKOFF_FACTOR,
        max_interval: float = settings.RETRY_MAX_INTERVAL_SECONDS,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._registry = registry
        self._store = store
        self._interval = interval
        self._backoff_factor = max(backoff_factor, 1.0)
        self._max_interval = max(max_interval, interval)
        self._current_interval = interval
        self._task: asyncio.Task | None = None
        self._running = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current_interval(self) -> float:
        return self._current_interval

    def start(self) -> None:
        """Start the sweep loop on the running event loop."""
        if self._running:
            logger.warning("RetrySweeper already running")
            return
        self._running = True
        self._current_interval = self._interval
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("RetrySweeper started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        """Cancel the loop.  Safe to call when not running."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("RetrySweeper stopped")

    async def sweep_once(self) -> int:
        """Run a single tick.  Returns the number of frames written."""
        resent = 0
        # Snapshot: sessions may come and go while we await sends
        for caregiver_id in self._registry.connected_caregivers:
            try:
                for alert in self._store.drain(caregiver_id):
                    resent += await self._registry.broadcast(
                        caregiver_id, alert.to_message()
                    )
            except Exception as exc:
                logger.error(
                    "Retry sweep failed for caregiver %s: %s",
                    caregiver_id, exc, exc_info=True,
                )
        self.ticks += 1
        if resent:
            logger.debug("Retry sweep resent %d frame(s)", resent)
        return resent

    def _next_interval(self, resent: int) -> float:
        if self._backoff_factor == 1.0 or not resent:
            return self._interval
        return min(self._current_interval * self._backoff_factor, self._max_interval)

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._current_interval)
                if not self._running:
                    break
                resent = await self.sweep_once()
                self._current_interval = self._next_interval(resent)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Retry loop error: %s", exc, exc_info=True)
