"""
Caregiver directory — who looks after which patient, and operator credentials.

DirectoryClient talks to the remote API.  CaregiverDirectoryCache keeps
one bulk snapshot of ``GET /patients`` and answers patient → caregiver
lookups from it, refetching once the snapshot is older than the TTL.

Freshness is best effort: if a refetch fails the previous snapshot is
served, so a flaky directory never stops alerts from being routed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Callable

from carelink import settings
from carelink.gateway.api_client import ApiClient, ApiError

logger = logging.getLogger("gateway.directory")


class DirectoryError(ApiError):
    """The directory could not answer (non-2xx, unreachable, bad payload)."""


class DirectoryClient(ApiClient):
    """Read-only access to patients and caregiver credentials."""

    async def fetch_patients(self) -> list[dict[str, Any]]:
        """All patient records (``id_patient``, ``fk_aide_soignant``, ...)."""
        if not self.configured:
            logger.warning("API_BASE_URL not set - patient directory is empty")
            return []
        try:
            data = await self.request_json("GET", "/patients")
        except ApiError as exc:
            raise DirectoryError(str(exc), exc.status_code, exc.detail) from exc
        if not isinstance(data, list):
            raise DirectoryError("GET /patients did not return a list", 200)
        return data

    async def fetch_credential(self, caregiver_id: str) -> str | None:
        """Stored password (``mot_de_passe``) for a caregiver."""
        path = f"/aidesoignants/password/{caregiver_id}"
        try:
            data = await self.request_json("GET", path)
        except ApiError as exc:
            raise DirectoryError(str(exc), exc.status_code, exc.detail) from exc
        if not isinstance(data, dict):
            return None
        return data.get("mot_de_passe")


class CaregiverDirectoryCache:
    """
    TTL-bounded patient_id → caregiver_id mapping.

    A single (snapshot, fetched_at) pair is held.  Concurrent stale reads
    share one refetch: the refresh lock is re-checked after acquisition.
    """

    def __init__(
        self,
        client: DirectoryClient,
        ttl_seconds: float = settings.PATIENTS_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._clock = clock
        self._records: list[dict[str, Any]] = []
        self._mapping: dict[str, str] = {}
        self._fetched_at: float | None = None
        self._lock = threading.Lock()
        self._refresh_lock = asyncio.Lock()
        self.fetch_count = 0

    def _is_fresh(self) -> bool:
        with self._lock:
            fetched_at = self._fetched_at
        return fetched_at is not None and self._clock() - fetched_at < self._ttl

    def _snapshot(self) -> tuple[dict[str, str], list[dict[str, Any]]]:
        with self._lock:
            return self._mapping, self._records

    async def _current(self) -> tuple[dict[str, str], list[dict[str, Any]]]:
        if self._is_fresh():
            return self._snapshot()

        async with self._refresh_lock:
            if self._is_fresh():
                return self._snapshot()
            await self._refresh()
        return self._snapshot()

    async def _refresh(self) -> None:
        self.fetch_count += 1
        try:
            records = await self._client.fetch_patients()
        except DirectoryError as exc:
            logger.error("Error fetching patients (serving stale directory): %s", exc)
            return

        mapping = {}
        for record in records:
            if not isinstance(record, dict):
                continue
            patient_id = record.get("id_patient")
            caregiver_id = record.get("fk_aide_soignant")
            if patient_id is None or caregiver_id in (None, ""):
                continue
            mapping[str(patient_id)] = str(caregiver_id)

        with self._lock:
            self._records = records
            self._mapping = mapping
            self._fetched_at = self._clock()
        logger.info(
            "Directory refreshed: %d patients, %d with a caregiver",
            len(records), len(mapping),
        )

    async def get_caregiver(self, patient_id: str) -> str | None:
        """Caregiver responsible for a patient, or None if unknown."""
        mapping, _ = await self._current()
        return mapping.get(str(patient_id))

    async def patients_of(self, caregiver_id: str) -> list[dict[str, Any]]:
        """Patient records assigned to a caregiver."""
        _, records = await self._current()
        return [
            r for r in records
            if isinstance(r, dict)
            and str(r.get("fk_aide_soignant")) == str(caregiver_id)
        ]

    def invalidate(self) -> None:
        """Force the next lookup to refetch."""
        with self._lock:
            self._fetched_at = None
