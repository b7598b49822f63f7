"""
Data-store client — the remote CRUD API for prescriptions, medications
and patient records.

Topic routing calls it fire-and-forget; the REST pass-through endpoints
surface its errors to the caller.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from carelink.gateway.api_client import ApiClient, ApiError

logger = logging.getLogger("gateway.datastore")

# Fields a dispensed-dose record must carry
DOSE_FIELDS = (
    "heure_distrib",
    "nom_medoc",
    "quantite_totale",
    "quantite_restante",
    "compartiment",
)
REQUIRED_DOSE_FIELDS = DOSE_FIELDS[1:]


def missing_dose_fields(dose: dict[str, Any]) -> list[str]:
    """Required dose fields that are absent or empty."""
    return [f for f in REQUIRED_DOSE_FIELDS if dose.get(f) in (None, "")]


def default_patient_record(patient_id: str) -> dict[str, Any]:
    """Placeholder record used when a new pill box provisions itself."""
    return {
        "id_patient": patient_id,
        "mot_de_passe": "1234",
        "nomFamille": "default",
        "prenom": patient_id,
        "sexe": "U",
        "date_naissance": None,
        "adresse_postale": None,
        "adresse_electronique": None,
        "fk_aide_soignant": None,
        "fk_medecin_traitant": None,
    }


def stock_quantity(value: Any) -> int | None:
    """Remaining quantity as an int; 0 when absent, None when not a number."""
    if value in (None, ""):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class DataStoreClient(ApiClient):

    async def record_dose(self, patient_id: str, dose: dict[str, Any]) -> Any:
        body = {f: dose.get(f) for f in DOSE_FIELDS}
        return await self.request_json(
            "POST", f"/prescriptions/{quote(str(patient_id), safe='')}", json=body
        )

    async def get_prescriptions(self, patient_id: str) -> Any:
        return await self.request_json(
            "GET", f"/prescriptions/{quote(str(patient_id), safe='')}"
        )

    async def get_medications(self, patient_id: str) -> list[Any]:
        data = await self.request_json(
            "GET", f"/medocpatients/{quote(str(patient_id), safe='')}"
        )
        return data if isinstance(data, list) else []

    async def get_patient(self, patient_id: str) -> Any:
        return await self.request_json(
            "GET", f"/patients/{quote(str(patient_id), safe='')}"
        )

    async def create_patient(self, patient_id: str) -> Any:
        return await self.request_json(
            "POST", "/patients", json=default_patient_record(patient_id)
        )

    # ── Medication stock ──

    async def get_medication(self, medoc_id: str) -> dict[str, Any]:
        return await self.request_json(
            "GET", f"/medocpatients/id/{quote(str(medoc_id), safe='')}"
        )

    async def distribute(self, medoc_id: str, quantity: int) -> tuple[int, Any]:
        """
        Decrement the remaining stock of one medication.

        Returns (new remaining quantity, API response).  Raises
        InsufficientStockError when the stock would go negative.
        """
        medoc = await self.get_medication(medoc_id)
        if not isinstance(medoc, dict):
            medoc = {}
        current = stock_quantity(medoc.get("quantite_restante"))
        if current is None:
            raise ApiError(
                f"Medication {medoc_id} has a non-numeric stock", status_code=502
            )
        remaining = current - quantity
        if remaining < 0:
            raise InsufficientStockError(current)
        data = await self.request_json(
            "PATCH",
            f"/medocpatients/{quote(str(medoc_id), safe='')}",
            json={"quantite_restante": remaining},
        )
        logger.info("Medication %s distributed x%d (remaining %d)", medoc_id, quantity, remaining)
        return remaining, data


class InsufficientStockError(Exception):
    def __init__(self, remaining: int) -> None:
        super().__init__(f"insufficient stock ({remaining} left)")
        self.remaining = remaining
