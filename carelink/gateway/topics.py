"""
Topic Router — turns pill-box MQTT messages into caregiver alerts.

Topics look like ``alert/box/<patient_id>/<subtype...>``.  The patient's
caregiver is looked up in the directory cache, then the subtype decides
what happens:

  mecanic          maintenance fault, logged only
  seuilmedoc       low stock        → warning alert
  plusmedoc        out of stock     → critical alert
  delivery         dose dispensed   → recorded in the data store
                                       (alert only if notify_deliveries)
  getprescription  prescription request  → data-store read, request alert
  getmedocs        medication list request → data-store read, request alert
  createclient     new box provisioning → patient created, request alert

Messages for patients without a caregiver are logged and dropped.
Data-store failures are logged; they never block the alert that follows.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable

from carelink import settings
from carelink.gateway.alerts import AlertType
from carelink.gateway.api_client import ApiError
from carelink.gateway.datastore import DataStoreClient, missing_dose_fields
from carelink.gateway.directory import CaregiverDirectoryCache
from carelink.gateway.dispatcher import AlertDispatcher

logger = logging.getLogger("gateway.topics")

TOPIC_ROOT = ("alert", "box")

MAINTENANCE = "mecanic"
LOW_STOCK = "seuilmedoc"
OUT_OF_STOCK = "plusmedoc"
DOSE_DELIVERED = "delivery"
PRESCRIPTION_REQUEST = "getprescription"
MEDICATION_LIST_REQUEST = "getmedocs"
PROVISIONING_REQUEST = "createclient"

# Subtypes that become an alert with no side effect
SEVERITY_BY_SUBTYPE = {
    LOW_STOCK: AlertType.WARNING,
    OUT_OF_STOCK: AlertType.CRITICAL,
}


def parse_topic(topic: str) -> tuple[str, str] | None:
    """``alert/box/<patient>/<sub...>`` → (patient_id, subtype), else None."""
    parts = [p for p in topic.split("/") if p]
    if len(parts) < 4 or (parts[0], parts[1]) != TOPIC_ROOT:
        return None
    return parts[2], "/".join(parts[3:])


class TopicRouter:

    def __init__(
        self,
        directory: CaregiverDirectoryCache,
        dispatcher: AlertDispatcher,
        datastore: DataStoreClient,
        notify_deliveries: bool = settings.NOTIFY_DELIVERIES,
    ) -> None:
        self._directory = directory
        self._dispatcher = dispatcher
        self._datastore = datastore
        self._notify_deliveries = notify_deliveries

        self._request_handlers: dict[str, Callable[[str, str], Awaitable[Any]]] = {
            PRESCRIPTION_REQUEST: self._read_prescriptions,
            MEDICATION_LIST_REQUEST: self._read_medications,
            PROVISIONING_REQUEST: self._create_patient,
        }

    async def handle_message(self, topic: str, payload: str) -> bool | None:
        """
        Route one transport message.

        Returns the dispatcher's ``delivered`` flag when an alert was
        dispatched, None otherwise.
        """
        parsed = parse_topic(topic)
        if parsed is None:
            logger.debug("Ignoring topic %s", topic)
            return None
        patient_id, subtype = parsed

        known = (
            subtype == MAINTENANCE
            or subtype in SEVERITY_BY_SUBTYPE
            or subtype in self._request_handlers
            or subtype == DOSE_DELIVERED
        )
        if not known:
            logger.debug("Unhandled alert subtype %r for patient %s", subtype, patient_id)
            return None

        caregiver_id = await self._directory.get_caregiver(patient_id)

        if subtype == MAINTENANCE:
            logger.warning(
                "MAINTENANCE ALERT box=%s problem=%r caregiver=%s",
                patient_id, payload, caregiver_id or "none",
            )
            return None

        if caregiver_id is None:
            logger.info("No caregiver found for patient %s (%s dropped)", patient_id, subtype)
            return None

        if subtype in SEVERITY_BY_SUBTYPE:
            return await self._dispatch(
                caregiver_id, SEVERITY_BY_SUBTYPE[subtype], patient_id, subtype, payload, topic
            )

        if subtype == DOSE_DELIVERED:
            await self._record_dose(patient_id, payload)
            if not self._notify_deliveries:
                return None
            return await self._dispatch(
                caregiver_id, AlertType.INFO, patient_id, subtype, payload, topic
            )

        try:
            await self._request_handlers[subtype](patient_id, payload)
        except ApiError as exc:
            logger.error("Data-store call for %s (patient %s) failed: %s", subtype, patient_id, exc)
        return await self._dispatch(
            caregiver_id, AlertType.REQUEST, patient_id, subtype, payload, topic
        )

    async def _dispatch(
        self,
        caregiver_id: str,
        severity: AlertType,
        patient_id: str,
        subtype: str,
        payload: str,
        topic: str,
    ) -> bool:
        return await self._dispatcher.dispatch(
            caregiver_id,
            {
                "type": severity,
                "patientId": patient_id,
                "alertType": subtype,
                "message": payload,
                "topic": topic,
            },
        )

    # ── Data-store side effects ──

    async def _record_dose(self, patient_id: str, payload: str) -> None:
        try:
            dose = json.loads(payload)
        except ValueError:
            logger.error("Dose payload for patient %s is not JSON: %r", patient_id, payload)
            return
        if not isinstance(dose, dict):
            logger.error("Dose payload for patient %s is not an object", patient_id)
            return

        missing = missing_dose_fields(dose)
        if missing:
            logger.error("Dose for patient %s is missing fields: %s", patient_id, missing)
        try:
            await self._datastore.record_dose(patient_id, dose)
            logger.info("Dose recorded for patient %s (%s)", patient_id, dose.get("nom_medoc"))
        except ApiError as exc:
            logger.error("Error posting dose for patient %s: %s", patient_id, exc)

    async def _read_prescriptions(self, patient_id: str, payload: str) -> None:
        data = await self._datastore.get_prescriptions(patient_id)
        logger.info("Prescriptions for patient %s: %s", patient_id, data)

    async def _read_medications(self, patient_id: str, payload: str) -> None:
        data = await self._datastore.get_medications(patient_id)
        logger.info("Medications for patient %s: %d item(s)", patient_id, len(data))

    async def _create_patient(self, patient_id: str, payload: str) -> None:
        await self._datastore.create_patient(patient_id)
        logger.info("Patient %s created", patient_id)
