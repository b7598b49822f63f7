"""
Alert model — the one message shape pushed to caregivers.

An Alert is created by the PendingAlertStore (which stamps the id and
timestamp) and is never modified afterwards.  Retries re-send the exact
same object, so clients can de-duplicate on ``alertId``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AlertType(str, Enum):
    """Severity / category tag carried in the ``type`` field."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    REQUEST = "request"
    BOX_ALERT = "box_alert"
    DISTRIBUTION_CONFIRMED = "distribution_confirmed"


def new_alert_id() -> str:
    return str(uuid.uuid4())


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class Alert(BaseModel):
    """A queued notification destined for one caregiver's sessions."""

    # Field names match the JSON the operator apps already consume.
    model_config = ConfigDict(frozen=True, extra="allow")

    type: AlertType
    patientId: str
    alertType: str
    message: str = ""
    topic: Optional[str] = None
    alertId: str = Field(default_factory=new_alert_id)
    timestamp: str = Field(default_factory=utc_timestamp)

    def to_message(self) -> dict[str, Any]:
        """JSON-ready dict for a single WebSocket frame."""
        return self.model_dump(mode="json", exclude_none=True)


def error_message(reason: str) -> dict[str, str]:
    """The single JSON object sent before a rejected socket is closed."""
    return {"error": reason}
