"""
Shared fixtures for the CareLink test suite.

The remote directory / data-store API is replaced with an in-process
httpx.MockTransport and MQTT is disabled, so tests run fast and offline.
"""

import json
import os
import time

# ─── Environment BEFORE importing carelink (settings are read at import) ───
os.environ["API_KEY"] = "supercleAPI"
os.environ["API_BASE_URL"] = "https://api.fake-database.com"
os.environ["MQTT_ENABLED"] = "false"
os.environ["RETRY_INTERVAL_MS"] = "60000"

import httpx
import pytest
from fastapi.testclient import TestClient

API_KEY = "supercleAPI"
AUTH = {"api_key": API_KEY}


class FakeRemoteApi:
    """
    In-memory stand-in for the remote database API.

    Set ``fail_status`` to make every call answer with that status, or
    ``unreachable`` to make every call fail at the transport level.
    """

    def __init__(self):
        self.patients = [
            {"id_patient": "P1", "fk_aide_soignant": "A", "nomFamille": "Durand", "prenom": "Eve"},
            {"id_patient": "P2", "fk_aide_soignant": "B", "nomFamille": "Martin", "prenom": "Luc"},
            {"id_patient": "P3", "fk_aide_soignant": "A", "nomFamille": "Petit", "prenom": "Ana"},
        ]
        self.passwords = {"A": "pwdA", "B": "pwdB"}
        self.medications = {"P1": [{"id": "M1", "nom_medoc": "Doliprane", "quantite_restante": 4}]}
        self.stock = {"M1": {"id": "M1", "quantite_restante": 4}}
        self.prescriptions: dict[str, list] = {"P1": [{"nom_medoc": "Doliprane"}]}
        self.created: list[dict] = []
        self.calls: list[tuple[str, str]] = []
        self.fail_status: int | None = None
        self.unreachable = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_status:
            return httpx.Response(self.fail_status, text="upstream failure")

        parts = [p for p in path.split("/") if p]
        body = request.read()

        if parts == ["patients"] and method == "GET":
            return httpx.Response(200, json=self.patients)
        if parts == ["patients"] and method == "POST":
            self.created.append(json.loads(body))
            return httpx.Response(201, json={"ok": True})
        if parts[:1] == ["patients"] and len(parts) == 2:
            for p in self.patients:
                if p["id_patient"] == parts[1]:
                    return httpx.Response(200, json=p)
            return httpx.Response(404, json={"error": "not found"})
        if parts[:2] == ["aidesoignants", "password"]:
            if parts[2] not in self.passwords:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json={"mot_de_passe": self.passwords[parts[2]]})
        if parts[:1] == ["prescriptions"]:
            if method == "POST":
                dose = json.loads(body)
                self.prescriptions.setdefault(parts[1], []).append(dose)
                return httpx.Response(200, json={"id": 101})
            return httpx.Response(200, json=self.prescriptions.get(parts[1], []))
        if parts[:2] == ["medocpatients", "id"]:
            medoc = self.stock.get(parts[2])
            return httpx.Response(200, json=medoc) if medoc else httpx.Response(404)
        if parts[:1] == ["medocpatients"] and method == "PATCH":
            update = json.loads(body)
            self.stock[parts[1]].update(update)
            return httpx.Response(200, json=self.stock[parts[1]])
        if parts[:1] == ["medocpatients"]:
            if parts[1] not in self.medications:
                return httpx.Response(404, json={"error": "none"})
            return httpx.Response(200, json=self.medications[parts[1]])
        return httpx.Response(404)


@pytest.fixture
def fake_api():
    return FakeRemoteApi()


@pytest.fixture
def client(fake_api):
    """Full app with a freshly initialised gateway per test."""
    from carelink.app import app
    from carelink.gateway import setup

    with TestClient(app) as test_client:
        transport = httpx.MockTransport(fake_api)
        setup.get_directory_client()._transport = transport
        setup.get_datastore()._transport = transport
        yield test_client


@pytest.fixture
def gateway(client):
    """The live gateway singletons behind ``client``."""
    from carelink.gateway import setup
    return setup


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    """Poll until predicate() is truthy (server work runs on another thread)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())


def _ws_url(caregiver_id: str = "A", password: str = "pwdA", token: str = API_KEY) -> str:
    return f"/ws?id={caregiver_id}&pwd={password}&token={token}"


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def ws_url():
    return _ws_url
