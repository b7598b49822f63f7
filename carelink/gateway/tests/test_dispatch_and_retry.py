"""
Tests for the Alert Dispatcher and the Retry Sweeper.

Tests cover:
  - Dispatch always enqueues, even when the caregiver is offline
  - delivered flag semantics
  - Sweeps resend pending alerts unchanged until acknowledged
  - Only connected caregivers are swept
  - One caregiver's failure does not abort the tick
  - start/stop lifecycle and optional backoff
"""

import asyncio

import pytest
from starlette.websockets import WebSocketState

from carelink.gateway.alerts import AlertType
from carelink.gateway.dispatcher import AlertDispatcher
from carelink.gateway.pending import PendingAlertStore
from carelink.gateway.retry import RetrySweeper
from carelink.gateway.sessions import OperatorSession, SessionRegistry


class FakeSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict] = []

    async def send_json(self, data):
        self.sent.append(data)


def _alert_fields(patient_id: str = "P1") -> dict:
    return {
        "type": AlertType.CRITICAL,
        "patientId": patient_id,
        "alertType": "plusmedoc",
        "message": "empty",
        "topic": f"alert/box/{patient_id}/plusmedoc",
    }


@pytest.fixture
def wiring():
    registry = SessionRegistry()
    store = PendingAlertStore()
    return registry, store, AlertDispatcher(registry, store)


def _connect(registry: SessionRegistry, caregiver_id: str) -> OperatorSession:
    session = OperatorSession(FakeSocket(), caregiver_id)
    registry.register(caregiver_id, session)
    return session


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Dispatcher
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestDispatcher:

    @pytest.mark.asyncio
    async def test_offline_caregiver_keeps_alert(self, wiring):
        registry, store, dispatcher = wiring
        delivered = await dispatcher.dispatch("B", _alert_fields())
        assert delivered is False
        assert store.depth("B") == 1

    @pytest.mark.asyncio
    async def test_online_caregiver_receives_alert(self, wiring):
        registry, store, dispatcher = wiring
        session = _connect(registry, "A")

        alert, delivered = await dispatcher.dispatch_alert("A", _alert_fields())

        assert delivered is True
        assert session.websocket.sent == [alert.to_message()]
        # Still pending until the app acknowledges
        assert store.contains("A", alert.alertId)

    @pytest.mark.asyncio
    async def test_message_carries_id_and_timestamp(self, wiring):
        registry, store, dispatcher = wiring
        session = _connect(registry, "A")
        await dispatcher.dispatch("A", _alert_fields())
        msg = session.websocket.sent[0]
        assert msg["alertId"]
        assert msg["timestamp"]
        assert msg["type"] == "critical"

    @pytest.mark.asyncio
    async def test_closed_socket_still_counts_as_attempted(self, wiring):
        registry, store, dispatcher = wiring
        session = _connect(registry, "A")
        session.websocket.client_state = WebSocketState.DISCONNECTED
        assert await dispatcher.dispatch("A", _alert_fields()) is True
        assert store.depth("A") == 1


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Retry Sweeper
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestSweep:

    @pytest.mark.asyncio
    async def test_sweep_resends_unchanged(self, wiring):
        registry, store, dispatcher = wiring
        session = _connect(registry, "A")
        await dispatcher.dispatch("A", _alert_fields())
        first = session.websocket.sent[0]

        sweeper = RetrySweeper(registry, store, interval=60)
        await sweeper.sweep_once()
        await sweeper.sweep_once()

        assert session.websocket.sent == [first, first, first]

    @pytest.mark.asyncio
    async def test_acknowledged_alert_is_not_resent(self, wiring):
        registry, store, dispatcher = wiring
        session = _connect(registry, "A")
        alert, _ = await dispatcher.dispatch_alert("A", _alert_fields())
        store.acknowledge("A", alert.alertId)

        resent = await RetrySweeper(registry, store, interval=60).sweep_once()

        assert resent == 0
        assert len(session.websocket.sent) == 1

    @pytest.mark.asyncio
    async def test_offline_caregivers_are_not_swept(self, wiring):
        registry, store, dispatcher = wiring
        await dispatcher.dispatch("B", _alert_fields())
        a = _connect(registry, "A")

        resent = await RetrySweeper(registry, store, interval=60).sweep_once()

        assert resent == 0
        assert a.websocket.sent == []
        assert store.depth("B") == 1

    @pytest.mark.asyncio
    async def test_every_session_gets_every_alert(self, wiring):
        registry, store, dispatcher = wiring
        await dispatcher.dispatch("A", _alert_fields("P1"))
        await dispatcher.dispatch("A", _alert_fields("P2"))
        phone, tablet = _connect(registry, "A"), _connect(registry, "A")

        resent = await RetrySweeper(registry, store, interval=60).sweep_once()

        assert resent == 4
        assert [m["patientId"] for m in phone.websocket.sent] == ["P1", "P2"]
        assert [m["patientId"] for m in tablet.websocket.sent] == ["P1", "P2"]

    @pytest.mark.asyncio
    async def test_failure_for_one_caregiver_does_not_abort_tick(self, wiring, monkeypatch):
        registry, store, dispatcher = wiring
        await dispatcher.dispatch("A", _alert_fields())
        await dispatcher.dispatch("B", _alert_fields())
        _connect(registry, "A")
        b = _connect(registry, "B")

        original_drain = store.drain

        def flaky_drain(caregiver_id):
            if caregiver_id == "A":
                raise RuntimeError("boom")
            return original_drain(caregiver_id)

        monkeypatch.setattr(store, "drain", flaky_drain)
        await RetrySweeper(registry, store, interval=60).sweep_once()

        assert len(b.websocket.sent) == 1


class TestSweeperLifecycle:

    @pytest.mark.asyncio
    async def test_loop_ticks_and_stops(self, wiring):
        registry, store, dispatcher = wiring
        session = _connect(registry, "A")
        await dispatcher.dispatch("A", _alert_fields())

        sweeper = RetrySweeper(registry, store, interval=0.02)
        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.15)
        await sweeper.stop()

        assert not sweeper.running
        ticks = sweeper.ticks
        assert ticks >= 2
        assert len(session.websocket.sent) >= 1 + ticks - 1

        await asyncio.sleep(0.06)
        assert sweeper.ticks == ticks

    @pytest.mark.asyncio
    async def test_stop_without_start(self, wiring):
        registry, store, _ = wiring
        await RetrySweeper(registry, store, interval=1).stop()  # Should not raise

    def test_interval_must_be_positive(self, wiring):
        registry, store, _ = wiring
        with pytest.raises(ValueError):
            RetrySweeper(registry, store, interval=0)


class TestBackoff:

    def test_default_is_fixed_period(self, wiring):
        registry, store, _ = wiring
        sweeper = RetrySweeper(registry, store, interval=10)
        assert sweeper._next_interval(resent=5) == 10

    def test_backoff_grows_and_caps(self, wiring):
        registry, store, _ = wiring
        sweeper = RetrySweeper(
            registry, store, interval=10, backoff_factor=2.0, max_interval=35
        )
        sweeper._current_interval = sweeper._next_interval(resent=1)
        assert sweeper.current_interval == 20
        sweeper._current_interval = sweeper._next_interval(resent=1)
        assert sweeper.current_interval == 35

    def test_backoff_resets_after_idle_tick(self, wiring):
        registry, store, _ = wiring
        sweeper = RetrySweeper(registry, store, interval=10, backoff_factor=2.0)
        sweeper._current_interval = 80
        assert sweeper._next_interval(resent=0) == 10
