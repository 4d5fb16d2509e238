import json
import threading

import httpx
import pytest

from marketplace.models.alert_record import AlertRecord
from marketplace.services.alert_service import Alert, AlertDispatcher


class ScriptedEndpoint:
    """Answers alert POSTs from a script of status codes or exceptions."""

    def __init__(self, *script, gate: threading.Event | None = None):
        self.script = list(script)
        self.gate = gate
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.gate is not None:
            self.gate.wait(timeout=10)
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step)


@pytest.fixture
def make_dispatcher(session_factory):
    created = []

    def _make(endpoint, *, url="http://alerts.test/hook", **kwargs):
        delays: list[float] = []
        client = httpx.Client(transport=httpx.MockTransport(endpoint))
        dispatcher = AlertDispatcher(
            url,
            session_factory,
            environment="test",
            http_client=client,
            sleep=delays.append,
            **kwargs,
        )
        created.append((dispatcher, client))
        return dispatcher, delays

    yield _make

    for dispatcher, client in created:
        dispatcher.shutdown(wait=True)
        client.close()


def _records(session_factory):
    db = session_factory()
    try:
        return db.query(AlertRecord).all()
    finally:
        db.close()


def _alert(**overrides):
    fields = {
        "severity": "CRITICAL",
        "event": "WEBHOOK_INVALID_SIGNATURE",
        "message": "Webhook signature verification failed",
        "environment": "test",
        "metadata": {"ip": "10.0.0.1"},
    }
    fields.update(overrides)
    return Alert(**fields)


def test_delivery_retries_with_exponential_backoff(make_dispatcher, session_factory):
    endpoint = ScriptedEndpoint(500, 503, 200)
    dispatcher, delays = make_dispatcher(endpoint)

    status = dispatcher._deliver(_alert())

    assert status == "DELIVERED"
    assert delays == [1.0, 2.0]
    assert len(endpoint.requests) == 3

    [record] = _records(session_factory)
    assert record.status == "DELIVERED"
    assert record.attempt_count == 3
    assert [a["attempt"] for a in record.attempts] == [1, 2, 3]
    assert "error" in record.attempts[0]
    assert "error" not in record.attempts[2]


def test_exhausted_retries_land_in_dead_letter_queue(make_dispatcher, session_factory):
    dispatcher, delays = make_dispatcher(ScriptedEndpoint(500))

    status = dispatcher._deliver(_alert(metadata={"orderId": "order_1"}))

    assert status == "FAILED"
    assert delays == [1.0, 2.0]

    [record] = _records(session_factory)
    assert record.status == "FAILED"
    assert record.attempt_count == 3
    assert record.severity == "CRITICAL"
    assert record.event == "WEBHOOK_INVALID_SIGNATURE"
    assert record.metadata_ == {"orderId": "order_1"}
    assert record.environment == "test"
    assert all(a["error"].startswith("HTTP 500") for a in record.attempts)


def test_transport_errors_count_as_failed_attempts(make_dispatcher, session_factory):
    endpoint = ScriptedEndpoint(httpx.ConnectError("connection refused"), 204)
    dispatcher, delays = make_dispatcher(endpoint)

    assert dispatcher._deliver(_alert()) == "DELIVERED"

    [record] = _records(session_factory)
    assert record.attempt_count == 2
    assert record.attempts[0]["error"] == "connection refused"
    assert delays == [1.0]


def test_payload_shape(make_dispatcher):
    endpoint = ScriptedEndpoint(200)
    dispatcher, _ = make_dispatcher(endpoint)

    dispatcher._deliver(_alert())

    payload = json.loads(endpoint.requests[0].content)
    assert set(payload) == {"severity", "event", "message", "metadata", "timestamp", "environment"}
    assert payload["timestamp"].endswith("Z")
    assert payload["metadata"] == {"ip": "10.0.0.1"}


def test_notify_is_fire_and_forget(make_dispatcher, session_factory):
    dispatcher, _ = make_dispatcher(ScriptedEndpoint(200))

    dispatcher.critical("WEBHOOK_PROCESSING_ERROR", "Payment settlement failed", {"orderId": "order_1"})
    dispatcher.warning("RATE_LIMIT_EXCEEDED", "User hit payment rate limit")
    dispatcher.shutdown(wait=True)

    records = _records(session_factory)
    assert sorted(r.event for r in records) == ["RATE_LIMIT_EXCEEDED", "WEBHOOK_PROCESSING_ERROR"]
    assert {r.status for r in records} == {"DELIVERED"}


def test_notify_returns_before_a_failing_delivery_reaches_the_dead_letter_queue(make_dispatcher, session_factory):
    gate = threading.Event()
    dispatcher, delays = make_dispatcher(ScriptedEndpoint(503, gate=gate))

    try:
        dispatcher.critical("WEBHOOK_INVALID_SIGNATURE", "bad signature", {"ip": "10.0.0.9"})
        assert _records(session_factory) == []
    finally:
        gate.set()
    dispatcher.shutdown(wait=True)

    [record] = _records(session_factory)
    assert record.status == "FAILED"
    assert record.attempt_count == 3
    assert record.metadata_ == {"ip": "10.0.0.9"}
    assert delays == [1.0, 2.0]


def test_saturated_dispatcher_drops_instead_of_queueing(make_dispatcher, session_factory):
    gate = threading.Event()
    endpoint = ScriptedEndpoint(200, gate=gate)
    dispatcher, _ = make_dispatcher(endpoint, max_workers=1, max_pending=2)

    try:
        for i in range(5):
            dispatcher.warning("RATE_LIMIT_EXCEEDED", f"flood {i}")
    finally:
        gate.set()
    dispatcher.shutdown(wait=True)

    records = _records(session_factory)
    assert sorted(r.message for r in records) == ["flood 0", "flood 1"]
    assert len(endpoint.requests) == 2


def test_slots_are_released_after_delivery(make_dispatcher, session_factory):
    dispatcher, _ = make_dispatcher(ScriptedEndpoint(200), max_workers=1, max_pending=1)

    for i in range(3):
        dispatcher.warning("RATE_LIMIT_EXCEEDED", f"spaced {i}")
        dispatcher._executor.submit(lambda: None).result(timeout=10)

    dispatcher.shutdown(wait=True)
    assert len(_records(session_factory)) == 3


def test_unconfigured_endpoint_only_logs(make_dispatcher, session_factory):
    endpoint = ScriptedEndpoint(200)
    dispatcher, _ = make_dispatcher(endpoint, url=None)

    assert dispatcher.enabled is False
    dispatcher.critical("WEBHOOK_INVALID_SIGNATURE", "bad signature")
    dispatcher.shutdown(wait=True)

    assert endpoint.requests == []
    assert _records(session_factory) == []


def test_stats_summarise_the_record_table(make_dispatcher, db):
    dispatcher, _ = make_dispatcher(ScriptedEndpoint(200))
    db.add_all(
        [
            AlertRecord(severity="HIGH", event="A", message="a", metadata_={}, attempts=[], attempt_count=1, status="DELIVERED"),
            AlertRecord(severity="HIGH", event="B", message="b", metadata_={}, attempts=[], attempt_count=2, status="DELIVERED"),
            AlertRecord(severity="HIGH", event="C", message="c", metadata_={}, attempts=[], attempt_count=3, status="FAILED"),
        ]
    )
    db.commit()

    stats = dispatcher.stats(db)

    assert stats.to_dict() == {"failedCount": 1, "deliveredCount": 2, "averageAttempts": 2.0}


def test_stats_on_empty_table(make_dispatcher, db):
    dispatcher, _ = make_dispatcher(ScriptedEndpoint(200))

    assert dispatcher.stats(db).to_dict() == {"failedCount": 0, "deliveredCount": 0, "averageAttempts": 0.0}
