import random

import pytest

from wakewatch import create_app
from wakewatch.session import AttentionSession

from conftest import FakeAnnouncer, FakeBridge, FakeTone, make_face


@pytest.fixture
def app_session():
    session = AttentionSession(announcer=FakeAnnouncer(), tone=FakeTone(), bridge=FakeBridge(),
                               clock=lambda: 10.0, rng=random.Random(3))
    app = create_app(session)
    app.config["TESTING"] = True
    return app, session


@pytest.fixture
def client(app_session):
    return app_session[0].test_client()


def test_status(client):
    resp = client.get("/api/status")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["running"] is False
    assert body["state"] == "awake"


def test_start_and_stop(client, app_session):
    _, session = app_session
    body = client.post("/api/session/start").get_json()
    assert body["running"] is True
    assert body["calibrating"] is True
    assert session.absence_armed

    body = client.post("/api/session/stop").get_json()
    assert body["running"] is False


def test_ack_requires_answer(client):
    assert client.post("/api/alarm/ack", json={}).status_code == 400
    assert client.post("/api/alarm/ack", json={"answer": 42}).status_code == 400


def test_test_alarm_rejects_unknown_type(client):
    resp = client.post("/api/alarm/test", json={"type": "riddle"})
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_test_alarm_then_acknowledge(client, app_session):
    _, session = app_session
    client.post("/api/session/start")

    body = client.post("/api/alarm/test", json={"type": "math"}).get_json()
    assert body["challenge"]["type"] == "math"
    assert "expected_answer" not in body["challenge"]
    assert body["status"]["state"] == "sleeping"
    assert len(body["status"]["escalation"]["alarms"]) == 5

    answer = session.escalator.challenge.expected_answer
    rejected = client.post("/api/alarm/ack", json={"answer": answer}).get_json()
    assert rejected["accepted"] is False                      # not yet classified awake

    session.process_frame(make_face(), now=11.0)
    accepted = client.post("/api/alarm/ack", json={"answer": answer}).get_json()
    assert accepted["accepted"] is True
    assert accepted["escalation"]["phase"] == "quiet"


def test_default_test_alarm_is_phrase(client):
    body = client.post("/api/alarm/test").get_json()
    assert body["challenge"]["type"] == "phrase"
    assert body["status"]["state"] == "noddingOff"


def test_disarm_absence(client):
    client.post("/api/session/start")
    assert client.post("/api/absence/disarm").get_json() == {"absenceArmed": False}


def test_default_app_starts_snapshot_bridge(monkeypatch):
    from wakewatch import config
    from wakewatch.bridge import SnapshotBridge

    monkeypatch.setattr(config, "BRIDGE_URL", "ws://127.0.0.1:9/ws")
    app = create_app()
    downstream = app.extensions["wakewatch.session"].bridge.downstream
    assert isinstance(downstream, SnapshotBridge)
    try:
        assert downstream._thread is not None
        assert downstream._thread.is_alive()
    finally:
        downstream.disconnect()
    assert not downstream._thread.is_alive()


def test_default_app_without_url_logs_snapshots(monkeypatch):
    from wakewatch import config
    from wakewatch.bridge import LogBridge

    monkeypatch.setattr(config, "BRIDGE_URL", "")
    app = create_app()
    assert isinstance(app.extensions["wakewatch.session"].bridge.downstream, LogBridge)
