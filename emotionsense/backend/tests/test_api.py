from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from emotionsense.backend.app import main
from emotionsense.backend.app.risk_engine import EMOTIONS


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    main.Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_get_db
    yield SessionLocal
    main.app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def client(session_factory):
    return TestClient(main.app)


def register(client, email, name, role):
    resp = client.post(
        "/auth/register",
        json={"email": email, "name": name, "password": "secret123", "role": role},
    )
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def user_id(client, headers):
    return client.get("/auth/me", headers=headers).json()["id"]


def add_entries(session_factory, patient_id, labels):
    # labels run from oldest to newest, one per day ending now
    now = datetime.utcnow()
    db = session_factory()
    try:
        for offset, label in enumerate(reversed(labels)):
            db.add(main.DiaryEntry(
                user_id=patient_id,
                content=f"{label} entry",
                label=label,
                confidence=80.0,
                probabilities_json="[]",
                created_at=now - timedelta(days=offset, minutes=5),
            ))
        db.commit()
    finally:
        db.close()


def test_register_login_and_me(client):
    register(client, "pat@example.com", "Pat", "patient")
    duplicate = client.post(
        "/auth/register",
        json={"email": "pat@example.com", "name": "Pat", "password": "secret123", "role": "patient"},
    )
    assert duplicate.status_code == 400

    bad_role = client.post(
        "/auth/register",
        json={"email": "x@example.com", "name": "X", "password": "secret123", "role": "admin"},
    )
    assert bad_role.status_code == 400

    login = client.post("/auth/login", data={"username": "pat@example.com", "password": "secret123"})
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
    me = client.get("/auth/me", headers=headers).json()
    assert me["name"] == "Pat"
    assert me["role"] == "patient"

    wrong = client.post("/auth/login", data={"username": "pat@example.com", "password": "nope"})
    assert wrong.status_code == 400
    assert client.get("/auth/me").status_code == 401


def test_diary_entry_is_classified(client):
    headers = register(client, "pat@example.com", "Pat", "patient")
    content = "I had a long day."
    resp = client.post("/diary", json={"content": content}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["entry"]["label"] == EMOTIONS[len(content) % len(EMOTIONS)]
    assert len(body["entry"]["probabilities"]) == len(EMOTIONS)

    assert client.post("/diary", json={"content": "   "}, headers=headers).status_code == 400
    entries = client.get("/diary", headers=headers).json()
    assert len(entries) == 1
    assert client.get("/diary", params={"period": "weekly"}, headers=headers).json() == entries
    assert client.get("/diary", params={"period": "yearly"}, headers=headers).status_code == 422


def test_self_alert_follows_history(client, session_factory):
    headers = register(client, "pat@example.com", "Pat", "patient")
    assert client.get("/alerts/self", headers=headers).json() is None

    add_entries(session_factory, user_id(client, headers), ["Happy"] * 4 + ["Sad"] * 3)
    alert = client.get("/alerts/self", headers=headers).json()
    assert alert["level"] == "warning"
    assert alert["consecutive_days"] == 3


def test_clinician_override_cycle(client, session_factory):
    patient_headers = register(client, "pat@example.com", "Pat", "patient")
    clinician_headers = register(client, "doc@example.com", "Doc", "psychologist")
    patient_id = user_id(client, patient_headers)
    add_entries(session_factory, patient_id, ["Sad"] * 5)

    at_risk = client.get("/patients/at-risk", headers=clinician_headers).json()
    assert [item["patient_id"] for item in at_risk] == [str(patient_id)]
    assert at_risk[0]["alert_level"] == "critical"
    assert at_risk[0]["consecutive_negative_days"] == 5
    assert at_risk[0]["negative_percentage"] == 100

    marked = client.post(f"/patients/{patient_id}/mark-safe", headers=clinician_headers)
    assert marked.status_code == 200
    assert marked.json()["alert_level"] == "safe"
    assert client.get("/patients/at-risk", headers=clinician_headers).json() == []
    assert client.get("/alerts/self", headers=patient_headers).json() is None

    # "bad" classifies as Fear, a negative emotion
    assert client.post("/diary", json={"content": "bad"}, headers=patient_headers).status_code == 200
    status = client.get(f"/patients/{patient_id}/status", headers=clinician_headers).json()
    assert status["alert_level"] == "critical"
    assert status["total_entries"] == 6

    client.post(f"/patients/{patient_id}/mark-safe", headers=clinician_headers)
    removed = client.delete(f"/patients/{patient_id}/override", headers=clinician_headers).json()
    assert removed == {"removed": True, "alert_level": "critical"}


def test_role_checks(client):
    patient_headers = register(client, "pat@example.com", "Pat", "patient")
    clinician_headers = register(client, "doc@example.com", "Doc", "psychologist")
    assert client.get("/patients", headers=patient_headers).status_code == 403
    assert client.post("/diary", json={"content": "hello"}, headers=clinician_headers).status_code == 403
    assert client.get("/patients/9999/status", headers=clinician_headers).status_code == 404


def test_notes_and_feedback(client):
    patient_headers = register(client, "pat@example.com", "Pat", "patient")
    clinician_headers = register(client, "doc@example.com", "Doc", "psychologist")
    patient_id = user_id(client, patient_headers)

    note = client.post(f"/patients/{patient_id}/notes", json={"note": "Monitor closely."}, headers=clinician_headers)
    assert note.status_code == 200
    notes = client.get(f"/patients/{patient_id}/notes", headers=clinician_headers).json()
    assert [item["note"] for item in notes] == ["Monitor closely."]

    sent = client.post(f"/patients/{patient_id}/feedback", json={"message": "Keep writing!"}, headers=clinician_headers)
    assert sent.status_code == 200
    assert client.get("/feedback/unread_count", headers=patient_headers).json() == {"unread": 1}

    feedback_id = sent.json()["id"]
    read = client.post(f"/feedback/{feedback_id}/read", headers=patient_headers)
    assert read.json()["is_read"] is True
    assert client.get("/feedback/unread_count", headers=patient_headers).json() == {"unread": 0}
    assert client.post("/feedback/9999/read", headers=patient_headers).status_code == 404


def test_two_way_messages(client):
    patient_headers = register(client, "pat@example.com", "Pat", "patient")
    other_headers = register(client, "other@example.com", "Other", "patient")
    clinician_headers = register(client, "doc@example.com", "Doc", "psychologist")
    patient_id = user_id(client, patient_headers)

    client.post(f"/messages/{patient_id}", json={"message": "Hi doctor"}, headers=patient_headers)
    client.post(f"/messages/{patient_id}", json={"message": "Hi Pat"}, headers=clinician_headers)

    thread = client.get(f"/messages/{patient_id}", headers=patient_headers).json()
    assert [item["message"] for item in thread] == ["Hi doctor", "Hi Pat"]
    assert [item["sender_role"] for item in thread] == ["patient", "psychologist"]

    assert client.get("/messages/unread_count", headers=patient_headers).json() == {"unread": 1}
    assert client.get("/messages/unread_count", headers=clinician_headers).json() == {"unread": 1}

    assert client.post(f"/messages/{patient_id}/read", headers=patient_headers).json() == {"updated": 1}
    assert client.get("/messages/unread_count", headers=patient_headers).json() == {"unread": 0}
    assert client.get("/messages/unread_count", headers=clinician_headers).json() == {"unread": 1}

    assert client.get(f"/messages/{patient_id}", headers=other_headers).status_code == 403


def test_seed_demo_requires_dev_mode(client, monkeypatch):
    monkeypatch.delenv("EMOTIONSENSE_DEV_MODE", raising=False)
    monkeypatch.delenv("DEV_MODE", raising=False)
    assert client.post("/dev/seed_demo").status_code == 404

    monkeypatch.setenv("EMOTIONSENSE_DEV_MODE", "1")
    seeded = client.post("/dev/seed_demo").json()
    assert seeded["status"] == "seeded"
    assert seeded["created"]["diary_entries"] == 15
    assert client.post("/dev/seed_demo").json()["status"] == "exists"

    login = client.post(
        "/auth/login",
        data={"username": main.DEMO_PSYCHOLOGIST_EMAIL, "password": main.DEMO_PASSWORD},
    )
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
    patients = client.get("/patients", headers=headers).json()
    assert len(patients) == 1
    assert patients[0]["negative_percentage"] == 60
    assert patients[0]["consecutive_negative_days"] == 1
    assert patients[0]["alert_level"] == "warning"
