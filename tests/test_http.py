import json

import pytest
from fastapi.testclient import TestClient

from tripchat.config import Settings, get_settings
from tripchat.handlers.deps import get_chat_backend, get_manager
from tripchat.main import app
from tripchat.services.chat import APOLOGY_TEXT, ConversationManager
from tripchat.services.llm.events import CandidateUpdate, FunctionCallPart, TextDelta

from conftest import LISBON, ScriptedProvider


def _events(response):
    return [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]


@pytest.fixture
def scripted():
    return ScriptedProvider()


@pytest.fixture
def manager(backend, scripted):
    return ConversationManager(backend, lambda: scripted)


@pytest.fixture
def client(backend, manager):
    app.dependency_overrides[get_chat_backend] = lambda: backend
    app.dependency_overrides[get_manager] = lambda: manager
    app.dependency_overrides[get_settings] = lambda: Settings(admin_emails=["admin@example.com"])
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _guest_headers(client):
    token = client.post("/auth/guest").json()["token"]
    return {"Authorization": f"Bearer {token}"}


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_signup_login_me_logout(client):
    body = {"email": "ana@example.com", "password": "secret1", "first_name": "Ana", "last_name": "Silva"}
    assert client.post("/auth/signup", json=body).status_code == 200

    login = client.post("/auth/login", json={"email": "ana@example.com", "password": "secret1"})
    headers = {"Authorization": f"Bearer {login.json()['token']}"}
    assert client.get("/auth/me", headers=headers).json()["display_name"] == "Ana Silva"

    assert client.post("/auth/logout", headers=headers).json() == {"status": "signed_out"}
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_login_failure_is_401(client):
    response = client.post("/auth/login", json={"email": "nobody@example.com", "password": "secret1"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Account not found. Please Sign Up."


def test_chat_requires_auth(client):
    assert client.get("/messages").status_code == 401


def test_send_streams_store_events(client, scripted):
    scripted.script.append(
        [TextDelta("Sure! "), CandidateUpdate((FunctionCallPart("propose_itinerary", LISBON),))]
    )
    headers = _guest_headers(client)

    response = client.post("/chat/send", json={"text": "3 days in Lisbon"}, headers=headers)

    assert response.headers["content-type"].startswith("text/event-stream")
    events = _events(response)
    assert [e["event"] for e in events] == ["append", "append", "update", "update", "done"]
    done = events[-1]["message"]
    assert done["sender"] == "ai"
    assert done["isStreaming"] is False
    assert done["text"] == "Sure! "
    assert done["itinerary"]["trip_title"] == "Lisbon Getaway"
    assert "## Lisbon Getaway" in done["rendered"]

    state = client.get("/messages", headers=headers).json()
    assert len(state["messages"]) == 2
    assert state["busy"] is False

    sessions = client.get("/sessions", headers=headers).json()
    assert sessions[0]["title"] == "3 days in Lisbon"


def test_send_failure_streams_apology(client, scripted):
    scripted.script.append([TextDelta("Planning your"), ConnectionError("dropped")])
    headers = _guest_headers(client)

    events = _events(client.post("/chat/send", json={"text": "Rome"}, headers=headers))

    assert "remove" in [e["event"] for e in events]
    assert events[-1]["event"] == "done"
    assert events[-1]["message"]["text"] == APOLOGY_TEXT


def test_send_validation(client):
    headers = _guest_headers(client)
    assert client.post("/chat/send", json={"text": "   "}, headers=headers).status_code == 400
    bad_image = {"text": "look", "image": "data:text/plain;base64,aGk="}
    assert client.post("/chat/send", json=bad_image, headers=headers).status_code == 400


def test_regenerate_and_reload_session(client, scripted):
    scripted.script.extend([[TextDelta("First.")], [TextDelta("Second.")]])
    headers = _guest_headers(client)
    sent = _events(client.post("/chat/send", json={"text": "Porto"}, headers=headers))
    reply_id = sent[-1]["message"]["id"]

    regenerated = _events(client.post(f"/chat/regenerate/{reply_id}", headers=headers))
    assert regenerated[-1]["message"]["id"] == reply_id
    assert regenerated[-1]["message"]["text"] == "Second."

    session_id = client.get("/sessions", headers=headers).json()[0]["id"]
    client.post("/sessions/new", headers=headers)
    assert client.get("/messages", headers=headers).json()["messages"] == []

    loaded = client.post(f"/sessions/{session_id}/select", headers=headers).json()
    assert [m["text"] for m in loaded] == ["Porto", "First."]
    assert client.post("/sessions/unknown/select", headers=headers).status_code == 404


def test_admin_stats_requires_admin(client):
    headers = _guest_headers(client)
    assert client.get("/admin/stats", headers=headers).status_code == 403

    body = {"email": "admin@example.com", "password": "secret1"}
    token = client.post("/auth/signup", json=body).json()["token"]
    stats = client.get("/admin/stats", headers={"Authorization": f"Bearer {token}"}).json()
    assert stats["users_count"] == 2
    assert stats["chats_count"] == 0


def test_send_while_busy_is_409(client, manager):
    guest = client.post("/auth/guest").json()
    headers = {"Authorization": f"Bearer {guest['token']}"}
    service = manager.get(guest["user"]["id"])
    service.acquire()

    response = client.post("/chat/send", json={"text": "Rome"}, headers=headers)

    assert response.status_code == 409
    assert client.get("/messages", headers=headers).json()["messages"] == []
    service.release()
