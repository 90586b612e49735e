# tests/test_api_flow.py
"""
End-to-end flows through the HTTP API: speak -> pending -> accept -> room,
guard verdicts, suspensions and the admin console. Each test gets its own
SQLite file; the LLM runs in mock mode.
"""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from aether import app as app_module
from aether import auth as authmod
from aether import llm_wrapper
from aether.app import app
from aether.chat import CONNECTED_NOTICE

ADMIN_KEY = "admin-key-123"


@pytest.fixture
def client(fresh_db, roomy_limiter, monkeypatch):
    monkeypatch.setattr(llm_wrapper, "MOCK_LLM", True)
    monkeypatch.setattr(authmod, "ADMIN_API_KEYS", {ADMIN_KEY})
    return TestClient(app)


def register(client, handle, device=None):
    r = client.post("/api/auth/register", json={"handle": handle, "password": "secret-pw"})
    assert r.status_code == 200, r.text
    token = r.json()["token"]
    return {"authorization": f"Bearer {token}", "x-client-id": device or f"device-{handle}"}


def speak(client, headers, text="I have been feeling lonely and need someone to talk to"):
    return client.post("/api/speak", headers=headers, json={"text": text})


def test_full_speak_accept_chat_flow(client):
    speaker = register(client, "speaker")
    listener = register(client, "listener")
    late = register(client, "latecomer")

    r = speak(client, speaker)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "success"
    assert body["matching"] is True
    request_id = body["request_id"]

    pending = client.get("/api/requests/pending", headers=listener).json()["requests"]
    assert [p["id"] for p in pending] == [request_id]
    assert pending[0]["summary"] == body["reply"]
    assert client.get("/api/requests/pending/count").json()["count"] == 1

    r = client.post(f"/api/requests/{request_id}/accept", headers=listener)
    assert r.status_code == 200
    room_id = r.json()["room_id"]

    r = client.post(f"/api/requests/{request_id}/accept", headers=late)
    assert r.status_code == 409
    assert r.json()["error_code"] == "E_ALREADY_MATCHED"
    assert r.json()["details"]["pending"] == []

    accepted = client.get("/api/requests/accepted", headers=speaker).json()["requests"]
    assert [a["room_id"] for a in accepted] == [room_id]

    assert client.post(f"/api/rooms/{room_id}/messages", headers=speaker,
                       json={"content": "thank you for coming"}).json()["status"] == "success"
    assert client.post(f"/api/rooms/{room_id}/messages", headers=listener,
                       json={"content": "I am here, take your time"}).json()["status"] == "success"

    messages = client.get(f"/api/rooms/{room_id}/messages", headers=speaker).json()["messages"]
    assert [m["content"] for m in messages] == [
        CONNECTED_NOTICE, "thank you for coming", "I am here, take your time",
    ]

    r = client.get(f"/api/rooms/{room_id}/messages", headers=late)
    assert r.status_code == 403
    assert r.json()["error_code"] == "E_FORBIDDEN"


def test_speak_without_identity_is_unauthorized(client):
    r = client.post("/api/speak", json={"text": "hello"})
    assert r.status_code == 401
    assert r.json()["error_code"] == "E_UNAUTHORIZED"


def test_empty_text_rejected(client):
    headers = register(client, "speaker")
    assert speak(client, headers, "   ").status_code == 422


def test_privacy_block_creates_no_request(client):
    headers = register(client, "speaker")
    r = speak(client, headers, "please call me at 555-123-4567")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "blocked"
    assert body["verdict"] == "block-privacy"
    assert body["warning"]["display_seconds"] == 5
    assert client.get("/api/requests/pending/count").json()["count"] == 0


def test_crisis_block_offers_escalation(client):
    headers = register(client, "speaker")
    body = speak(client, headers, "I want to end it all, email me at x@example.com").json()
    assert body["verdict"] == "block-crisis"
    assert [o["id"] for o in body["escalation"]["options"]] == ["specialist", "peer"]
    assert client.get("/api/requests/pending/count").json()["count"] == 0

    r = client.post("/api/crisis/choice", headers=headers, json={"choice": "specialist"})
    assert r.json()["next"] == "specialist_queue"
    assert client.post("/api/crisis/choice", headers=headers, json={"choice": "nobody"}).status_code == 422


def test_speak_falls_back_when_rewrite_fails(client, monkeypatch):
    def broken(messages, **kw):
        raise RuntimeError("provider down")

    monkeypatch.setattr(llm_wrapper, "call_llm", broken)
    headers = register(client, "speaker")
    body = speak(client, headers).json()
    assert body["status"] == "success"
    assert body["ai_generated"] is False
    assert body["reply"].startswith("Your words are safe with me.")


def _paired_room(client):
    speaker = register(client, "speaker")
    listener = register(client, "listener")
    request_id = speak(client, speaker).json()["request_id"]
    room_id = client.post(f"/api/requests/{request_id}/accept", headers=listener).json()["room_id"]
    return speaker, listener, room_id


def test_toxic_message_suspends_client(client):
    speaker, listener, room_id = _paired_room(client)

    r = client.post(f"/api/rooms/{room_id}/messages", headers=listener, json={"content": "shut up"})
    body = r.json()
    assert body["status"] == "blocked"
    assert body["verdict"] == "block-toxicity"
    assert body["suspension"]["suspended"] is True
    assert body["suspension"]["remaining"] == "1d 0h"

    r = client.get("/api/requests/pending", headers=listener)
    assert r.status_code == 403
    assert r.json()["error_code"] == "E_SUSPENDED"

    status = client.get("/api/suspension", headers=listener).json()
    assert status["suspended"] is True

    # the blocked text was never stored
    messages = client.get(f"/api/rooms/{room_id}/messages", headers=speaker).json()["messages"]
    assert [m["content"] for m in messages] == [CONNECTED_NOTICE]


def test_privacy_in_chat_warns_without_suspending(client):
    speaker, _, room_id = _paired_room(client)
    r = client.post(f"/api/rooms/{room_id}/messages", headers=speaker,
                    json={"content": "my instagram.com/me"})
    assert r.json()["verdict"] == "block-privacy"
    assert client.get("/api/suspension", headers=speaker).json()["suspended"] is False


def test_report_participant(client):
    speaker, _, room_id = _paired_room(client)
    r = client.post(f"/api/rooms/{room_id}/report", headers=speaker)
    assert r.status_code == 200
    assert r.json()["report"]["type"] == "Harassment"

    overview = client.get("/api/admin/overview", headers={"x-admin-key": ADMIN_KEY}).json()
    assert [rep["room_id"] for rep in overview["reports"]] == [room_id]


def test_admin_requires_key(client):
    assert client.get("/api/admin/overview").status_code == 401
    assert client.get("/api/admin/overview", headers={"x-admin-key": "nope"}).status_code == 401


def test_admin_delete_and_wipe(client):
    speaker, _, room_id = _paired_room(client)
    admin = {"x-admin-key": ADMIN_KEY}

    messages = client.get(f"/api/admin/rooms/{room_id}/messages", headers=admin).json()["messages"]
    r = client.delete(f"/api/admin/messages/{messages[0]['id']}", headers=admin)
    assert r.status_code == 200
    assert client.get(f"/api/rooms/{room_id}/messages", headers=speaker).json()["messages"] == []

    assert client.delete("/api/admin/messages/999999", headers=admin).status_code == 404
    assert client.delete("/api/admin/unknown", headers=admin).status_code == 404

    r = client.delete("/api/admin/requests", headers=admin)
    assert r.json()["deleted"] == 1
    assert client.get("/api/admin/overview", headers=admin).json()["requests"] == []


def test_journal_and_echoes(client):
    headers = register(client, "writer")
    r = client.post("/api/journal", headers=headers, json={"content": "a calm and quiet day"})
    assert r.status_code == 200
    assert r.json()["entry"]["content"] == "a calm and quiet day"
    assert r.json()["reflection"]

    insights = client.get("/api/journal/insights", headers=headers).json()
    assert insights["has_data"] is True
    assert insights["distribution"]["calm"] == 100

    r = client.post("/api/echoes/calm", headers=headers, json={"content": "breathing with you all"})
    assert r.json()["status"] == "success"
    echoes = client.get("/api/echoes/calm").json()["echoes"]
    assert [e["content"] for e in echoes] == ["breathing with you all"]
    assert client.get("/api/echoes/rage").status_code == 404


def test_pending_feed_over_websocket(client):
    speaker = register(client, "speaker")
    with client.websocket_connect("/ws/requests/pending") as ws:
        assert ws.receive_json() == []
        request_id = speak(client, speaker).json()["request_id"]
        snapshot = ws.receive_json()
        assert [r["id"] for r in snapshot] == [request_id]


def test_room_socket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/rooms/room-1?token=bogus") as ws:
            ws.receive_json()


def test_auth_errors(client):
    register(client, "speaker")
    r = client.post("/api/auth/register", json={"handle": "Speaker", "password": "secret-pw"})
    assert r.status_code == 401
    assert r.json()["message"].startswith("Security:")

    r = client.post("/api/auth/login", json={"handle": "speaker", "password": "wrong-pw"})
    assert r.status_code == 401
    r = client.post("/api/auth/login", json={"handle": "speaker", "password": "secret-pw"})
    assert r.status_code == 200
    assert app_module.orchestrator.auth.resolve(r.json()["token"]).display_name == "speaker"


def test_suspended_client_is_refused_live_feeds(client):
    speaker, listener, room_id = _paired_room(client)
    token = listener["authorization"][len("Bearer "):]

    with client.websocket_connect(f"/ws/rooms/{room_id}?token={token}", headers=listener) as ws:
        assert [m["content"] for m in ws.receive_json()] == [CONNECTED_NOTICE]

    client.post(f"/api/rooms/{room_id}/messages", headers=listener, json={"content": "shut up"})

    attempts = [
        (f"/ws/rooms/{room_id}?token={token}", listener),
        ("/ws/requests/pending", listener),
        ("/ws/echoes/calm", listener),
        ("/ws/requests/pending?client_id=device-listener", {}),
    ]
    for url, headers in attempts:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(url, headers=headers) as ws:
                ws.receive_json()
        assert exc.value.code == app_module.WS_SUSPENDED

    # the other participant is unaffected
    speaker_token = speaker["authorization"][len("Bearer "):]
    with client.websocket_connect(f"/ws/rooms/{room_id}?token={speaker_token}", headers=speaker) as ws:
        assert ws.receive_json()[0]["content"] == CONNECTED_NOTICE
