"""HTTP surface tests using the FastAPI test client."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from meetscribe.main import create_app
from meetscribe.services.analysis import AnalysisService
from meetscribe.services.meeting_store import MeetingStore
from meetscribe.services.transcript import TranscriptReconciler


class _FakeProvider:
    def __init__(self, content: str) -> None:
        self.content = content
        self.prompts: list[str] = []

    def prompt(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None) -> str:
        self.prompts.append(prompt)
        return self.content


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.delenv("MEETSCRIBE_SESSION_SECRET", raising=False)
    return create_app(cwd=str(tmp_path))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def _login(client: TestClient, email: str = "ada@example.com") -> dict:
    response = client.post(
        "/api/auth/register", json={"name": "Ada", "email": email, "password": "pw"}
    )
    assert response.status_code == 201
    response = client.post("/api/auth/login", json={"email": email, "password": "pw"})
    assert response.status_code == 200
    return response.json()["user"]


def _event(text: str, ts: int, speaker: str, final: bool = True) -> dict:
    return {"text": text, "is_final": final, "speaker_id": speaker, "timestamp": ts}


def test_health_is_public(client) -> None:
    assert client.get("/api/health").json()["status"] == "ok"


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("get", "/api/meetings"),
        ("get", "/api/auth/session"),
        ("get", "/api/users/recording-time"),
        ("post", "/api/recording/start"),
        ("get", "/api/speech/token"),
    ],
)
def test_protected_routes_require_session(client, method, path) -> None:
    response = getattr(client, method)(path)

    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthorized"}


def test_register_login_logout(client) -> None:
    user = _login(client)

    assert "password_hash" not in user
    assert client.get("/api/auth/session").json()["user"]["id"] == user["id"]
    assert client.post("/api/auth/register", json={"name": "X", "email": "ADA@example.com", "password": "p"}).status_code == 400
    assert client.post("/api/auth/login", json={"email": "ada@example.com", "password": "bad"}).status_code == 401

    client.post("/api/auth/logout")
    assert client.get("/api/auth/session").status_code == 401


def test_meeting_crud_and_owner_scope(app, client) -> None:
    _login(client)
    created = client.post(
        "/api/meetings", json={"title": "Kickoff", "startTime": "2024-05-01T10:00:00Z", "tags": ["q2"]}
    )
    assert created.status_code == 201
    meeting_id = created.json()["id"]

    assert client.post("/api/meetings", json={"title": "No start"}).status_code == 400
    assert client.get("/api/meetings", params={"search": "KICK"}).json()["pagination"]["total"] == 1

    patched = client.patch(f"/api/meetings/{meeting_id}", json={"description": "agenda", "status": "completed"})
    assert patched.json()["status"] == "completed"
    assert patched.json()["title"] == "Kickoff"

    with TestClient(app) as other:
        _login(other, email="eve@example.com")
        assert other.get(f"/api/meetings/{meeting_id}").status_code == 404
        assert other.delete(f"/api/meetings/{meeting_id}").status_code == 404

    assert client.delete(f"/api/meetings/{meeting_id}").status_code == 200
    assert client.get(f"/api/meetings/{meeting_id}").status_code == 404


def test_recording_flow(client) -> None:
    _login(client)
    started = client.post("/api/recording/start", json={"title": "Standup"})
    assert started.status_code == 201
    state = started.json()
    session_id, meeting_id = state["session_id"], state["meeting_id"]
    assert state["recording"] is True

    result = client.post(
        f"/api/recording/{session_id}/events", json=_event("Hi my name is Joe", 1000, "Guest-1")
    ).json()
    assert result["notifications"] == [
        {"type": "speaker_name_detected", "speaker_id": "Guest-1", "name": "Joe"}
    ]
    client.post(f"/api/recording/{session_id}/events", json=_event("sounds goo", 2000, "Guest-2", final=False))
    client.post(f"/api/recording/{session_id}/events", json=_event("???", 1500, "Unknown"))
    assert client.post(f"/api/recording/{session_id}/events", json={"is_final": True}).status_code == 400

    busy = client.patch(f"/api/recording/{session_id}/speakers/Guest-2", json={"name": "Ann"})
    assert busy.status_code == 409

    stopped = client.post(f"/api/recording/{session_id}/stop").json()
    assert stopped["recording"] is False
    assert all(u["is_final"] for u in stopped["transcriptions"])
    late = client.post(f"/api/recording/{session_id}/events", json=_event("late", 3000, "Guest-1"))
    assert late.status_code == 409

    renamed = client.patch(f"/api/recording/{session_id}/speakers/Guest-2", json={"name": " Ann "})
    assert renamed.json()["renamed"] is True

    flattened = client.get(f"/api/recording/{session_id}/transcript").json()["transcript"]
    assert flattened == "Joe: Hi my name is Joe\nAnn: sounds goo"

    meeting = client.get(f"/api/meetings/{meeting_id}").json()
    assert meeting["status"] == "completed"
    assert meeting["end_time"]
    assert meeting["speaker_names"] == {"Guest-1": "Joe", "Guest-2": "Ann"}
    assert [u["speaker_name"] for u in meeting["transcriptions"]] == ["Joe", "Unknown Speaker", "Ann"]

    assert client.delete(f"/api/recording/{session_id}").status_code == 200
    assert client.get(f"/api/recording/{session_id}").status_code == 404


def test_open_meeting_restores_transcript(client) -> None:
    _login(client)
    meeting = client.post(
        "/api/meetings",
        json={
            "title": "Saved",
            "start_time": "2024-05-01T10:00:00Z",
            "transcriptions": [
                {"text": "hello", "timestamp": 1, "speaker_id": "Guest-1", "speaker_name": "Speaker 1"}
            ],
            "speaker_names": {"Guest-1": "Bo"},
        },
    ).json()

    opened = client.post("/api/recording/open", json={"meeting_id": meeting["id"]})
    assert opened.status_code == 201
    session_id = opened.json()["session_id"]
    assert opened.json()["recording"] is False
    assert client.get(f"/api/recording/{session_id}/transcript").json()["transcript"] == "Bo: hello"

    assert client.post("/api/recording/open", json={"meeting_id": "f" * 32}).status_code == 404


def test_websocket_relay(app, client) -> None:
    _login(client)
    session_id = client.post("/api/recording/start", json={}).json()["session_id"]

    with client.websocket_connect(f"/api/recording/{session_id}/stream") as ws:
        assert ws.receive_json()["type"] == "state"
        ws.send_text(json.dumps(_event("I'm alice", 10, "Guest-1")))
        pushed = ws.receive_json()
        assert pushed["speaker_names"] == {"Guest-1": "Alice"}
        ws.send_text("not json")
        assert ws.receive_json()["type"] == "error"

    client.post(f"/api/recording/{session_id}/stop")

    with TestClient(app) as anonymous:
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with anonymous.websocket_connect(f"/api/recording/{session_id}/stream"):
                pass
        assert excinfo.value.code == 4401


def test_usage_tracking_is_limited_to_session_user(client) -> None:
    user = _login(client)

    own = client.post("/api/usage/track", json={"user_id": user["id"], "service": "ai", "duration": 4})
    assert own.json()["success"] is True
    foreign = client.post("/api/usage/track", json={"user_id": "someone-else", "service": "ai", "duration": 4})
    assert foreign.status_code == 401


def test_recording_time_close_out(client) -> None:
    _login(client)
    meeting = client.post(
        "/api/meetings", json={"title": "Call", "start_time": "2024-05-01T10:00:00Z"}
    ).json()

    summary = client.post(
        "/api/users/recording-time", json={"meeting_id": meeting["id"], "duration": 600}
    ).json()

    assert summary["time_used"] == 600
    assert summary["remaining_time"] == 10800 - 600
    assert client.get("/api/users/recording-time").json()["time_used"] == 600
    assert client.post(
        "/api/users/recording-time", json={"meeting_id": "f" * 32, "duration": 1}
    ).status_code == 404


def test_analyze_persists_summary(client, monkeypatch) -> None:
    _login(client)
    meeting = client.post(
        "/api/meetings", json={"title": "Call", "start_time": "2024-05-01T10:00:00Z"}
    ).json()
    content = json.dumps({"summary": "Agreed to ship", "actionItems": ["Ship"], "keyPoints": ["Date"]})
    monkeypatch.setattr(AnalysisService, "_get_provider", lambda self: _FakeProvider(content))

    response = client.post(
        "/api/meeting/analyze",
        json={"transcript": [{"speaker": "Ann", "text": "ship it"}], "meeting_id": meeting["id"]},
    )

    assert response.status_code == 200
    assert response.json() == {"summary": "Agreed to ship", "action_items": ["Ship"], "key_points": ["Date"]}
    assert client.get(f"/api/meetings/{meeting['id']}").json()["summary"]["summary"] == "Agreed to ship"

    answer = client.post(
        "/api/meeting/query",
        json={"transcript": [{"speaker": "Ann", "text": "ship it"}], "question": "What?"},
    )
    assert answer.json() == {"answer": content}


def test_analysis_without_model_is_bad_gateway(client) -> None:
    _login(client)

    response = client.post("/api/meeting/analyze", json={"transcript": [{"speaker": "A", "text": "hi"}]})

    assert response.status_code == 502
    assert client.post("/api/meeting/analyze", json={"transcript": []}).status_code == 422


def _recorded_session(client) -> tuple[str, str]:
    started = client.post("/api/recording/start", json={"title": "Review"}).json()
    session_id = started["session_id"]
    client.post(f"/api/recording/{session_id}/events", json=_event("I'm bo", 100, "Guest-1"))
    client.post(f"/api/recording/{session_id}/events", json=_event("ship friday", 200, "Guest-2"))
    client.post(f"/api/recording/{session_id}/events", json=_event("maybe", 300, "Guest-1", final=False))
    client.post(f"/api/recording/{session_id}/events", json=_event("??", 250, "Unknown"))
    client.post(f"/api/recording/{session_id}/stop")
    return session_id, started["meeting_id"]


def test_session_analysis_uses_flattened_transcript(client, monkeypatch) -> None:
    _login(client)
    session_id, meeting_id = _recorded_session(client)
    content = json.dumps({"summary": "Ship Friday", "action_items": [], "key_points": []})
    provider = _FakeProvider(content)
    monkeypatch.setattr(AnalysisService, "_get_provider", lambda self: provider)

    flattened = client.get(f"/api/recording/{session_id}/transcript").json()["transcript"]
    response = client.post(f"/api/recording/{session_id}/analyze")

    assert response.status_code == 200
    assert flattened == "Bo: I'm bo\nSpeaker 2: ship friday\nBo: maybe"
    assert flattened in provider.prompts[0]
    assert "??" not in provider.prompts[0]

    meeting = client.get(f"/api/meetings/{meeting_id}").json()
    assert meeting["summary"]["summary"] == "Ship Friday"
    restored = TranscriptReconciler()
    restored.load_from_persisted(meeting)
    assert restored.flatten_for_analysis() == flattened

    answer = client.post(f"/api/recording/{session_id}/query", json={"question": "When?"})
    assert answer.json() == {"answer": content}
    assert flattened in provider.prompts[1]


def test_rename_save_failure_is_reported_as_retryable(client, monkeypatch) -> None:
    _login(client)
    session_id, _ = _recorded_session(client)

    def unavailable(self, user_id, meeting_id, partial):
        raise OSError("disk full")

    monkeypatch.setattr(MeetingStore, "update", unavailable)
    response = client.patch(f"/api/recording/{session_id}/speakers/Guest-2", json={"name": "Cy"})

    assert response.status_code == 503
    assert "retry" in response.json()["detail"]


def test_opening_a_meeting_reuses_its_session(app, client) -> None:
    _login(client)
    meeting = client.post(
        "/api/meetings", json={"title": "Saved", "start_time": "2024-05-01T10:00:00Z"}
    ).json()

    ids = {
        client.post("/api/recording/open", json={"meeting_id": meeting["id"]}).json()["session_id"]
        for _ in range(5)
    }

    assert len(ids) == 1
    assert len(app.state.sessions) == 1
