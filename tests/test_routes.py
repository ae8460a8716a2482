import pytest
from fastapi.testclient import TestClient

import api.routes
from api.main import app
from conftest import ScriptedClassifier, intent
from zana.config import Settings
from zana.dispatcher import ActionDispatcher
from zana.engine import IntentEngine
from zana.errors import ClassificationError, OAuthError
from zana.speech import TranscriptionError


class FakeTranscriber:
    def __init__(self, text="list my prs", error=None):
        self.text = text
        self.error = error
        self.uploads = []

    def transcribe(self, filename, audio):
        self.uploads.append((filename, audio))
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def classifier():
    return ScriptedClassifier()


@pytest.fixture
def client(store, provider, classifier):
    api.routes._request_log.clear()
    with TestClient(app) as c:
        app.state.settings = Settings(
            github_client_id="cid",
            github_client_secret="secret",
            frontend_url="http://front.test",
        )
        app.state.github = provider
        app.state.engine = IntentEngine(
            store=store,
            classifier=classifier,
            dispatcher=ActionDispatcher(provider),
            fallback_credential="tok",
        )
        app.state.transcriber = FakeTranscriber()
        yield c
    api.routes._request_log.clear()


# ── Chat ───────────────────────────────────────────────────────────────────

def test_chat_creates_session_and_lists(client, classifier, store):
    classifier.results.append(intent("list_prs_mine"))

    resp = client.post("/api/chat", json={"message": "list my prs"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["session_id"] in store
    assert data["intent"]["type"] == "show_prs"
    assert data["reply"].startswith("You have 1 GitHub pull request(s).")


def test_chat_slot_filling_across_requests(client, classifier, provider):
    classifier.results.extend([
        intent("get_pr_comments", pr_number=123),
        intent("clarify", repo="acme/widgets"),
    ])

    first = client.post("/api/chat", json={"message": "comments on PR 123", "session_id": "s1"})
    second = client.post("/api/chat", json={"message": "acme/widgets", "session_id": "s1"})

    assert first.json()["intent"]["type"] == "clarify"
    assert second.json()["intent"]["type"] == "show_comments"
    assert provider.calls == [("get_pr_comments", "tok", "acme/widgets", 123)]


def test_chat_rejects_blank_message(client):
    assert client.post("/api/chat", json={"message": "   "}).status_code == 400


def test_chat_classifier_outage_is_503(client, classifier):
    classifier.results.append(ClassificationError("timeout"))

    resp = client.post("/api/chat", json={"message": "hello", "session_id": "s1"})

    assert resp.status_code == 503
    assert "trouble understanding" in resp.json()["detail"]


def test_chat_without_credential_requires_authorization(client, store, provider, classifier):
    app.state.engine = IntentEngine(store, classifier, ActionDispatcher(provider))

    resp = client.post("/api/chat", json={"message": "list my prs", "session_id": "s1"})

    assert resp.status_code == 200
    assert resp.json()["intent"]["type"] == "require_authorization"
    assert classifier.transcripts == []


def test_clear_session(client, store):
    store.append_message("s1", "user", "hi")

    resp = client.post("/api/session/clear", json={"session_id": "s1"})

    assert resp.json() == {"status": "cleared"}
    assert store.get_history("s1") == []


def test_rate_limit(client, classifier):
    for _ in range(30):
        classifier.results.append(intent("unknown", message="Hi!"))
        assert client.post("/api/chat", json={"message": "hi", "session_id": "s1"}).status_code == 200

    assert client.post("/api/chat", json={"message": "hi", "session_id": "s1"}).status_code == 429


# ── Voice ──────────────────────────────────────────────────────────────────

def test_voice_transcribes_then_handles_turn(client, classifier):
    classifier.results.append(intent("list_prs_mine"))

    resp = client.post(
        "/api/voice",
        files={"file": ("clip.webm", b"\x1a\x45\xdf\xa3", "audio/webm")},
        data={"session_id": "s1"},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["transcript"] == "list my prs"
    assert data["intent"]["type"] == "show_prs"
    assert app.state.transcriber.uploads == [("clip.webm", b"\x1a\x45\xdf\xa3")]


def test_voice_transcription_failure_is_502(client):
    app.state.transcriber = FakeTranscriber(error=TranscriptionError("empty transcription"))

    resp = client.post("/api/voice", files={"file": ("clip.webm", b"...", "audio/webm")})

    assert resp.status_code == 502


def test_voice_unavailable_without_transcriber(client):
    app.state.transcriber = None

    resp = client.post("/api/voice", files={"file": ("clip.webm", b"...", "audio/webm")})

    assert resp.status_code == 503


# ── GitHub authorization ───────────────────────────────────────────────────

def test_auth_url_carries_state(client, store):
    resp = client.get("/api/github/auth", params={"session_id": "s1"})

    data = resp.json()
    assert data["session_id"] == "s1"
    assert data["url"].startswith("https://github.com/login/oauth/authorize?")
    assert "client_id=cid" in data["url"]
    state = data["url"].split("state=")[1]
    assert store.resolve_auth_handshake(state) == "s1"


def test_auth_url_requires_oauth_config(client):
    app.state.settings = Settings()

    assert client.get("/api/github/auth").status_code == 400


def test_callback_connects_account_once(client, store, monkeypatch):
    monkeypatch.setattr(api.routes, "exchange_code", lambda settings, code: f"gho_{code}")
    state = store.begin_auth_handshake("s1")

    resp = client.get(
        "/api/github/callback", params={"code": "abc", "state": state}, follow_redirects=False
    )

    assert resp.status_code == 302
    assert resp.headers["location"] == "http://front.test?githubAuth=success"
    assert store.get_credential("s1") == "gho_abc"
    assert store.get_username("s1") == "octo"

    status = client.get("/api/github/status", params={"session_id": "s1"}).json()
    assert status == {"authenticated": True, "username": "octo"}

    replay = client.get(
        "/api/github/callback", params={"code": "abc", "state": state}, follow_redirects=False
    )
    assert replay.status_code == 400


def test_callback_rejects_unknown_state(client):
    resp = client.get("/api/github/callback", params={"code": "abc", "state": "forged"})

    assert resp.status_code == 400


def test_callback_exchange_failure_keeps_session_unauthenticated(client, store, monkeypatch):
    def fail(settings, code):
        raise OAuthError("bad_verification_code")

    monkeypatch.setattr(api.routes, "exchange_code", fail)
    state = store.begin_auth_handshake("s1")

    resp = client.get("/api/github/callback", params={"code": "abc", "state": state})

    assert resp.status_code == 502
    assert store.get_credential("s1") is None


def test_status_without_session_reports_fallback_token(client):
    assert client.get("/api/github/status").json() == {"authenticated": True, "username": None}


# ── Service ────────────────────────────────────────────────────────────────

def test_health_counts_sessions(client, store):
    store.append_message("s1", "user", "hi")
    store.append_message("s2", "user", "hi")

    assert client.get("/api/health").json() == {"status": "ok", "sessions": 2}


def test_usage_summary(client):
    data = client.get("/api/usage").json()

    assert set(data) == {"by_purpose", "total_calls", "total_cost_usd"}


# ── Direct PR endpoints ────────────────────────────────────────────────────

def test_list_prs_endpoints(client, provider):
    mine = client.get("/api/github/prs/mine").json()
    review = client.get("/api/github/prs/review").json()

    assert [pr["repository"] for pr in mine["prs"]] == ["acme/widgets"]
    assert [pr["number"] for pr in review["prs"]] == [7]
    assert provider.calls == [("list_user_prs", "tok"), ("list_prs_for_review", "tok")]


def test_pr_endpoints_use_session_credential(client, store, provider):
    store.set_credential("s1", "gho_session")

    resp = client.get(
        "/api/github/repos/acme/widgets/prs/5/comments", params={"session_id": "s1"}
    )

    assert resp.json()["comments"][0]["body"] == "nit: rename"
    assert provider.calls == [("get_pr_comments", "gho_session", "acme/widgets", 5)]


def test_pr_endpoints_require_credential(client, store, provider, classifier):
    app.state.engine = IntentEngine(store, classifier, ActionDispatcher(provider))

    assert client.get("/api/github/prs/mine").status_code == 401
    assert client.get("/api/github/repos/acme/widgets/prs/5/diff").status_code == 401
    assert provider.calls == []


def test_add_comment_endpoint(client, provider):
    resp = client.post("/api/github/repos/acme/widgets/prs/5/comments", json={"body": " LGTM "})

    assert resp.json() == {"ok": True}
    assert provider.calls == [("add_comment", "tok", "acme/widgets", 5, "LGTM")]


def test_add_comment_rejects_blank_body(client, provider):
    resp = client.post("/api/github/repos/acme/widgets/prs/5/comments", json={"body": "  "})

    assert resp.status_code == 400
    assert provider.calls == []


@pytest.mark.parametrize("payload,method", [
    ({"method": "Squash"}, "squash"),
    ({"method": "octopus"}, "merge"),
    ({}, "merge"),
])
def test_merge_endpoint(client, provider, payload, method):
    resp = client.post("/api/github/repos/acme/widgets/prs/5/merge", json=payload)

    assert resp.json() == {"merged": True, "method": method}
    assert provider.calls == [("merge_pr", "tok", "acme/widgets", 5, method)]


def test_status_and_diff_endpoints(client):
    status = client.get("/api/github/repos/acme/widgets/prs/5/status").json()["status"]
    diff = client.get("/api/github/repos/acme/widgets/prs/5/diff").json()["diff"]

    assert (status["checks_passing"], status["checks_total"]) == (3, 4)
    assert diff["files"][0]["filename"] == "app.py"


def test_pr_endpoint_rejects_non_positive_number(client, provider):
    assert client.get("/api/github/repos/acme/widgets/prs/0/status").status_code == 400
    assert provider.calls == []


def test_pr_endpoint_provider_failure_is_502(client, provider):
    provider.fail = True

    resp = client.post("/api/github/repos/acme/widgets/prs/5/merge", json={"method": "merge"})

    assert resp.status_code == 502
    assert "upstream" not in resp.json()["detail"]
