"""API routes wrapping the intent engine."""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import asdict

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import RedirectResponse

from zana.engine import TurnResult
from zana.errors import OAuthError, ProviderError
from zana.github_oauth import authorize_url, exchange_code
from zana.intents import coerce_merge_method
from zana.speech import TranscriptionError
from zana.usage import tracker

from .models import (
    AddCommentRequest,
    AuthURLResponse,
    ChatRequest,
    ChatResponse,
    ClearSessionRequest,
    GitHubStatusResponse,
    IntentResponse,
    MergeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Simple per-IP rate limiter: max 30 requests per minute
_RATE_LIMIT = 30
_RATE_WINDOW = 60.0
_request_log: dict[str, list[float]] = defaultdict(list)
_request_log_lock = threading.Lock()


def _check_rate_limit(request: Request) -> None:
    client_ip = request.client.host if request.client else "unknown"
    now = time.time()
    with _request_log_lock:
        recent = [t for t in _request_log[client_ip] if now - t < _RATE_WINDOW]
        if len(recent) >= _RATE_LIMIT:
            _request_log[client_ip] = recent
            raise HTTPException(status_code=429, detail="Rate limit exceeded. Try again shortly.")
        recent.append(now)
        _request_log[client_ip] = recent


def _chat_response(session_id: str, turn: TurnResult, transcript: str | None = None) -> ChatResponse:
    if turn.failed:
        raise HTTPException(status_code=503, detail=turn.reply)
    return ChatResponse(
        session_id=session_id,
        reply=turn.reply,
        intent=IntentResponse(type=turn.intent_type, payload=turn.payload),
        transcript=transcript,
    )


@router.post("/chat", response_model=ChatResponse)
def chat(req: ChatRequest, request: Request):
    _check_rate_limit(request)
    engine = request.app.state.engine

    message = req.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="message is required")

    session_id = req.session_id or engine.store.new_session_id()
    turn = engine.handle_turn(session_id, message, system=req.system)
    return _chat_response(session_id, turn)


@router.post("/voice", response_model=ChatResponse)
def voice(
    request: Request,
    file: UploadFile = File(...),
    session_id: str | None = Form(None),
):
    _check_rate_limit(request)
    engine = request.app.state.engine
    transcriber = request.app.state.transcriber
    if transcriber is None:
        raise HTTPException(status_code=503, detail="speech transcription is not configured")

    session_id = session_id or engine.store.new_session_id()
    try:
        transcript = transcriber.transcribe(file.filename or "audio.webm", file.file.read())
    except TranscriptionError as e:
        logger.warning("session=%s transcription failed: %s", session_id[:8], e)
        raise HTTPException(status_code=502, detail="transcription failed")

    turn = engine.handle_turn(session_id, transcript)
    return _chat_response(session_id, turn, transcript=transcript)


@router.post("/session/clear")
def clear_session(req: ClearSessionRequest, request: Request):
    request.app.state.engine.store.clear(req.session_id)
    return {"status": "cleared"}


# ── GitHub authorization ───────────────────────────────────────────────────

@router.get("/github/auth", response_model=AuthURLResponse)
def github_auth(request: Request, session_id: str | None = None):
    settings = request.app.state.settings
    if not settings.oauth_configured:
        raise HTTPException(status_code=400, detail="github oauth not configured")

    store = request.app.state.engine.store
    session_id = session_id or store.new_session_id()
    state = store.begin_auth_handshake(session_id)
    return AuthURLResponse(url=authorize_url(settings, state), session_id=session_id)


@router.get("/github/callback")
def github_callback(request: Request, code: str = "", state: str = ""):
    settings = request.app.state.settings
    engine = request.app.state.engine
    store = engine.store
    if not code or not state:
        raise HTTPException(status_code=400, detail="missing state or code")

    session_id = store.resolve_auth_handshake(state)
    if session_id is None:
        raise HTTPException(status_code=400, detail="invalid oauth state")

    try:
        token = exchange_code(settings, code)
        username = request.app.state.github.get_authenticated_user(token)
    except OAuthError as e:
        logger.warning("session=%s token exchange failed: %s", session_id[:8], e)
        raise HTTPException(status_code=502, detail="token exchange failed")
    except ProviderError as e:
        logger.warning("session=%s username lookup failed: %s", session_id[:8], e)
        raise HTTPException(status_code=502, detail="failed to fetch GitHub username")

    with store.session_lock(session_id):
        store.set_credential(session_id, token)
        store.set_username(session_id, username)
        store.clear_auth_handshake(session_id)
    logger.info("session=%s connected GitHub account %s", session_id[:8], username)

    return RedirectResponse(f"{settings.frontend_url}?githubAuth=success", status_code=302)


@router.get("/github/status", response_model=GitHubStatusResponse)
def github_status(request: Request, session_id: str | None = None):
    engine = request.app.state.engine
    if not session_id:
        return GitHubStatusResponse(authenticated=bool(engine.fallback_credential))
    return GitHubStatusResponse(
        authenticated=bool(engine.credential(session_id)),
        username=engine.store.get_username(session_id),
    )


# ── Direct PR endpoints ────────────────────────────────────────────────────

def _github_token(request: Request, session_id: str | None) -> str:
    engine = request.app.state.engine
    token = engine.credential(session_id) if session_id else engine.fallback_credential
    if not token:
        raise HTTPException(status_code=401, detail="not authenticated with GitHub")
    return token


def _pr_target(owner: str, repo: str, number: int) -> str:
    if not owner.strip() or not repo.strip() or number <= 0:
        raise HTTPException(status_code=400, detail="invalid repo or PR number")
    return f"{owner}/{repo}"


def _provider_call(what: str, fn, *args):
    try:
        return fn(*args)
    except ProviderError as e:
        logger.warning("%s failed: %s", what, e)
        raise HTTPException(status_code=502, detail=f"failed to {what}")


@router.get("/github/prs/review")
def prs_for_review(request: Request, session_id: str | None = None):
    token = _github_token(request, session_id)
    prs = _provider_call("list PRs for review", request.app.state.github.list_prs_for_review, token)
    return {"prs": [asdict(pr) for pr in prs]}


@router.get("/github/prs/mine")
def prs_mine(request: Request, session_id: str | None = None):
    token = _github_token(request, session_id)
    prs = _provider_call("list user PRs", request.app.state.github.list_user_prs, token)
    return {"prs": [asdict(pr) for pr in prs]}


@router.get("/github/repos/{owner}/{repo}/prs/{number}/comments")
def pr_comments(request: Request, owner: str, repo: str, number: int, session_id: str | None = None):
    token = _github_token(request, session_id)
    target = _pr_target(owner, repo, number)
    comments = _provider_call(
        "fetch PR comments", request.app.state.github.get_pr_comments, token, target, number
    )
    return {"comments": [asdict(c) for c in comments]}


@router.post("/github/repos/{owner}/{repo}/prs/{number}/comments")
def add_pr_comment(
    req: AddCommentRequest,
    request: Request,
    owner: str,
    repo: str,
    number: int,
    session_id: str | None = None,
):
    token = _github_token(request, session_id)
    target = _pr_target(owner, repo, number)
    body = req.body.strip()
    if not body:
        raise HTTPException(status_code=400, detail="invalid comment body")
    _provider_call("add comment", request.app.state.github.add_comment, token, target, number, body)
    return {"ok": True}


@router.post("/github/repos/{owner}/{repo}/prs/{number}/merge")
def merge_pr(
    request: Request,
    owner: str,
    repo: str,
    number: int,
    req: MergeRequest | None = None,
    session_id: str | None = None,
):
    token = _github_token(request, session_id)
    target = _pr_target(owner, repo, number)
    method = coerce_merge_method(req.method if req else None) or "merge"
    _provider_call("merge PR", request.app.state.github.merge_pr, token, target, number, method)
    return {"merged": True, "method": method}


@router.get("/github/repos/{owner}/{repo}/prs/{number}/status")
def pr_status(request: Request, owner: str, repo: str, number: int, session_id: str | None = None):
    token = _github_token(request, session_id)
    target = _pr_target(owner, repo, number)
    status = _provider_call(
        "fetch PR status", request.app.state.github.get_pr_status, token, target, number
    )
    return {"status": asdict(status)}


@router.get("/github/repos/{owner}/{repo}/prs/{number}/diff")
def pr_diff(request: Request, owner: str, repo: str, number: int, session_id: str | None = None):
    token = _github_token(request, session_id)
    target = _pr_target(owner, repo, number)
    diff = _provider_call("fetch PR diff", request.app.state.github.get_pr_diff, token, target, number)
    return {"diff": asdict(diff)}


# ── Service ────────────────────────────────────────────────────────────────

@router.get("/usage")
def usage():
    return tracker.summary()


@router.get("/health")
def health(request: Request):
    return {
        "status": "ok",
        "sessions": len(request.app.state.engine.store),
    }
