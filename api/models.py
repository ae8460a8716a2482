"""Pydantic request/response schemas for the assistant API."""

from typing import Any

from pydantic import BaseModel


# ── Requests ───────────────────────────────────────────────────────────────

class ChatRequest(BaseModel):
    message: str
    session_id: str | None = None
    system: str | None = None


class ClearSessionRequest(BaseModel):
    session_id: str


# ── Responses ──────────────────────────────────────────────────────────────

class IntentResponse(BaseModel):
    type: str
    payload: dict[str, Any] | None = None


class ChatResponse(BaseModel):
    session_id: str
    reply: str
    intent: IntentResponse
    transcript: str | None = None


class AuthURLResponse(BaseModel):
    url: str
    session_id: str


class GitHubStatusResponse(BaseModel):
    authenticated: bool
    username: str | None = None


# ── Direct PR endpoints ────────────────────────────────────────────────────

class AddCommentRequest(BaseModel):
    body: str


class MergeRequest(BaseModel):
    method: str | None = None
