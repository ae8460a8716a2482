"""FastAPI application for the voice PR assistant API."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from openai import OpenAI

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

load_dotenv()

from zana.classifier import build_classifier
from zana.config import Settings
from zana.dispatcher import ActionDispatcher
from zana.engine import IntentEngine
from zana.github_client import GitHubClient
from zana.session_store import SessionStore
from zana.speech import Transcriber
from zana.usage import tracker

from .routes import router

logger = logging.getLogger(__name__)

settings = Settings.from_env()


@asynccontextmanager
async def lifespan(app: FastAPI):
    tracker.configure(settings.usage_store_path)
    store = SessionStore(
        max_messages=settings.history_limit,
        pending_ttl=settings.pending_ttl_seconds,
        task_refs_ttl=settings.task_refs_ttl_seconds,
    )
    github = GitHubClient(timeout=settings.github_timeout)
    app.state.settings = settings
    app.state.github = github
    app.state.engine = IntentEngine(
        store=store,
        classifier=build_classifier(settings),
        dispatcher=ActionDispatcher(github),
        default_repo_owner=settings.default_repo_owner,
        fallback_credential=settings.github_token,
    )
    app.state.transcriber = (
        Transcriber(OpenAI(api_key=settings.openai_api_key), model=settings.stt_model)
        if settings.openai_api_key
        else None
    )
    logger.info("Ready, classifier=%s", type(app.state.engine.classifier).__name__)
    yield
    github.close()


app = FastAPI(title="Zana Voice API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.allowed_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router)

# Serve built frontend in production (when frontend/dist exists)
_frontend_dir = Path(__file__).resolve().parent.parent / "frontend" / "dist"
if _frontend_dir.is_dir():
    app.mount("/", StaticFiles(directory=_frontend_dir, html=True), name="frontend")
