"""
Process configuration, read from the environment.

Entry points call `load_dotenv()` first, so values may also come from a local `.env`.
"""

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_STT_MODEL = "whisper-1"
DEFAULT_SCOPES = ["repo", "read:user"]


def _env_int(key: str, default: int, minimum: int | None = None) -> int:
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("Ignoring %s=%d below minimum %d, using %d", key, value, minimum, default)
        return default
    return value


def _env_float(key: str, default: float) -> float:
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", key, raw, default)
        return default


def _env_list(key: str, default: list[str]) -> list[str]:
    raw = os.environ.get(key, "")
    items = [p.strip() for p in raw.split(",") if p.strip()]
    return items or list(default)


@dataclass
class Settings:
    openai_api_key: str | None = None
    openai_model: str = DEFAULT_MODEL
    stt_model: str = DEFAULT_STT_MODEL

    allowed_origin: str = "http://localhost:5173"
    frontend_url: str = "http://localhost:5173"

    github_client_id: str | None = None
    github_client_secret: str | None = None
    github_redirect_url: str = "http://localhost:8000/api/github/callback"
    github_scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    # Personal access token used when a session has not connected its own account
    github_token: str | None = None
    # Owner used to qualify a bare repo name when the session username is unknown
    default_repo_owner: str | None = None

    history_limit: int = 40
    pending_ttl_seconds: float = 7 * 60
    task_refs_ttl_seconds: float = 7 * 60
    classifier_timeout: float = 10.0
    github_timeout: float = 20.0

    usage_store_path: str | None = None

    @property
    def oauth_configured(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret)

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            openai_model=os.environ.get("OPENAI_MODEL") or DEFAULT_MODEL,
            stt_model=os.environ.get("OPENAI_STT_MODEL") or DEFAULT_STT_MODEL,
            allowed_origin=os.environ.get("ALLOWED_ORIGIN") or "http://localhost:5173",
            frontend_url=os.environ.get("FRONTEND_URL") or "http://localhost:5173",
            github_client_id=os.environ.get("GITHUB_CLIENT_ID") or None,
            github_client_secret=os.environ.get("GITHUB_CLIENT_SECRET") or None,
            github_redirect_url=(
                os.environ.get("GITHUB_REDIRECT_URL")
                or "http://localhost:8000/api/github/callback"
            ),
            github_scopes=_env_list("GITHUB_OAUTH_SCOPES", DEFAULT_SCOPES),
            github_token=os.environ.get("GITHUB_TOKEN") or None,
            default_repo_owner=os.environ.get("DEFAULT_REPO_OWNER") or None,
            history_limit=_env_int("HISTORY_LIMIT", 40, minimum=1),
            pending_ttl_seconds=_env_float("PENDING_TTL_SECONDS", 7 * 60),
            task_refs_ttl_seconds=_env_float("TASK_REFS_TTL_SECONDS", 7 * 60),
            classifier_timeout=_env_float("CLASSIFIER_TIMEOUT", 10.0),
            github_timeout=_env_float("GITHUB_TIMEOUT", 20.0),
            usage_store_path=os.environ.get("USAGE_STORE_PATH") or None,
        )
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY is not set; using the keyword intent classifier")
        return settings
