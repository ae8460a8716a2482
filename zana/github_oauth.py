"""GitHub OAuth web flow: build the authorize URL and exchange the callback code."""

import logging
from urllib.parse import urlencode

import httpx

from .config import Settings
from .errors import OAuthError

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"


def authorize_url(settings: Settings, state: str) -> str:
    params = {
        "client_id": settings.github_client_id,
        "redirect_uri": settings.github_redirect_url,
        "scope": " ".join(settings.github_scopes),
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def exchange_code(
    settings: Settings, code: str, transport: httpx.BaseTransport | None = None
) -> str:
    """Trade an authorization code for an access token."""
    try:
        with httpx.Client(timeout=settings.github_timeout, transport=transport) as client:
            response = client.post(
                TOKEN_URL,
                headers={"Accept": "application/json"},
                data={
                    "client_id": settings.github_client_id,
                    "client_secret": settings.github_client_secret,
                    "code": code,
                    "redirect_uri": settings.github_redirect_url,
                },
            )
    except httpx.HTTPError as e:
        raise OAuthError(f"token exchange request failed: {e}") from e

    if response.is_error:
        raise OAuthError(f"token exchange failed with HTTP {response.status_code}")
    try:
        data = response.json()
    except ValueError as e:
        raise OAuthError("token exchange returned invalid JSON") from e

    token = data.get("access_token")
    if not token:
        # GitHub reports bad codes with 200 + {"error": ...}
        raise OAuthError(f"token exchange rejected: {data.get('error') or 'no access_token'}")
    return token
