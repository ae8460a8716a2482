"""
GitHub REST client: the action provider behind the dispatcher.

Every failure, whether transport or non-2xx, surfaces as `GitHubAPIError` so callers
only ever have to handle one exception type. Nothing here retries.
"""

import logging
import re
from dataclasses import dataclass, field

import httpx

from .errors import ProviderError

logger = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
ACCEPT = "application/vnd.github+json"
SEARCH_PAGE_SIZE = 20
DIFF_PAGE_SIZE = 100

_HTML_REPO_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/")


class GitHubAPIError(ProviderError):
    pass


@dataclass
class PullRequest:
    number: int
    title: str
    author: str
    status: str
    url: str
    repository: str


@dataclass
class Comment:
    author: str
    body: str
    timestamp: str
    type: str  # "inline" | "general"
    path: str | None = None
    line: int | None = None


@dataclass
class Status:
    checks_passing: int = 0
    checks_total: int = 0
    approvals: list[str] = field(default_factory=list)
    mergeable: bool = False
    has_conflicts: bool = False
    failing_checks: list[str] = field(default_factory=list)


@dataclass
class DiffFile:
    filename: str
    additions: int
    deletions: int
    patch: str | None = None


@dataclass
class Diff:
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0
    files: list[DiffFile] = field(default_factory=list)


def repo_from_html_url(url: str) -> str:
    """https://github.com/owner/repo/pull/123 -> owner/repo"""
    m = _HTML_REPO_RE.search(url or "")
    return f"{m.group(1)}/{m.group(2)}" if m else ""


def _split_repo(repo: str) -> tuple[str, str]:
    parts = (repo or "").split("/")
    if len(parts) != 2 or not all(parts):
        raise GitHubAPIError(f"invalid repo: {repo!r}")
    return parts[0], parts[1]


def _login(obj: dict | None) -> str:
    return (obj or {}).get("login") or ""


class GitHubClient:
    def __init__(
        self,
        base_url: str = API_BASE,
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": ACCEPT},
        )

    def close(self) -> None:
        self._client.close()

    # ── Helpers ────────────────────────────────────────────────────────────

    def _request(self, token: str, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"github api {method} {path} failed: {e}") from e
        if response.is_error:
            raise GitHubAPIError(
                f"github api {method} {path} failed: {response.text.strip()}",
                status_code=response.status_code,
            )
        return response

    def _get_json(self, token: str, path: str, **kwargs):
        response = self._request(token, "GET", path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise GitHubAPIError(f"github api GET {path} returned invalid JSON") from e

    def _search_prs(self, token: str, query: str) -> list[PullRequest]:
        data = self._get_json(
            token, "/search/issues", params={"q": query, "per_page": SEARCH_PAGE_SIZE}
        )
        prs = []
        for item in data.get("items") or []:
            url = item.get("html_url") or ""
            prs.append(PullRequest(
                number=item.get("number") or 0,
                title=item.get("title") or "",
                author=_login(item.get("user")),
                status="open",
                url=url,
                repository=repo_from_html_url(url),
            ))
        return prs

    # ── Operations ─────────────────────────────────────────────────────────

    def list_user_prs(self, token: str) -> list[PullRequest]:
        return self._search_prs(token, "type:pr state:open author:@me")

    def list_prs_for_review(self, token: str) -> list[PullRequest]:
        return self._search_prs(token, "type:pr state:open review-requested:@me")

    def get_pr_comments(self, token: str, repo: str, pr_number: int) -> list[Comment]:
        owner, name = _split_repo(repo)
        review = self._get_json(token, f"/repos/{owner}/{name}/pulls/{pr_number}/comments")
        issue = self._get_json(token, f"/repos/{owner}/{name}/issues/{pr_number}/comments")

        comments = [
            Comment(
                author=_login(c.get("user")),
                body=c.get("body") or "",
                timestamp=c.get("created_at") or "",
                type="inline",
                path=c.get("path"),
                line=c.get("line"),
            )
            for c in review
        ]
        comments.extend(
            Comment(
                author=_login(c.get("user")),
                body=c.get("body") or "",
                timestamp=c.get("created_at") or "",
                type="general",
            )
            for c in issue
        )
        return comments

    def merge_pr(self, token: str, repo: str, pr_number: int, method: str = "merge") -> None:
        owner, name = _split_repo(repo)
        self._request(
            token, "PUT", f"/repos/{owner}/{name}/pulls/{pr_number}/merge",
            json={"merge_method": method or "merge"},
        )

    def add_comment(self, token: str, repo: str, pr_number: int, body: str) -> None:
        owner, name = _split_repo(repo)
        self._request(
            token, "POST", f"/repos/{owner}/{name}/issues/{pr_number}/comments",
            json={"body": body},
        )

    def reply_to_review(
        self, token: str, repo: str, pr_number: int, review_id: int, body: str
    ) -> None:
        owner, name = _split_repo(repo)
        self._request(
            token, "POST",
            f"/repos/{owner}/{name}/pulls/{pr_number}/comments/{review_id}/replies",
            json={"body": body},
        )

    def get_pr_status(self, token: str, repo: str, pr_number: int) -> Status:
        owner, name = _split_repo(repo)
        pr = self._get_json(token, f"/repos/{owner}/{name}/pulls/{pr_number}")
        reviews = self._get_json(token, f"/repos/{owner}/{name}/pulls/{pr_number}/reviews")

        status = Status(
            approvals=[
                _login(r.get("user")) for r in reviews
                if (r.get("state") or "").upper() == "APPROVED"
            ],
            mergeable=pr.get("mergeable") is True,
            has_conflicts=pr.get("mergeable_state") == "dirty",
        )

        sha = (pr.get("head") or {}).get("sha")
        if sha:
            # Checks are informational; a PR without a status endpoint is still reportable.
            try:
                combined = self._get_json(token, f"/repos/{owner}/{name}/commits/{sha}/status")
            except GitHubAPIError as e:
                logger.warning("Commit status for %s#%d unavailable: %s", repo, pr_number, e)
            else:
                statuses = combined.get("statuses") or []
                status.checks_total = len(statuses)
                for s in statuses:
                    state = (s.get("state") or "").lower()
                    if state == "success":
                        status.checks_passing += 1
                    elif state in ("failure", "error"):
                        status.failing_checks.append(s.get("context") or "")
        return status

    def get_pr_diff(self, token: str, repo: str, pr_number: int) -> Diff:
        owner, name = _split_repo(repo)
        files = self._get_json(
            token, f"/repos/{owner}/{name}/pulls/{pr_number}/files",
            params={"per_page": DIFF_PAGE_SIZE},
        )
        diff = Diff()
        for f in files:
            df = DiffFile(
                filename=f.get("filename") or "",
                additions=f.get("additions") or 0,
                deletions=f.get("deletions") or 0,
                patch=f.get("patch"),
            )
            diff.files.append(df)
            diff.additions += df.additions
            diff.deletions += df.deletions
        diff.files_changed = len(diff.files)
        return diff

    def get_authenticated_user(self, token: str) -> str:
        data = self._get_json(token, "/user")
        login = (data.get("login") or "").strip()
        if not login:
            raise GitHubAPIError("github api /user returned no login")
        return login
