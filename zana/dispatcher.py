"""
Action dispatcher: run one resolved action against the provider and phrase the outcome.

Each dispatch makes exactly one provider call and never retries. Provider errors are
logged with their raw text but the user only ever hears a plain-language explanation.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any

from .errors import ProviderError
from .github_client import PullRequest
from .intents import (
    AddComment,
    GetComments,
    GetDiff,
    GetStatus,
    ListPullRequests,
    MergePullRequest,
    ReplyToReview,
)
from .session_store import PRRef

logger = logging.getLogger(__name__)

ERROR = "error"
MAX_SPOKEN_PRS = 5

FAILURE_MESSAGES = {
    ListPullRequests: (
        "I couldn't fetch your pull requests from GitHub right now. This might be a "
        "temporary issue with GitHub's API. Try again in a moment?"
    ),
    GetComments: (
        "I couldn't retrieve the PR comments from GitHub. This could be a temporary GitHub "
        "API issue or the PR might not exist. Mind trying again?"
    ),
    MergePullRequest: (
        "I couldn't merge the pull request on GitHub. This could be due to failing checks, "
        "merge conflicts, or insufficient permissions. Would you like me to check the PR status?"
    ),
    GetStatus: "I couldn't check the status of that pull request on GitHub. Mind trying again?",
    GetDiff: "I couldn't load the changes for that pull request from GitHub. Mind trying again?",
    AddComment: "I couldn't post your comment on GitHub. Want me to try again?",
    ReplyToReview: "I couldn't post your reply to that review on GitHub. Want me to try again?",
}


@dataclass
class DispatchOutcome:
    ok: bool
    reply: str
    intent_type: str
    payload: dict[str, Any] | None = None
    # Set only by listing actions; the caller replaces the session's cache with it
    task_refs: list[PRRef] | None = None


def format_pr_list_reply(kind: str, prs: list[PullRequest]) -> str:
    if not prs:
        if kind == "review":
            return "You have no GitHub pull requests to review at the moment."
        return "You have no open pull requests on GitHub."

    if kind == "review":
        head = f"You have {len(prs)} GitHub pull request(s) to review. "
    else:
        head = f"You have {len(prs)} GitHub pull request(s). "
    items = "; ".join(f"#{p.number} {p.title} ({p.repository})" for p in prs[:MAX_SPOKEN_PRS])
    reply = head + items
    if len(prs) > MAX_SPOKEN_PRS:
        reply += f"; and {len(prs) - MAX_SPOKEN_PRS} more."
    return reply


def _pr_payload(action, **extra) -> dict[str, Any]:
    return {"repo": action.repo, "pr_number": action.pr_number, **extra}


class ActionDispatcher:
    def __init__(self, provider):
        self.provider = provider

    def dispatch(self, token: str, action) -> DispatchOutcome:
        try:
            return self._run(token, action)
        except ProviderError as e:
            logger.warning("%s failed: %s", type(action).__name__, e)
            return DispatchOutcome(
                ok=False, reply=FAILURE_MESSAGES[type(action)], intent_type=ERROR
            )

    def _run(self, token: str, action) -> DispatchOutcome:
        p = self.provider

        if isinstance(action, ListPullRequests):
            if action.kind == "review":
                prs = p.list_prs_for_review(token)
            else:
                prs = p.list_user_prs(token)
            return DispatchOutcome(
                ok=True,
                reply=format_pr_list_reply(action.kind, prs),
                intent_type="show_prs",
                payload={"kind": action.kind, "prs": [asdict(pr) for pr in prs]},
                task_refs=[PRRef(number=pr.number, repository=pr.repository) for pr in prs],
            )

        if isinstance(action, GetComments):
            comments = p.get_pr_comments(token, action.repo, action.pr_number)
            return DispatchOutcome(
                ok=True,
                reply=f"I found {len(comments)} comment(s) on GitHub pull request {action.label}.",
                intent_type="show_comments",
                payload=_pr_payload(action, comments=[asdict(c) for c in comments]),
            )

        if isinstance(action, MergePullRequest):
            p.merge_pr(token, action.repo, action.pr_number, action.method)
            return DispatchOutcome(
                ok=True,
                reply=(
                    f"Successfully merged GitHub pull request {action.label} "
                    f"using {action.method} method."
                ),
                intent_type="merged",
                payload=_pr_payload(action, method=action.method),
            )

        if isinstance(action, GetStatus):
            status = p.get_pr_status(token, action.repo, action.pr_number)
            verdict = "can be merged" if status.mergeable else "can't be merged yet"
            reply = (
                f"Pull request {action.label} has {status.checks_passing} of "
                f"{status.checks_total} checks passing and {len(status.approvals)} "
                f"approval(s). It {verdict}."
            )
            if status.has_conflicts:
                reply += " It has merge conflicts."
            return DispatchOutcome(
                ok=True,
                reply=reply,
                intent_type="show_status",
                payload=_pr_payload(action, status=asdict(status)),
            )

        if isinstance(action, GetDiff):
            diff = p.get_pr_diff(token, action.repo, action.pr_number)
            return DispatchOutcome(
                ok=True,
                reply=(
                    f"Pull request {action.label} changes {diff.files_changed} file(s), with "
                    f"{diff.additions} addition(s) and {diff.deletions} deletion(s)."
                ),
                intent_type="show_diff",
                payload=_pr_payload(action, diff=asdict(diff)),
            )

        if isinstance(action, AddComment):
            p.add_comment(token, action.repo, action.pr_number, action.body)
            return DispatchOutcome(
                ok=True,
                reply=f"Done, I added your comment to pull request {action.label}.",
                intent_type="comment_added",
                payload=_pr_payload(action, body=action.body),
            )

        if isinstance(action, ReplyToReview):
            p.reply_to_review(token, action.repo, action.pr_number, action.review_id, action.body)
            return DispatchOutcome(
                ok=True,
                reply=f"Done, I replied to review comment {action.review_id} on {action.label}.",
                intent_type="review_replied",
                payload=_pr_payload(action, review_id=action.review_id, body=action.body),
            )

        raise TypeError(f"unsupported action: {action!r}")
