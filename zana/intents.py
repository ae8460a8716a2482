"""
Intent vocabulary: the classifier's output contract and the typed actions it resolves to.

Classifier output is loosely typed JSON. `ClassifiedIntent.from_payload` is the one
place it enters the core: unknown types become "unknown", numbers are coerced to
ints and anything unusable is dropped, so the rest of the code only ever sees
known keys with clean values.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Control-flow types produced by the classifier
CLARIFY = "clarify"
UNKNOWN = "unknown"
NOT_IMPLEMENTED = "not_implemented"

# Listing actions: no arguments, refresh the recent-PR cache
LIST_PRS_MINE = "list_prs_mine"
LIST_PRS_REVIEW = "list_prs_review"
LIST_INTENTS = {LIST_PRS_MINE: "mine", LIST_PRS_REVIEW: "review"}

# PR-targeted actions: need a repo and a PR number
GET_PR_COMMENTS = "get_pr_comments"
MERGE_PR = "merge_pr"
GET_PR_STATUS = "get_pr_status"
GET_PR_DIFF = "get_pr_diff"
ADD_PR_COMMENT = "add_pr_comment"
REPLY_TO_REVIEW = "reply_to_review"

KNOWN_TYPES = frozenset({
    CLARIFY, UNKNOWN, NOT_IMPLEMENTED,
    LIST_PRS_MINE, LIST_PRS_REVIEW,
    GET_PR_COMMENTS, MERGE_PR, GET_PR_STATUS, GET_PR_DIFF, ADD_PR_COMMENT, REPLY_TO_REVIEW,
})

MERGE_METHODS = ("merge", "squash", "rebase")

_NUMBER_RE = re.compile(r"\d+")
_REPO_PREFIX_RE = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/", re.IGNORECASE)


# ── Argument coercion ──────────────────────────────────────────────────────

def coerce_number(value: Any) -> int | None:
    """Accept 123, 123.0, "123", "#123" or "PR 123"; anything else is missing."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    if isinstance(value, str):
        m = _NUMBER_RE.search(value)
        if m:
            n = int(m.group())
            return n if n > 0 else None
    return None


def coerce_repo(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    repo = _REPO_PREFIX_RE.sub("", value.strip()).strip("/")
    if repo.endswith(".git"):
        repo = repo[:-4]
    return repo or None


def coerce_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def coerce_merge_method(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    method = value.strip().lower()
    if method not in MERGE_METHODS:
        logger.info("Unsupported merge method %r, falling back to merge", value)
        return None
    return method


_COERCERS = {
    "repo": coerce_repo,
    "pr_number": coerce_number,
    "review_id": coerce_number,
    "merge_method": coerce_merge_method,
    "body": coerce_text,
}


def normalize_args(raw: Any) -> dict[str, Any]:
    """Keep only known argument keys, with values coerced; drop the rest."""
    if not isinstance(raw, dict):
        return {}
    args = {}
    for key, coerce in _COERCERS.items():
        if key in raw:
            value = coerce(raw[key])
            if value is not None:
                args[key] = value
    return args


@dataclass
class ClassifiedIntent:
    type: str
    args: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    message: str | None = None

    @classmethod
    def from_payload(cls, data: Any) -> "ClassifiedIntent":
        if not isinstance(data, dict):
            return cls(type=UNKNOWN)

        intent_type = str(data.get("type") or "").strip().lower()
        if intent_type not in KNOWN_TYPES:
            if intent_type:
                logger.info("Classifier returned unsupported type %r", intent_type)
            intent_type = UNKNOWN

        try:
            confidence = float(data.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        confidence = max(0.0, min(1.0, confidence))

        return cls(
            type=intent_type,
            args=normalize_args(data.get("args")),
            confidence=confidence,
            message=coerce_text(data.get("message")),
        )


# ── Typed actions ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ListPullRequests:
    kind: str  # "mine" | "review"


@dataclass(frozen=True)
class PullRequestAction:
    repo: str
    pr_number: int

    @property
    def label(self) -> str:
        return f"{self.repo}#{self.pr_number}"


@dataclass(frozen=True)
class GetComments(PullRequestAction):
    pass


@dataclass(frozen=True)
class MergePullRequest(PullRequestAction):
    method: str = "merge"


@dataclass(frozen=True)
class GetStatus(PullRequestAction):
    pass


@dataclass(frozen=True)
class GetDiff(PullRequestAction):
    pass


@dataclass(frozen=True)
class AddComment(PullRequestAction):
    body: str


@dataclass(frozen=True)
class ReplyToReview(PullRequestAction):
    review_id: int
    body: str


@dataclass(frozen=True)
class SlotSpec:
    """How to collect and build one PR-targeted intent."""

    action: type
    ask_both: str
    extra: tuple[str, ...] = ()

    def build(self, args: dict[str, Any]) -> PullRequestAction:
        kwargs = {"repo": args["repo"], "pr_number": args["pr_number"]}
        for name in self.extra:
            kwargs[name] = args[name]
        if self.action is MergePullRequest:
            kwargs["method"] = args.get("merge_method") or "merge"
        return self.action(**kwargs)


PR_INTENTS: dict[str, SlotSpec] = {
    GET_PR_COMMENTS: SlotSpec(GetComments, "Which repository and PR number should I look at?"),
    MERGE_PR: SlotSpec(MergePullRequest, "Which repository and PR should I merge?"),
    GET_PR_STATUS: SlotSpec(GetStatus, "Which repository and PR should I check?"),
    GET_PR_DIFF: SlotSpec(GetDiff, "Which repository and PR do you want the changes for?"),
    ADD_PR_COMMENT: SlotSpec(
        AddComment, "Which repository and PR should I comment on?", extra=("body",)
    ),
    REPLY_TO_REVIEW: SlotSpec(
        ReplyToReview, "Which repository and PR is that review on?", extra=("review_id", "body")
    ),
}

EXTRA_SLOT_QUESTIONS = {
    "body": "What should the comment say?",
    "review_id": "Which review comment should I reply to?",
}
