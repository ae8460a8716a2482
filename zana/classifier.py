"""
Intent classifier: turns the conversation transcript into a structured intent.

Uses OpenAI gpt-4o-mini when an API key is configured, with a keyword/regex
classifier when it is not. Once the LLM classifier is in use, its failures are
reported as `ClassificationError` rather than silently downgraded.
"""

import json
import logging
import re

from openai import OpenAI, OpenAIError

from .config import Settings
from .errors import ClassificationError
from .intents import (
    ADD_PR_COMMENT,
    CLARIFY,
    EXTRA_SLOT_QUESTIONS,
    GET_PR_COMMENTS,
    GET_PR_DIFF,
    GET_PR_STATUS,
    LIST_PRS_MINE,
    LIST_PRS_REVIEW,
    MERGE_PR,
    REPLY_TO_REVIEW,
    UNKNOWN,
    ClassifiedIntent,
)
from .session_store import Message
from .usage import tracker

logger = logging.getLogger(__name__)

MODEL = "gpt-4o-mini"
TEMPERATURE = 0.1
MAX_TOKENS = 300

SYSTEM_PROMPT = """\
You are the intent classifier of a voice assistant that manages GitHub pull requests.
Given the conversation transcript, classify what the user wants right now and extract
the arguments for it.

Respond with ONLY a JSON object, no markdown fences, no explanation:
{"type": "<function name or control type>", "args": {...}, "confidence": 0.0-1.0, "message": "optional"}

Functions:
- list_prs_mine: list the user's own open pull requests. args: {}
- list_prs_review: list pull requests waiting for the user's review. args: {}
- get_pr_comments: read the comments on a pull request. args: {"repo": "owner/name", "pr_number": int}
- merge_pr: merge a pull request. args: {"repo", "pr_number", "merge_method": "merge" | "squash" | "rebase"}
- get_pr_status: checks, approvals and mergeability of a pull request. args: {"repo", "pr_number"}
- get_pr_diff: the files and lines changed by a pull request. args: {"repo", "pr_number"}
- add_pr_comment: post a comment on a pull request. args: {"repo", "pr_number", "body": str}
- reply_to_review: reply to a review comment. args: {"repo", "pr_number", "review_id": int, "body": str}

Control types:
- clarify: the user is answering an earlier question, or you need more detail. Put any
  arguments the user just gave in args and, if you need to ask something, a short
  friendly question in message.
- not_implemented: a GitHub request none of the functions can do. message: a playful,
  friendly decline.
- unknown: anything else. message: a playful, friendly reply.

Guidelines:
- Use the transcript to fill arguments mentioned in earlier turns. Do not ask again for
  details clearly present in earlier turns.
- Only include arguments the user actually stated; never invent a repo or PR number.
- repo is "owner/name" when the owner is known, otherwise just the name.
- If several repositories share the same PR number, use clarify with a targeted choice.
"""


# ── LLM classifier ──────────────────────────────────────────────────────────

def build_transcript(messages: list[Message]) -> str:
    """Render the history as compact `ROLE: content` lines."""
    lines = []
    for m in messages:
        role = (m.role or "user").upper()
        content = re.sub(r"\n{2,}", "\n", m.content.strip())
        lines.append(f"{role}: {content}")
    return "\n".join(lines) if lines else "(no messages yet)"


def extract_json(raw: str) -> dict:
    """Parse the model's reply, tolerating markdown fences and chatter around the object."""
    text = raw.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\n?", "", text)
        text = re.sub(r"\n?```$", "", text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        first, last = text.find("{"), text.rfind("}")
        if first < 0 or last <= first:
            raise ClassificationError(f"classifier returned no JSON object: {raw[:200]!r}")
        try:
            data = json.loads(text[first:last + 1])
        except json.JSONDecodeError as e:
            raise ClassificationError(f"classifier returned malformed JSON: {e}") from e
    if not isinstance(data, dict):
        raise ClassificationError("classifier returned a non-object JSON value")
    return data


class LLMIntentClassifier:
    def __init__(
        self,
        client: OpenAI,
        model: str = MODEL,
        timeout: float = 10.0,
        temperature: float = TEMPERATURE,
        max_tokens: int = MAX_TOKENS,
    ):
        self.client = client
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    def classify(self, transcript: list[Message]) -> ClassifiedIntent:
        user_msg = (
            "Transcript (role: content):\n"
            f"{build_transcript(transcript)}\n\n"
            "Output ONLY the JSON object."
        )
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_msg},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=self.timeout,
            )
        except OpenAIError as e:
            raise ClassificationError(f"intent classification request failed: {e}") from e

        if not response.choices:
            raise ClassificationError("intent classification returned no choices")

        usage = response.usage
        if usage is not None:
            tracker.log(
                model=self.model,
                purpose="intent_classification",
                input_tokens=usage.prompt_tokens,
                output_tokens=usage.completion_tokens,
            )

        raw_text = response.choices[0].message.content or ""
        intent = ClassifiedIntent.from_payload(extract_json(raw_text))
        logger.debug("Classified %s args=%s confidence=%.2f", intent.type, intent.args, intent.confidence)
        return intent


# ── Keyword fallback ────────────────────────────────────────────────────────

_PR_NUMBER_RE = re.compile(r"(?:\bpr\b|\bpull request\b|#)\s*(?:number\s*)?#?\s*(\d+)", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"\b(\d+)\b")
_REPO_RE = re.compile(r"\b([A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+)\b")
_REVIEW_ID_RE = re.compile(r"\b(?:review|comment)\s*(?:id\s*)?#?\s*(\d+)", re.IGNORECASE)
_BODY_RE = re.compile(r"\b(?:saying|that says|with the message|with)\s*[:\"']?\s*(.+?)[\"']?\s*$", re.IGNORECASE)

_REPLY_RE = re.compile(r"\breply\b.*\breview", re.IGNORECASE)
_ADD_COMMENT_RE = re.compile(r"\b(add|leave|post|write)\b.*\bcomment", re.IGNORECASE)
_COMMENTS_RE = re.compile(r"\bcomments?\b|\bfeedback\b", re.IGNORECASE)
_MERGE_RE = re.compile(r"\bmerge\b", re.IGNORECASE)
_STATUS_RE = re.compile(r"\b(status|checks?|ci|mergeable|approv\w*)\b", re.IGNORECASE)
_DIFF_RE = re.compile(r"\b(diff|changes|changed files?)\b", re.IGNORECASE)

_REVIEW_PHRASES = (
    "prs to review", "pull requests to review", "need to review", "requested to review",
    "what do i need to review", "review requests", "assigned for review", "requested reviewer",
    "show reviews", "list reviews",
)
_MINE_PHRASES = (
    "my prs", "my pr", "my pull requests", "list my prs", "list my pull requests",
    "show my prs", "show my pull requests", "what am i working on", "i'm working on",
    "i am working on", "my open prs", "my open pull requests",
)


def _last_user_message(transcript: list[Message]) -> str:
    for m in reversed(transcript):
        if m.role == "user":
            return m.content.strip()
    return ""


def _question_before_last_user(transcript: list[Message]) -> str:
    """The assistant line the latest user message is answering, if any."""
    seen_user = False
    for m in reversed(transcript):
        if m.role == "user":
            if seen_user:
                return ""
            seen_user = True
        elif m.role == "assistant" and seen_user:
            return m.content.strip()
    return ""


def _extract_args(text: str, *exclude: re.Pattern) -> dict:
    args = {}
    repo = _REPO_RE.search(text)
    if repo:
        args["repo"] = repo.group(1)
    # Numbers claimed by another slot never count as the PR number
    scrubbed = text
    for pattern in exclude:
        scrubbed = pattern.sub(" ", scrubbed)
    number = _PR_NUMBER_RE.search(scrubbed)
    if number:
        args["pr_number"] = number.group(1)
    else:
        # A bare number only counts when it is not part of the repo name
        bare = _BARE_NUMBER_RE.search(_REPO_RE.sub(" ", scrubbed))
        if bare:
            args["pr_number"] = bare.group(1)
    return args


class KeywordIntentClassifier:
    """Regex heuristics for when no OpenAI key is configured."""

    def classify(self, transcript: list[Message]) -> ClassifiedIntent:
        text = _last_user_message(transcript)
        m = text.lower()
        if not m:
            return ClassifiedIntent(type=UNKNOWN)

        # Answers to a follow-up question carry no keywords of their own
        question = _question_before_last_user(transcript)
        if question == EXTRA_SLOT_QUESTIONS["body"]:
            return self._intent(CLARIFY, {"body": text})
        if question == EXTRA_SLOT_QUESTIONS["review_id"]:
            review = _REVIEW_ID_RE.search(text) or _BARE_NUMBER_RE.search(text)
            if review:
                return self._intent(CLARIFY, {"review_id": review.group(1)})

        args = _extract_args(text)

        if _REPLY_RE.search(m):
            args = _extract_args(text, _REVIEW_ID_RE)
            review = _REVIEW_ID_RE.search(text)
            if review:
                args["review_id"] = review.group(1)
            body = _BODY_RE.search(text)
            if body:
                args["body"] = body.group(1)
            return self._intent(REPLY_TO_REVIEW, args)

        if _ADD_COMMENT_RE.search(m):
            body = _BODY_RE.search(text)
            if body:
                args["body"] = body.group(1)
            return self._intent(ADD_PR_COMMENT, args)

        if _COMMENTS_RE.search(m):
            return self._intent(GET_PR_COMMENTS, args)

        if _MERGE_RE.search(m):
            for method in ("squash", "rebase"):
                if method in m:
                    args["merge_method"] = method
            return self._intent(MERGE_PR, args)

        if _STATUS_RE.search(m):
            return self._intent(GET_PR_STATUS, args)

        if _DIFF_RE.search(m):
            return self._intent(GET_PR_DIFF, args)

        if any(p in m for p in _REVIEW_PHRASES) or ("review" in m and "pr" in m):
            return self._intent(LIST_PRS_REVIEW, {})

        if any(p in m for p in _MINE_PHRASES):
            return self._intent(LIST_PRS_MINE, {})

        if args:
            # Looks like an answer to an earlier question
            return self._intent(CLARIFY, args, confidence=0.3)

        return ClassifiedIntent(type=UNKNOWN)

    @staticmethod
    def _intent(intent_type: str, args: dict, confidence: float = 0.6) -> ClassifiedIntent:
        return ClassifiedIntent.from_payload(
            {"type": intent_type, "args": args, "confidence": confidence}
        )


def build_classifier(settings: Settings):
    """LLM classifier when OpenAI is configured, keyword fallback otherwise."""
    if settings.openai_api_key:
        return LLMIntentClassifier(
            OpenAI(api_key=settings.openai_api_key),
            model=settings.openai_model,
            timeout=settings.classifier_timeout,
        )
    logger.info("Using keyword intent classifier (OpenAI API key not configured)")
    return KeywordIntentClassifier()
