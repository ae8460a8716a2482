"""
Intent resolution engine: decides, once per turn, whether to act, ask, or decline.

A turn runs under the session's lock, so reading the pending intent, deciding
and writing it back cannot interleave with another request for the same session.
State only changes after the outcome is known: a provider call that fails (or never
returns) leaves the pending intent and the recent-PR cache exactly as they were.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

from .dispatcher import ERROR, ActionDispatcher
from .errors import ClassificationError
from .intents import (
    CLARIFY,
    EXTRA_SLOT_QUESTIONS,
    LIST_INTENTS,
    NOT_IMPLEMENTED,
    PR_INTENTS,
    ClassifiedIntent,
    ListPullRequests,
    SlotSpec,
)
from .resolver import resolve_repository
from .session_store import SessionStore
from .slots import merge_pending

logger = logging.getLogger(__name__)

REQUIRE_AUTHORIZATION = "require_authorization"

AUTH_REQUIRED_MESSAGE = (
    "Please connect your GitHub account to use this application. This service helps you "
    "manage GitHub pull requests - fetching, listing, merging, and viewing PR comments."
)
TROUBLE_MESSAGE = "I'm having trouble understanding your request right now. Please try again."
DEFAULT_CLARIFY_MESSAGE = (
    "Mind giving me a tiny bit more detail? I promise I listen better than your rubber duck."
)
DEFAULT_NOT_IMPLEMENTED_MESSAGE = "I haven't learned that trick yet, but I'm practicing!"

_KNOWN_ARG_KEYS = ("repo", "pr_number", "review_id")


@dataclass
class TurnResult:
    reply: str
    intent_type: str
    payload: dict[str, Any] | None = None
    # True only when the turn could not be understood at all (classifier failure)
    failed: bool = False


def _known_args(args: dict[str, Any]) -> dict[str, Any]:
    return {k: args[k] for k in _KNOWN_ARG_KEYS if k in args}


def missing_slot_question(spec: SlotSpec, args: dict[str, Any]) -> str | None:
    """The one question that collects what is still missing, or None when complete."""
    repo, pr_number = args.get("repo"), args.get("pr_number")
    if not repo and pr_number is None:
        return spec.ask_both
    if not repo:
        return f"Which repository is PR {pr_number} in?"
    if pr_number is None:
        return f"Which PR number in {repo}?"
    for name in spec.extra:
        if args.get(name) is None:
            return EXTRA_SLOT_QUESTIONS[name]
    return None


class IntentEngine:
    def __init__(
        self,
        store: SessionStore,
        classifier,
        dispatcher: ActionDispatcher,
        default_repo_owner: str | None = None,
        fallback_credential: str | None = None,
    ):
        self.store = store
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.default_repo_owner = default_repo_owner
        self.fallback_credential = fallback_credential

    def credential(self, session_id: str) -> str | None:
        return self.store.get_credential(session_id) or self.fallback_credential

    # ── Turn entry point ───────────────────────────────────────────────────

    def handle_turn(self, session_id: str, utterance: str, system: str | None = None) -> TurnResult:
        t0 = time.perf_counter()
        with self.store.session_lock(session_id):
            if system:
                self.store.append_message(session_id, "system", system)
            self.store.append_message(session_id, "user", utterance)

            token = self.credential(session_id)
            if not token:
                result = TurnResult(AUTH_REQUIRED_MESSAGE, REQUIRE_AUTHORIZATION)
            else:
                try:
                    classified = self.classifier.classify(self.store.get_history(session_id))
                except ClassificationError as e:
                    logger.warning("session=%s classification failed: %s", session_id[:8], e)
                    return TurnResult(TROUBLE_MESSAGE, ERROR, failed=True)
                result = self.resolve(session_id, classified, token)

            self.store.append_message(session_id, "assistant", result.reply)

        logger.info(
            "session=%s intent=%s total=%.0fms",
            session_id[:8], result.intent_type, (time.perf_counter() - t0) * 1000,
        )
        return result

    # ── State machine ──────────────────────────────────────────────────────

    def resolve(
        self, session_id: str, classified: ClassifiedIntent, credential: str | None
    ) -> TurnResult:
        if not credential:
            return TurnResult(AUTH_REQUIRED_MESSAGE, REQUIRE_AUTHORIZATION)

        with self.store.session_lock(session_id):
            pending = self.store.get_pending_intent(session_id)
            intent_type, args = merge_pending(classified.type, classified.args, pending)
            if pending is not None and intent_type != pending.type:
                logger.info(
                    "session=%s topic change %s -> %s, dropping pending args",
                    session_id[:8], pending.type, intent_type,
                )

            if intent_type in LIST_INTENTS:
                return self._list(session_id, intent_type, credential)
            if intent_type in PR_INTENTS:
                return self._pr_action(session_id, intent_type, args, credential)
            if intent_type == CLARIFY:
                return TurnResult(
                    classified.message or DEFAULT_CLARIFY_MESSAGE, CLARIFY, _known_args(args)
                )

            # unknown / not_implemented: a stale partial request must not outlive this
            self.store.clear_pending_intent(session_id)
            return TurnResult(classified.message or DEFAULT_NOT_IMPLEMENTED_MESSAGE, NOT_IMPLEMENTED)

    def _list(self, session_id: str, intent_type: str, credential: str) -> TurnResult:
        outcome = self.dispatcher.dispatch(credential, ListPullRequests(kind=LIST_INTENTS[intent_type]))
        if outcome.ok:
            self.store.set_task_refs(session_id, outcome.task_refs or [])
            self.store.clear_pending_intent(session_id)
        return TurnResult(outcome.reply, outcome.intent_type, outcome.payload)

    def _pr_action(
        self, session_id: str, intent_type: str, args: dict[str, Any], credential: str
    ) -> TurnResult:
        spec = PR_INTENTS[intent_type]

        repo = self._qualify_repo(session_id, args.get("repo"))
        if repo:
            args["repo"] = repo
        pr_number = args.get("pr_number")

        if not repo and pr_number is not None:
            resolution = resolve_repository(None, pr_number, self.store.get_task_refs(session_id))
            if resolution.ambiguous:
                self.store.set_pending_intent(session_id, intent_type, args)
                return TurnResult(
                    f"Did you mean PR {pr_number} in {' or '.join(resolution.candidates)}?",
                    CLARIFY,
                    {"pr_number": pr_number, "candidates": list(resolution.candidates)},
                )
            if resolution.resolved:
                logger.info(
                    "session=%s resolved PR %d to %s from recent listing",
                    session_id[:8], pr_number, resolution.repo,
                )
                args["repo"] = resolution.repo

        question = missing_slot_question(spec, args)
        if question:
            self.store.set_pending_intent(session_id, intent_type, args)
            return TurnResult(question, CLARIFY, _known_args(args))

        outcome = self.dispatcher.dispatch(credential, spec.build(args))
        if outcome.ok:
            self.store.clear_pending_intent(session_id)
        return TurnResult(outcome.reply, outcome.intent_type, outcome.payload)

    def _qualify_repo(self, session_id: str, repo: str | None) -> str | None:
        """Turn a bare repo name into owner/name using the session's username."""
        if not repo or "/" in repo:
            return repo
        owner = self.store.get_username(session_id) or self.default_repo_owner
        return f"{owner}/{repo}" if owner else repo
