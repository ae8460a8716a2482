#!/usr/bin/env python3
"""
Conversation demo: talk to the intent engine from the terminal.

Needs GITHUB_TOKEN for real PR actions; uses OpenAI for classification when
OPENAI_API_KEY is set, the keyword classifier otherwise.

Usage:
    python demo.py              # interactive REPL
    python demo.py --scripted   # run a predefined conversation
"""

import json
import sys

from dotenv import load_dotenv

load_dotenv()

from zana.classifier import build_classifier
from zana.config import Settings
from zana.dispatcher import ActionDispatcher
from zana.engine import IntentEngine
from zana.github_client import GitHubClient
from zana.session_store import SessionStore
from zana.usage import tracker


def _turn(engine: IntentEngine, session_id: str, utterance: str, verbose: bool = False):
    result = engine.handle_turn(session_id, utterance)
    print(f"  zana> {result.reply}")
    print(f"        [{result.intent_type}]")
    if verbose and result.payload:
        print("        " + json.dumps(result.payload, indent=2).replace("\n", "\n        "))
    pending = engine.store.get_pending_intent(session_id)
    if pending:
        print(f"        pending: {pending.type} {pending.args}")


def run_interactive(engine: IntentEngine, session_id: str):
    print("\nAsk about your pull requests (or 'quit' to exit, ':v' toggles payloads):\n")
    verbose = False

    while True:
        try:
            utterance = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not utterance:
            continue
        if utterance.lower() in ("quit", "exit", "q"):
            break
        if utterance == ":v":
            verbose = not verbose
            continue

        _turn(engine, session_id, utterance, verbose)
        print()


SCRIPTED_UTTERANCES = [
    "what pull requests do I need to review",
    "show me the comments on PR 1",
    "what's the status of that one",
    "list my prs",
    "what do you think about the weather",
]


def run_scripted(engine: IntentEngine, session_id: str):
    for i, utterance in enumerate(SCRIPTED_UTTERANCES, 1):
        print(f"\n{'═' * 60}")
        print(f"  Turn {i}: \"{utterance}\"")
        print(f"{'═' * 60}")

        _turn(engine, session_id, utterance)


def main():
    scripted = "--scripted" in sys.argv

    settings = Settings.from_env()
    tracker.configure(settings.usage_store_path)
    github = GitHubClient(timeout=settings.github_timeout)
    store = SessionStore(
        max_messages=settings.history_limit,
        pending_ttl=settings.pending_ttl_seconds,
        task_refs_ttl=settings.task_refs_ttl_seconds,
    )
    engine = IntentEngine(
        store=store,
        classifier=build_classifier(settings),
        dispatcher=ActionDispatcher(github),
        default_repo_owner=settings.default_repo_owner,
        fallback_credential=settings.github_token,
    )
    session_id = store.new_session_id()
    print(f"Session {session_id[:8]}, classifier: {type(engine.classifier).__name__}")

    try:
        if scripted:
            run_scripted(engine, session_id)
        else:
            run_interactive(engine, session_id)
    finally:
        github.close()

    s = tracker.summary()
    if s["total_calls"]:
        tracker.write_report()
        print(f"\nToken usage: {s['total_calls']} API calls, ${s['total_cost_usd']:.6f} total cost")
        print("Report written to USAGE.md")


if __name__ == "__main__":
    main()
