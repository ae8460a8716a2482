from types import SimpleNamespace

import pytest
from openai import OpenAIError

from zana.classifier import (
    KeywordIntentClassifier,
    LLMIntentClassifier,
    build_classifier,
    build_transcript,
    extract_json,
)
from zana.config import Settings
from zana.errors import ClassificationError
from zana.session_store import Message
from zana.usage import tracker


class _FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30),
        )


def _client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.fixture(autouse=True)
def _reset_tracker():
    tracker.configure(None)
    tracker.reset()
    yield
    tracker.reset()


# ── JSON extraction ────────────────────────────────────────────────────────

def test_extract_json_plain():
    assert extract_json('{"type": "unknown"}') == {"type": "unknown"}


def test_extract_json_strips_fences():
    raw = '```json\n{"type": "merge_pr", "args": {"pr_number": 3}}\n```'
    assert extract_json(raw)["args"] == {"pr_number": 3}


def test_extract_json_recovers_object_from_chatter():
    raw = 'Sure! Here you go: {"type": "list_prs_mine", "args": {}} Hope that helps.'
    assert extract_json(raw)["type"] == "list_prs_mine"


@pytest.mark.parametrize("raw", ["no json here", "{broken", "[1, 2]"])
def test_extract_json_rejects_garbage(raw):
    with pytest.raises(ClassificationError):
        extract_json(raw)


def test_build_transcript_handles_empty_history():
    assert build_transcript([]) == "(no messages yet)"


def test_build_transcript_renders_roles():
    text = build_transcript([Message("user", "list my prs"), Message("assistant", "You have 2.")])
    assert text == "USER: list my prs\nASSISTANT: You have 2."


# ── LLM classifier ─────────────────────────────────────────────────────────

def test_llm_classifier_parses_and_tracks_usage():
    completions = _FakeCompletions(
        '{"type": "get_pr_comments", "args": {"pr_number": 123.0, "repo": "acme/widgets"}, "confidence": 0.92}'
    )
    classifier = LLMIntentClassifier(_client(completions), model="gpt-4o-mini", timeout=5)

    result = classifier.classify([Message("user", "comments on acme/widgets 123")])

    assert result.type == "get_pr_comments"
    assert result.args == {"repo": "acme/widgets", "pr_number": 123}
    assert result.confidence == pytest.approx(0.92)
    request = completions.requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert request["timeout"] == 5
    assert "USER: comments on acme/widgets 123" in request["messages"][1]["content"]
    assert tracker.summary()["by_purpose"]["intent_classification"]["input_tokens"] == 120


def test_llm_classifier_wraps_api_errors():
    classifier = LLMIntentClassifier(_client(_FakeCompletions(error=OpenAIError("boom"))))

    with pytest.raises(ClassificationError):
        classifier.classify([Message("user", "hi")])


def test_llm_classifier_rejects_malformed_output():
    classifier = LLMIntentClassifier(_client(_FakeCompletions("I think you want to merge")))

    with pytest.raises(ClassificationError):
        classifier.classify([Message("user", "merge it")])


def test_build_classifier_without_key_uses_keywords():
    assert isinstance(build_classifier(Settings(openai_api_key=None)), KeywordIntentClassifier)


# ── Keyword classifier ─────────────────────────────────────────────────────

@pytest.mark.parametrize("text,intent_type,args", [
    ("show me the comments on PR 123", "get_pr_comments", {"pr_number": 123}),
    ("it's in acme/widgets", "clarify", {"repo": "acme/widgets"}),
    ("list my prs", "list_prs_mine", {}),
    ("what do I need to review", "list_prs_review", {}),
    ("squash merge pr #12 in acme/widgets", "merge_pr",
     {"repo": "acme/widgets", "pr_number": 12, "merge_method": "squash"}),
    ("what's the status of PR 9", "get_pr_status", {"pr_number": 9}),
    ("show me the diff for acme/widgets pull request 4", "get_pr_diff",
     {"repo": "acme/widgets", "pr_number": 4}),
    ("add a comment to PR 5 saying looks good", "add_pr_comment",
     {"pr_number": 5, "body": "looks good"}),
    ("reply to review comment 55 on PR 9 saying fixed", "reply_to_review",
     {"pr_number": 9, "review_id": 55, "body": "fixed"}),
    ("reply to review comment 55 saying thanks", "reply_to_review",
     {"review_id": 55, "body": "thanks"}),
    ("reply to review comment #55 on PR 9 saying ok", "reply_to_review",
     {"pr_number": 9, "review_id": 55, "body": "ok"}),
    ("7", "clarify", {"pr_number": 7}),
    ("what's the weather like", "unknown", {}),
])
def test_keyword_classifier(text, intent_type, args):
    result = KeywordIntentClassifier().classify([Message("user", text)])

    assert result.type == intent_type
    assert result.args == args


def test_keyword_classifier_reads_latest_user_turn():
    transcript = [
        Message("user", "list my prs"),
        Message("assistant", "You have 1 GitHub pull request(s)."),
        Message("user", "merge PR 1"),
    ]
    assert KeywordIntentClassifier().classify(transcript).type == "merge_pr"


def test_keyword_classifier_tolerates_empty_transcript():
    assert KeywordIntentClassifier().classify([]).type == "unknown"


@pytest.mark.parametrize("question,answer,args", [
    ("What should the comment say?", "Merge this once CI is green", {"body": "Merge this once CI is green"}),
    ("Which review comment should I reply to?", "55", {"review_id": 55}),
    ("Which review comment should I reply to?", "comment 12", {"review_id": 12}),
])
def test_keyword_classifier_answers_follow_up_question(question, answer, args):
    transcript = [
        Message("user", "reply to review on PR 2 in acme/widgets"),
        Message("assistant", question),
        Message("user", answer),
    ]

    result = KeywordIntentClassifier().classify(transcript)

    assert result.type == "clarify"
    assert result.args == args


def test_keyword_classifier_ignores_older_questions():
    transcript = [
        Message("assistant", "What should the comment say?"),
        Message("user", "never mind"),
        Message("assistant", "I haven't learned that trick yet, but I'm practicing!"),
        Message("user", "merge PR 3"),
    ]

    assert KeywordIntentClassifier().classify(transcript).type == "merge_pr"
