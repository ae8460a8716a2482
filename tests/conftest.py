import pytest

from zana.dispatcher import ActionDispatcher
from zana.engine import IntentEngine
from zana.github_client import Comment, Diff, DiffFile, GitHubAPIError, PullRequest, Status
from zana.intents import ClassifiedIntent
from zana.session_store import SessionStore


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """Records every call; raises GitHubAPIError for all of them when `fail` is set."""

    def __init__(self):
        self.calls = []
        self.fail = False
        self.mine = [PullRequest(1, "Fix login", "octo", "open", "https://github.com/acme/widgets/pull/1", "acme/widgets")]
        self.review = [PullRequest(7, "Add cache", "hubot", "open", "https://github.com/acme/gears/pull/7", "acme/gears")]
        self.comments = [Comment(author="hubot", body="nit: rename", timestamp="2024-01-01T00:00:00Z", type="general")]
        self.status = Status(checks_passing=3, checks_total=4, approvals=["hubot"], mergeable=True)
        self.diff = Diff(files_changed=1, additions=10, deletions=2, files=[DiffFile("app.py", 10, 2)])
        self.username = "octo"

    def _record(self, name, *args):
        self.calls.append((name, *args))
        if self.fail:
            raise GitHubAPIError("HTTP 502: upstream connect error or disconnect/reset", status_code=502)

    def list_user_prs(self, token):
        self._record("list_user_prs", token)
        return list(self.mine)

    def list_prs_for_review(self, token):
        self._record("list_prs_for_review", token)
        return list(self.review)

    def get_pr_comments(self, token, repo, pr_number):
        self._record("get_pr_comments", token, repo, pr_number)
        return list(self.comments)

    def merge_pr(self, token, repo, pr_number, method):
        self._record("merge_pr", token, repo, pr_number, method)

    def add_comment(self, token, repo, pr_number, body):
        self._record("add_comment", token, repo, pr_number, body)

    def reply_to_review(self, token, repo, pr_number, review_id, body):
        self._record("reply_to_review", token, repo, pr_number, review_id, body)

    def get_pr_status(self, token, repo, pr_number):
        self._record("get_pr_status", token, repo, pr_number)
        return self.status

    def get_pr_diff(self, token, repo, pr_number):
        self._record("get_pr_diff", token, repo, pr_number)
        return self.diff

    def get_authenticated_user(self, token):
        self._record("get_authenticated_user", token)
        return self.username


class ScriptedClassifier:
    """Returns queued intents in order; queued exceptions are raised instead."""

    def __init__(self, *results):
        self.results = list(results)
        self.transcripts = []

    def classify(self, transcript):
        self.transcripts.append(list(transcript))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def intent(intent_type: str, message: str | None = None, **args) -> ClassifiedIntent:
    return ClassifiedIntent.from_payload(
        {"type": intent_type, "args": args, "confidence": 0.9, "message": message}
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(max_messages=40, pending_ttl=420, task_refs_ttl=420, clock=clock)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def engine(store, provider):
    return IntentEngine(
        store=store,
        classifier=ScriptedClassifier(),
        dispatcher=ActionDispatcher(provider),
        fallback_credential="tok",
    )
