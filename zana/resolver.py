"""Resolve a bare PR number to a repository using the PRs a session last listed."""

from dataclasses import dataclass

from .session_store import PRRef

RESOLVED = "resolved"
AMBIGUOUS = "ambiguous"
UNMATCHED = "unmatched"


@dataclass(frozen=True)
class RepoResolution:
    status: str
    repo: str | None = None
    candidates: tuple[str, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.status == RESOLVED

    @property
    def ambiguous(self) -> bool:
        return self.status == AMBIGUOUS


def resolve_repository(
    repo: str | None, pr_number: int | None, refs: list[PRRef] | None
) -> RepoResolution:
    """
    An explicit repo always wins. Otherwise look the number up in `refs`:
    one distinct repository resolves it, several make it ambiguous, none
    leaves it unmatched (the caller has to ask).
    """
    if repo:
        return RepoResolution(RESOLVED, repo=repo, candidates=(repo,))
    if pr_number is None or not refs:
        return RepoResolution(UNMATCHED)

    matches: list[str] = []
    for ref in refs:
        if ref.number == pr_number and ref.repository not in matches:
            matches.append(ref.repository)

    if not matches:
        return RepoResolution(UNMATCHED)
    if len(matches) == 1:
        return RepoResolution(RESOLVED, repo=matches[0], candidates=(matches[0],))
    return RepoResolution(AMBIGUOUS, candidates=tuple(matches))
