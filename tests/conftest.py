from __future__ import annotations

from collections.abc import Iterator
import logging

import pytest

from repokeeper.config import AppConfig, RepositoryRef, RunOptions
from repokeeper.label_rules import matches_pattern
from repokeeper.models import (
    CheckRunHandle,
    CheckRunOutput,
    CommitSnapshot,
    IssueComment,
    LabelAddResult,
    PullRequestSnapshot,
    ReviewCommentSnapshot,
    ReviewSnapshot,
    TimelineEvent,
)


class FakeGitHub:
    """In-memory stand-in for GitHubGateway that records every mutation."""

    def __init__(self) -> None:
        self.labels: dict[int, list[str]] = {}
        self.comments: dict[int, list[IssueComment]] = {}
        self.open_pull_requests: list[PullRequestSnapshot] = []
        self.pull_requests_by_branch: dict[str, PullRequestSnapshot] = {}
        self.commits: dict[int, tuple[CommitSnapshot, ...]] = {}
        self.review_comments: dict[int, tuple[ReviewCommentSnapshot, ...]] = {}
        self.reviews: dict[int, tuple[ReviewSnapshot, ...]] = {}
        self.timeline: dict[int, tuple[TimelineEvent, ...]] = {}
        self.check_runs: list[tuple[str, str, str]] = []
        self.check_run_updates: list[tuple[CheckRunHandle, str, str, CheckRunOutput]] = []
        self.created_comments: list[tuple[int, str]] = []
        self.deleted_comment_ids: list[int] = []
        self.add_label_calls: list[tuple[int, tuple[str, ...]]] = []
        self.fail_add_labels: Exception | None = None
        self.fail_list_comments: Exception | None = None
        self.fail_list_open_pull_requests: Exception | None = None
        self._next_comment_id = 1000

    def add_labels(self, target_number: int, names: tuple[str, ...]) -> LabelAddResult:
        self.add_label_calls.append((target_number, names))
        if self.fail_add_labels is not None:
            raise self.fail_add_labels
        current = self.labels.setdefault(target_number, [])
        added: list[str] = []
        skipped: list[str] = []
        for name in dict.fromkeys(names):
            if name in current:
                skipped.append(name)
            else:
                current.append(name)
                added.append(name)
        return LabelAddResult(added=tuple(added), skipped=tuple(skipped))

    def get_labels(self, target_number: int) -> tuple[str, ...]:
        return tuple(self.labels.get(target_number, ()))

    def has_labels(self, target_number: int, patterns: tuple[str, ...]) -> dict[str, bool]:
        current = self.get_labels(target_number)
        return {
            pattern: any(matches_pattern(label, pattern) for label in current)
            for pattern in patterns
        }

    def find_pull_request_by_branch(self, branch: str) -> PullRequestSnapshot | None:
        return self.pull_requests_by_branch.get(branch)

    def list_open_pull_requests(self) -> tuple[PullRequestSnapshot, ...]:
        if self.fail_list_open_pull_requests is not None:
            raise self.fail_list_open_pull_requests
        return tuple(self.open_pull_requests)

    def create_check_run(self, name: str, head_sha: str, details_url: str) -> CheckRunHandle:
        self.check_runs.append((name, head_sha, details_url))
        return CheckRunHandle(check_run_id=len(self.check_runs), name=name)

    def update_check_run(
        self,
        handle: CheckRunHandle,
        *,
        status: str,
        conclusion: str,
        output: CheckRunOutput,
    ) -> None:
        self.check_run_updates.append((handle, status, conclusion, output))

    def create_comment(self, target_number: int, body: str) -> None:
        self._next_comment_id += 1
        self.comments.setdefault(target_number, []).append(
            IssueComment(
                comment_id=self._next_comment_id,
                body=body,
                created_at="2026-01-01T00:00:00Z",
            )
        )
        self.created_comments.append((target_number, body))

    def list_comments(self, target_number: int) -> tuple[IssueComment, ...]:
        if self.fail_list_comments is not None:
            raise self.fail_list_comments
        return tuple(self.comments.get(target_number, ()))

    def cleanup_comments(self, target_number: int, marker: str) -> int:
        existing = self.comments.get(target_number, [])
        matching = [comment for comment in existing if marker in comment.body]
        self.comments[target_number] = [
            comment for comment in existing if marker not in comment.body
        ]
        self.deleted_comment_ids.extend(comment.comment_id for comment in matching)
        return len(matching)

    def list_commits(self, pr_number: int) -> tuple[CommitSnapshot, ...]:
        return self.commits.get(pr_number, ())

    def list_review_comments(self, pr_number: int) -> tuple[ReviewCommentSnapshot, ...]:
        return self.review_comments.get(pr_number, ())

    def list_reviews(self, pr_number: int) -> tuple[ReviewSnapshot, ...]:
        return self.reviews.get(pr_number, ())

    def list_timeline_events(self, target_number: int) -> tuple[TimelineEvent, ...]:
        return self.timeline.get(target_number, ())

    @property
    def conclusions(self) -> list[str]:
        return [conclusion for _, _, conclusion, _ in self.check_run_updates]


def make_pull_request(
    number: int = 7,
    *,
    body: str = "",
    draft: bool = False,
    state: str = "open",
    labels: tuple[str, ...] = (),
    head_ref: str = "feature/x",
    created_at: str = "2026-01-01T00:00:00Z",
    updated_at: str = "2026-01-01T00:00:00Z",
) -> PullRequestSnapshot:
    return PullRequestSnapshot(
        number=number,
        title=f"PR {number}",
        body=body,
        draft=draft,
        head_sha=f"sha{number}",
        head_ref=head_ref,
        state="closed" if state == "closed" else "open",
        created_at=created_at,
        updated_at=updated_at,
        labels=labels,
    )


def make_config(**option_overrides: object) -> AppConfig:
    options: dict[str, object] = {"github_token": "token", "settle_delay_seconds": 0}
    options.update(option_overrides)
    return AppConfig(
        repo=RepositoryRef(owner="acme", repo="widgets"),
        options=RunOptions(**options),  # type: ignore[arg-type]
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture(autouse=True)
def restore_repokeeper_logger_state() -> Iterator[None]:
    logger = logging.getLogger("repokeeper")
    original_handlers = list(logger.handlers)
    original_level = logger.level
    original_propagate = logger.propagate
    try:
        yield
    finally:
        for handler in logger.handlers:
            if handler not in original_handlers:
                handler.close()
        logger.handlers.clear()
        for handler in original_handlers:
            logger.addHandler(handler)
        logger.setLevel(original_level)
        logger.propagate = original_propagate
