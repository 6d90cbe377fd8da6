from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


PullRequestState = Literal["open", "closed"]
CheckRunConclusion = Literal["success", "failure"]


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    title: str
    body: str
    draft: bool
    head_sha: str
    head_ref: str
    state: PullRequestState
    created_at: str
    updated_at: str
    labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class IssueComment:
    comment_id: int
    body: str
    created_at: str


@dataclass(frozen=True)
class CommitSnapshot:
    sha: str
    committed_at: str | None


@dataclass(frozen=True)
class ReviewSnapshot:
    review_id: int
    submitted_at: str | None


@dataclass(frozen=True)
class ReviewCommentSnapshot:
    comment_id: int
    created_at: str


@dataclass(frozen=True)
class TimelineEvent:
    event: str
    created_at: str | None


@dataclass(frozen=True)
class LabelAddResult:
    added: tuple[str, ...]
    skipped: tuple[str, ...]


@dataclass(frozen=True)
class CheckRunHandle:
    check_run_id: int | None
    name: str


@dataclass(frozen=True)
class CheckRunOutput:
    title: str
    summary: str
    text: str


@dataclass(frozen=True)
class AutomationResult:
    """Accumulated outcome of one invocation.

    Handlers build their own result and the orchestrator merges them, so no
    handler mutates state owned by another.
    """

    labels_added: tuple[str, ...] = ()
    actions: tuple[str, ...] = ()
    features_enabled: tuple[str, ...] = ()

    def merge(self, other: AutomationResult) -> AutomationResult:
        features = list(self.features_enabled)
        for feature in other.features_enabled:
            if feature not in features:
                features.append(feature)
        return AutomationResult(
            labels_added=self.labels_added + other.labels_added,
            actions=self.actions + other.actions,
            features_enabled=tuple(features),
        )

    @property
    def summary(self) -> str:
        if not self.actions:
            return "No actions needed"
        return f"Completed {len(self.actions)} action(s): {'; '.join(self.actions)}"

    def to_dict(self) -> dict[str, object]:
        return {
            "labels_added": list(self.labels_added),
            "actions": list(self.actions),
            "features_enabled": list(self.features_enabled),
            "summary": self.summary,
        }
