from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from repokeeper.github_gateway import GitHubGateway
from repokeeper.label_rules import STALE_LABEL, is_stale, latest_activity
from repokeeper.models import AutomationResult, IssueComment, PullRequestSnapshot
from repokeeper.observability import log_event, log_warning_event


LOGGER = logging.getLogger("repokeeper.stale_detection")
_DEFAULT_STALE_DAYS = 1
_LABEL_EVENTS = frozenset({"labeled", "unlabeled"})


@dataclass(frozen=True)
class StaleScanReport:
    result: AutomationResult
    processed: int
    stale_found: int


class StaleDetection:
    def __init__(
        self,
        *,
        github: GitHubGateway,
        stale_days: int | None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._github = github
        self._stale_days = stale_days or _DEFAULT_STALE_DAYS
        self._now = now or _utc_now

    def execute(self) -> StaleScanReport:
        now = self._now()
        pull_requests = self._github.list_open_pull_requests()
        log_event(
            LOGGER,
            "stale_scan_started",
            stale_days=self._stale_days,
            open_pr_count=len(pull_requests),
        )

        labels_added: list[str] = []
        actions: list[str] = []
        for pull_request in pull_requests:
            try:
                outcome = self._process(pull_request, now)
            except Exception as exc:  # noqa: BLE001
                log_warning_event(
                    LOGGER,
                    "stale_scan_pr_failed",
                    pr_number=pull_request.number,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            if outcome is not None:
                added, action = outcome
                labels_added.extend(added)
                actions.append(action)

        log_event(
            LOGGER,
            "stale_scan_completed",
            processed=len(pull_requests),
            stale_found=len(actions),
        )
        return StaleScanReport(
            result=AutomationResult(labels_added=tuple(labels_added), actions=tuple(actions)),
            processed=len(pull_requests),
            stale_found=len(actions),
        )

    def last_activity(self, pull_request: PullRequestSnapshot, now: datetime) -> datetime:
        number = pull_request.number
        with ThreadPoolExecutor(max_workers=5) as pool:
            commits = pool.submit(self._github.list_commits, number)
            comments = pool.submit(self._comments_best_effort, number)
            review_comments = pool.submit(self._github.list_review_comments, number)
            reviews = pool.submit(self._github.list_reviews, number)
            timeline = pool.submit(self._github.list_timeline_events, number)

            raw: list[str | None] = [pull_request.updated_at]
            raw.extend(commit.committed_at for commit in commits.result())
            raw.extend(comment.created_at for comment in comments.result())
            raw.extend(comment.created_at for comment in review_comments.result())
            raw.extend(review.submitted_at for review in reviews.result())
            raw.extend(
                event.created_at for event in timeline.result() if event.event in _LABEL_EVENTS
            )

        timestamps = [parsed for value in raw if (parsed := parse_timestamp(value)) is not None]
        return latest_activity(
            timestamps, created_at=parse_timestamp(pull_request.created_at), now=now
        )

    def _process(
        self, pull_request: PullRequestSnapshot, now: datetime
    ) -> tuple[tuple[str, ...], str] | None:
        if pull_request.draft:
            log_event(LOGGER, "stale_check_skipped", pr_number=pull_request.number, reason="draft")
            return None
        if STALE_LABEL in pull_request.labels:
            log_event(
                LOGGER,
                "stale_check_skipped",
                pr_number=pull_request.number,
                reason="already_stale",
            )
            return None

        last_activity = self.last_activity(pull_request, now)
        hours_inactive = int((now - last_activity).total_seconds() // 3600)
        log_event(
            LOGGER,
            "stale_check",
            pr_number=pull_request.number,
            hours_inactive=hours_inactive,
        )
        if not is_stale(last_activity=last_activity, now=now, stale_days=self._stale_days):
            return None

        added = self._github.add_labels(pull_request.number, (STALE_LABEL,)).added
        if not added:
            return None
        log_event(
            LOGGER,
            "pr_marked_stale",
            pr_number=pull_request.number,
            hours_inactive=hours_inactive,
        )
        return added, (
            f"Added stale label to PR #{pull_request.number} "
            f"(inactive for {hours_inactive} hours)"
        )

    def _comments_best_effort(self, number: int) -> tuple[IssueComment, ...]:
        try:
            return self._github.list_comments(number)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "github_read_degraded",
                endpoint="issue_comments",
                number=number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return ()


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
