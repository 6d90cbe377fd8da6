from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
import time

from repokeeper.config import AppConfig, detect_features, validate_settings
from repokeeper.events import (
    EventContext,
    IssueEvent,
    PullRequestEvent,
    ScheduleEvent,
    UnsupportedEvent,
    WorkflowRunEvent,
)
from repokeeper.github_gateway import GitHubGateway
from repokeeper.label_automation import LabelAutomation
from repokeeper.label_rules import (
    BACKPORT_CATEGORY,
    READY_FOR_REVIEW_LABEL,
    RELEASE_CATEGORY,
    TRIAGE_LABEL,
    category_patterns,
    decide_smart_label,
    needs_triage_restore,
)
from repokeeper.models import AutomationResult, PullRequestSnapshot
from repokeeper.observability import log_event
from repokeeper.stale_detection import StaleDetection
from repokeeper.yaml_fragment import extract_yaml_block, is_present, parse_field


LOGGER = logging.getLogger("repokeeper.orchestrator")


class RepositoryAutomation:
    """Runs every enabled automation for one triggering event."""

    def __init__(
        self,
        config: AppConfig,
        *,
        github: GitHubGateway,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._github = github
        self._sleep = sleep
        self._now = now

    def run(self, context: EventContext) -> AutomationResult:
        validate_settings(self._config)
        features = detect_features(
            self._config.options, is_schedule=isinstance(context.event, ScheduleEvent)
        )
        log_event(
            LOGGER,
            "automation_started",
            event_name=context.event_name,
            repo=self._config.repo.full_name,
            dry_run=self._config.options.dry_run,
            features=", ".join(features.names),
        )

        result = AutomationResult(features_enabled=features.names)
        triage_result, pull_request = self._handle_triage(context)
        result = result.merge(triage_result)

        if features.label_automation and pull_request is not None:
            automation = LabelAutomation(self._config, github=self._github, run_id=context.run_id)
            result = result.merge(automation.execute(pull_request, features))

        if features.stale_detection:
            stale = StaleDetection(
                github=self._github,
                stale_days=self._config.options.stale_days,
                now=self._now,
            )
            result = result.merge(stale.execute().result)

        log_event(
            LOGGER,
            "automation_completed",
            event_name=context.event_name,
            labels_added=", ".join(result.labels_added),
            action_count=len(result.actions),
        )
        return result

    def _handle_triage(
        self, context: EventContext
    ) -> tuple[AutomationResult, PullRequestSnapshot | None]:
        event = context.event
        if isinstance(event, IssueEvent):
            if event.action == "opened":
                return self._add_triage_to_issue(event.issue_number), None
            if event.action == "unlabeled" and event.label_name == TRIAGE_LABEL:
                return self._protect_triage(event.issue_number), None
            log_event(
                LOGGER,
                "event_skipped",
                event_name=context.event_name,
                action=event.action,
                reason="unhandled_issue_action",
            )
            return AutomationResult(), None

        if isinstance(event, PullRequestEvent):
            pull_request = event.pull_request
            if event.action == "unlabeled" and event.label_name == TRIAGE_LABEL:
                return self._protect_triage(pull_request.number), pull_request
            if pull_request.state == "closed":
                log_event(
                    LOGGER, "event_skipped", pr_number=pull_request.number, reason="pr_closed"
                )
                return AutomationResult(), None
            return self._smart_label(pull_request), pull_request

        if isinstance(event, WorkflowRunEvent):
            return self._handle_workflow_run(event)

        if isinstance(event, ScheduleEvent):
            log_event(LOGGER, "triage_skipped", event_name=context.event_name, reason="schedule")
            return AutomationResult(), None

        if isinstance(event, UnsupportedEvent):
            log_event(
                LOGGER,
                "event_skipped",
                event_name=event.event_name,
                reason="unsupported_event",
            )
            return AutomationResult(), None

        raise RuntimeError(f"Unhandled event type: {type(event).__name__}")

    def _handle_workflow_run(
        self, event: WorkflowRunEvent
    ) -> tuple[AutomationResult, PullRequestSnapshot | None]:
        branch = event.head_branch
        if not branch or branch == self._config.repo.default_branch:
            log_event(
                LOGGER,
                "event_skipped",
                workflow=event.name,
                branch=branch,
                reason="default_or_missing_branch",
            )
            return AutomationResult(), None

        pull_request = self._github.find_pull_request_by_branch(branch)
        if pull_request is None:
            log_event(LOGGER, "event_skipped", branch=branch, reason="no_pull_request")
            return AutomationResult(), None
        if pull_request.state == "closed":
            log_event(
                LOGGER, "event_skipped", pr_number=pull_request.number, reason="pr_closed"
            )
            return AutomationResult(), None

        if event.conclusion != "success":
            log_event(
                LOGGER,
                "smart_labeling_skipped",
                pr_number=pull_request.number,
                conclusion=event.conclusion,
                reason="workflow_not_successful",
            )
            return AutomationResult(), pull_request
        return self._smart_label(pull_request), pull_request

    def _add_triage_to_issue(self, issue_number: int) -> AutomationResult:
        added = self._github.add_labels(issue_number, (TRIAGE_LABEL,)).added
        if not added:
            return AutomationResult()
        return AutomationResult(
            labels_added=added, actions=(f"Added triage label to issue #{issue_number}",)
        )

    def _protect_triage(self, target_number: int) -> AutomationResult:
        labels = self._github.get_labels(target_number)
        if not needs_triage_restore(labels):
            log_event(
                LOGGER,
                "triage_restore_skipped",
                target_number=target_number,
                reason="release_or_backport_present",
            )
            return AutomationResult()

        added = self._github.add_labels(target_number, (TRIAGE_LABEL,)).added
        if not added:
            return AutomationResult()
        log_event(LOGGER, "triage_label_restored", target_number=target_number)
        return AutomationResult(
            labels_added=added,
            actions=(f"Re-added triage label to #{target_number} (no release/backport label)",),
        )

    def _smart_label(self, pull_request: PullRequestSnapshot) -> AutomationResult:
        if pull_request.draft:
            log_event(
                LOGGER, "smart_labeling_skipped", pr_number=pull_request.number, reason="draft"
            )
            return AutomationResult()

        options = self._config.options
        if not options.dry_run and options.settle_delay_seconds > 0:
            self._sleep(options.settle_delay_seconds)

        release_patterns = category_patterns(RELEASE_CATEGORY)
        backport_patterns = category_patterns(BACKPORT_CATEGORY)
        matches = self._github.has_labels(
            pull_request.number,
            release_patterns + backport_patterns + (TRIAGE_LABEL, READY_FOR_REVIEW_LABEL),
        )

        yaml_fragment = extract_yaml_block(pull_request.body)
        has_release_yaml = False
        has_backport_yaml = False
        if yaml_fragment is not None:
            has_release_yaml = is_present(parse_field(yaml_fragment, RELEASE_CATEGORY))
            has_backport_yaml = is_present(parse_field(yaml_fragment, BACKPORT_CATEGORY))

        decision = decide_smart_label(
            draft=pull_request.draft,
            has_release_label=any(matches[pattern] for pattern in release_patterns),
            has_release_yaml=has_release_yaml,
            has_backport_label=any(matches[pattern] for pattern in backport_patterns),
            has_backport_yaml=has_backport_yaml,
            has_triage_label=matches[TRIAGE_LABEL],
            has_ready_for_review_label=matches[READY_FOR_REVIEW_LABEL],
        )
        log_event(
            LOGGER,
            "smart_label_decision",
            pr_number=pull_request.number,
            label=decision.label,
            reason=decision.reason,
        )
        if decision.label is None:
            return AutomationResult()

        added = self._github.add_labels(pull_request.number, (decision.label,)).added
        if not added:
            return AutomationResult()
        return AutomationResult(
            labels_added=added,
            actions=(
                f"Added {decision.label} label to PR #{pull_request.number} ({decision.reason})",
            ),
        )

