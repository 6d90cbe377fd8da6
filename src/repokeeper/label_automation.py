from __future__ import annotations

import logging

from repokeeper import messages
from repokeeper.config import AppConfig, EnabledFeatures
from repokeeper.github_gateway import GitHubGateway
from repokeeper.label_rules import (
    BACKPORT_CATEGORY,
    FEATURE_BRANCH_LABEL,
    RELEASE_CATEGORY,
    CategoryDecision,
    ValidationDecision,
    decide_category,
    decide_feature_branch,
    decide_release_backport,
    has_category_label,
)
from repokeeper.models import (
    AutomationResult,
    CheckRunHandle,
    CheckRunOutput,
    PullRequestSnapshot,
)
from repokeeper.observability import log_event, log_warning_event
from repokeeper.yaml_fragment import ABSENT, extract_yaml_block, parse_field


LOGGER = logging.getLogger("repokeeper.label_automation")


class LabelAutomation:
    """Applies the YAML-driven release/backport and feature-branch rules to one PR."""

    def __init__(self, config: AppConfig, *, github: GitHubGateway, run_id: str = "") -> None:
        self._config = config
        self._github = github
        self._run_id = run_id

    def execute(
        self, pull_request: PullRequestSnapshot, features: EnabledFeatures
    ) -> AutomationResult:
        if pull_request.draft:
            log_event(
                LOGGER,
                "label_automation_skipped",
                pr_number=pull_request.number,
                reason="draft",
            )
            return AutomationResult()

        yaml_fragment = extract_yaml_block(pull_request.body)
        if yaml_fragment is None:
            log_event(LOGGER, "yaml_block_missing", pr_number=pull_request.number)
            if features.feature_branch:
                self._github.cleanup_comments(pull_request.number, messages.FEATURE_BRANCH_MARKER)
            if features.release_labeling or features.backport_labeling:
                self._github.cleanup_comments(
                    pull_request.number, messages.RELEASE_BACKPORT_MARKER
                )
            return AutomationResult()

        result = AutomationResult()
        if features.release_labeling or features.backport_labeling:
            result = result.merge(
                self._process_release_backport(pull_request, yaml_fragment, features)
            )
        if features.feature_branch:
            result = result.merge(self._process_feature_branch(pull_request, yaml_fragment))
        return result

    def _process_release_backport(
        self,
        pull_request: PullRequestSnapshot,
        yaml_fragment: str,
        features: EnabledFeatures,
    ) -> AutomationResult:
        options = self._config.options
        handle = self._github.create_check_run(
            messages.RELEASE_BACKPORT_CHECK_NAME, pull_request.head_sha, self._details_url()
        )
        try:
            current_labels = self._github.get_labels(pull_request.number)
            release: CategoryDecision | None = None
            backport: CategoryDecision | None = None
            if features.release_labeling:
                release = decide_category(
                    category=RELEASE_CATEGORY,
                    field_value=parse_field(yaml_fragment, RELEASE_CATEGORY),
                    accepted=options.accepted_releases,
                    has_existing_label=has_category_label(current_labels, RELEASE_CATEGORY),
                    separator=options.label_separator,
                )
            if features.backport_labeling:
                backport = decide_category(
                    category=BACKPORT_CATEGORY,
                    field_value=parse_field(yaml_fragment, BACKPORT_CATEGORY),
                    accepted=options.accepted_backports,
                    has_existing_label=has_category_label(current_labels, BACKPORT_CATEGORY),
                    separator=options.label_separator,
                )
            decision = decide_release_backport(
                release=release,
                backport=backport,
                accepted_releases=options.accepted_releases,
                accepted_backports=options.accepted_backports,
            )
            added = self._apply(pull_request.number, handle, decision)
        except Exception as exc:
            self._fail_check_run(handle, messages.label_assignment_failed_output(str(exc)))
            raise

        if not added:
            return AutomationResult()
        return AutomationResult(
            labels_added=added,
            actions=(f"Added release/backport labels: {', '.join(added)}",),
        )

    def _process_feature_branch(
        self, pull_request: PullRequestSnapshot, yaml_fragment: str
    ) -> AutomationResult:
        handle = self._github.create_check_run(
            messages.FEATURE_BRANCH_CHECK_NAME, pull_request.head_sha, self._details_url()
        )
        try:
            has_label = FEATURE_BRANCH_LABEL in self._github.get_labels(pull_request.number)
            decision = decide_feature_branch(
                has_feature_branch_label=has_label,
                field_value=ABSENT
                if has_label
                else parse_field(yaml_fragment, "needs_feature_branch"),
            )
            added = self._apply(pull_request.number, handle, decision)
        except Exception as exc:
            self._fail_check_run(handle, messages.workflow_execution_failed_output(str(exc)))
            raise

        if not added:
            return AutomationResult()
        return AutomationResult(
            labels_added=added,
            actions=(f"Added feature-branch label to PR #{pull_request.number}",),
        )

    def _apply(
        self, target_number: int, handle: CheckRunHandle, decision: ValidationDecision
    ) -> tuple[str, ...]:
        if decision.errors:
            log_event(
                LOGGER,
                "yaml_validation_failed",
                target_number=target_number,
                check_name=handle.name,
                error_count=len(decision.errors),
            )

        for intent in decision.comments:
            if intent.action == "delete_all_matching":
                self._github.cleanup_comments(target_number, intent.identifier_marker)
            elif self._has_identical_comment(target_number, intent.body):
                log_event(LOGGER, "error_comment_unchanged", target_number=target_number)
            else:
                self._github.create_comment(target_number, intent.body)
                log_event(LOGGER, "error_comment_posted", target_number=target_number)

        added: tuple[str, ...] = ()
        if decision.labels is not None:
            added = self._github.add_labels(target_number, decision.labels.names).added

        self._github.update_check_run(
            handle,
            status=decision.check_run.status,
            conclusion=decision.check_run.conclusion,
            output=decision.check_run.output,
        )
        return added

    def _has_identical_comment(self, target_number: int, body: str) -> bool:
        try:
            comments = self._github.list_comments(target_number)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "comment_listing_failed",
                target_number=target_number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        return any(comment.body == body for comment in comments)

    def _fail_check_run(self, handle: CheckRunHandle, output: CheckRunOutput) -> None:
        self._github.update_check_run(
            handle, status="completed", conclusion="failure", output=output
        )

    def _details_url(self) -> str:
        repo = self._config.repo
        return f"https://github.com/{repo.owner}/{repo.repo}/actions/runs/{self._run_id}"
