"""Pure label decisions.

Nothing here talks to GitHub. Each function takes the observed state and
returns the intents the executor should carry out, so every rule can be
exercised without a gateway.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from repokeeper import messages
from repokeeper.models import CheckRunConclusion, CheckRunOutput
from repokeeper.validation import validate
from repokeeper.yaml_fragment import (
    Absent,
    ArrayOf,
    Malformed,
    Scalar,
    YamlFieldValue,
)


TRIAGE_LABEL = "triage"
READY_FOR_REVIEW_LABEL = "ready for review"
FEATURE_BRANCH_LABEL = "feature-branch"
STALE_LABEL = "stale"
RELEASE_CATEGORY = "release"
BACKPORT_CATEGORY = "backport"
# Any "release-*" or "release *" label counts, including unrelated ones such as "release-blocker".
_CATEGORY_SEPARATORS = ("-", " ")


@dataclass(frozen=True)
class LabelIntent:
    names: tuple[str, ...]
    action: Literal["add"] = "add"


@dataclass(frozen=True)
class CommentIntent:
    action: Literal["create", "delete_all_matching"]
    identifier_marker: str
    body: str = ""


@dataclass(frozen=True)
class CheckRunIntent:
    name: str
    conclusion: CheckRunConclusion
    output: CheckRunOutput
    status: Literal["completed"] = "completed"


@dataclass(frozen=True)
class CategoryDecision:
    labels: tuple[str, ...]
    error: str | None


@dataclass(frozen=True)
class ValidationDecision:
    """Intents for one validation domain, in execution order.

    ``comments`` run before ``labels``; the check run is written last.
    """

    labels: LabelIntent | None
    comments: tuple[CommentIntent, ...]
    check_run: CheckRunIntent
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class SmartLabelDecision:
    label: str | None
    reason: str


def category_patterns(category: str) -> tuple[str, ...]:
    return tuple(f"{category}{separator}*" for separator in _CATEGORY_SEPARATORS)


def matches_pattern(label: str, pattern: str) -> bool:
    if pattern.endswith("*"):
        return label.startswith(pattern[:-1])
    return label == pattern


def has_category_label(labels: Iterable[str], category: str) -> bool:
    patterns = category_patterns(category)
    return any(matches_pattern(label, pattern) for label in labels for pattern in patterns)


def category_label(category: str, value: str, *, separator: str = "-") -> str:
    return f"{category}{separator}{value}"


def decide_category(
    *,
    category: str,
    field_value: YamlFieldValue,
    accepted: tuple[str, ...],
    has_existing_label: bool,
    separator: str = "-",
) -> CategoryDecision:
    # Manual labels always win, whatever the YAML says.
    if isinstance(field_value, Absent) or has_existing_label:
        return CategoryDecision(labels=(), error=None)
    if isinstance(field_value, Malformed):
        return CategoryDecision(
            labels=(), error=messages.malformed_list_error(category, field_value.raw, accepted)
        )

    outcome = validate(field_value, accepted)
    if not outcome.is_array:
        item = outcome.items[0]
        if not item.valid:
            return CategoryDecision(
                labels=(), error=messages.invalid_value_error(category, item.value, accepted)
            )
        return CategoryDecision(
            labels=(category_label(category, item.value, separator=separator),), error=None
        )

    invalid = outcome.invalid_values
    if invalid:
        return CategoryDecision(
            labels=(), error=messages.invalid_values_error(category, invalid, accepted)
        )
    return CategoryDecision(
        labels=tuple(
            category_label(category, value, separator=separator)
            for value in outcome.valid_values
        ),
        error=None,
    )


def decide_release_backport(
    *,
    release: CategoryDecision | None,
    backport: CategoryDecision | None,
    accepted_releases: tuple[str, ...],
    accepted_backports: tuple[str, ...],
) -> ValidationDecision:
    """Combine both categories; any error blocks every label for this run."""
    decisions = [decision for decision in (release, backport) if decision is not None]
    errors = tuple(decision.error for decision in decisions if decision.error is not None)

    if errors:
        return ValidationDecision(
            labels=None,
            comments=(
                CommentIntent("delete_all_matching", messages.RELEASE_BACKPORT_MARKER),
                CommentIntent(
                    "create",
                    messages.RELEASE_BACKPORT_MARKER,
                    messages.release_backport_error_comment(
                        errors,
                        accepted_releases=accepted_releases,
                        accepted_backports=accepted_backports,
                    ),
                ),
            ),
            check_run=CheckRunIntent(
                name=messages.RELEASE_BACKPORT_CHECK_NAME,
                conclusion="failure",
                output=messages.release_backport_failure_output(
                    errors,
                    accepted_releases=accepted_releases,
                    accepted_backports=accepted_backports,
                ),
            ),
            errors=errors,
        )

    labels = tuple(label for decision in decisions for label in decision.labels)
    return ValidationDecision(
        labels=LabelIntent(labels) if labels else None,
        comments=(CommentIntent("delete_all_matching", messages.RELEASE_BACKPORT_MARKER),),
        check_run=CheckRunIntent(
            name=messages.RELEASE_BACKPORT_CHECK_NAME,
            conclusion="success",
            output=messages.release_backport_success_output(labels),
        ),
    )


def decide_feature_branch(
    *, has_feature_branch_label: bool, field_value: YamlFieldValue
) -> ValidationDecision:
    cleanup = (CommentIntent("delete_all_matching", messages.FEATURE_BRANCH_MARKER),)

    if has_feature_branch_label:
        return _feature_branch_success(cleanup, messages.FEATURE_BRANCH_ALREADY_PRESENT)
    if isinstance(field_value, Absent):
        return _feature_branch_success(cleanup, messages.FEATURE_BRANCH_NOT_REQUESTED)

    raw = field_value.value if isinstance(field_value, Scalar) else _raw_text(field_value)
    normalized = raw.strip().lower() if isinstance(field_value, Scalar) else None
    if normalized == "true":
        return ValidationDecision(
            labels=LabelIntent((FEATURE_BRANCH_LABEL,)),
            comments=cleanup,
            check_run=CheckRunIntent(
                name=messages.FEATURE_BRANCH_CHECK_NAME,
                conclusion="success",
                output=messages.FEATURE_BRANCH_ADDED,
            ),
        )
    if normalized in {"false", ""}:
        return _feature_branch_success(cleanup, messages.FEATURE_BRANCH_NOT_NEEDED)

    error = messages.invalid_feature_branch_error(raw)
    return ValidationDecision(
        labels=None,
        comments=(
            CommentIntent(
                "create",
                messages.FEATURE_BRANCH_MARKER,
                messages.feature_branch_error_comment(error),
            ),
        ),
        check_run=CheckRunIntent(
            name=messages.FEATURE_BRANCH_CHECK_NAME,
            conclusion="failure",
            output=messages.feature_branch_failure_output(error),
        ),
        errors=(error,),
    )


def decide_smart_label(
    *,
    draft: bool,
    has_release_label: bool,
    has_release_yaml: bool,
    has_backport_label: bool,
    has_backport_yaml: bool,
    has_triage_label: bool,
    has_ready_for_review_label: bool,
) -> SmartLabelDecision:
    if draft:
        return SmartLabelDecision(label=None, reason="draft")
    if has_release_label or has_release_yaml:
        if has_ready_for_review_label:
            return SmartLabelDecision(label=None, reason="already_ready_for_review")
        return SmartLabelDecision(
            label=READY_FOR_REVIEW_LABEL, reason="has release label, not draft"
        )
    if not (has_backport_label or has_backport_yaml):
        if has_triage_label:
            return SmartLabelDecision(label=None, reason="already_triaged")
        return SmartLabelDecision(label=TRIAGE_LABEL, reason="no release/backport label")
    return SmartLabelDecision(label=None, reason="backport_only")


def needs_triage_restore(labels: Iterable[str]) -> bool:
    current = tuple(labels)
    if TRIAGE_LABEL in current:
        return False
    return not (
        has_category_label(current, RELEASE_CATEGORY)
        or has_category_label(current, BACKPORT_CATEGORY)
    )


def latest_activity(
    timestamps: Iterable[datetime], *, created_at: datetime | None, now: datetime
) -> datetime:
    candidates = list(timestamps)
    if candidates:
        return max(candidates)
    if created_at is not None:
        return created_at
    return now


def is_stale(*, last_activity: datetime, now: datetime, stale_days: int) -> bool:
    return now - last_activity > timedelta(days=stale_days)


def _feature_branch_success(
    cleanup: tuple[CommentIntent, ...], output: CheckRunOutput
) -> ValidationDecision:
    return ValidationDecision(
        labels=None,
        comments=cleanup,
        check_run=CheckRunIntent(
            name=messages.FEATURE_BRANCH_CHECK_NAME,
            conclusion="success",
            output=output,
        ),
    )


def _raw_text(field_value: ArrayOf | Malformed) -> str:
    if isinstance(field_value, Malformed):
        return field_value.raw
    return f"[{', '.join(field_value.values)}]"
