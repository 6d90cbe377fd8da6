from __future__ import annotations

from repokeeper.models import CheckRunOutput


RELEASE_BACKPORT_MARKER = "🚨 YAML Validation Error: release and backport"
FEATURE_BRANCH_MARKER = "🚨 YAML Validation Error: feature branch"
RELEASE_BACKPORT_CHECK_NAME = "YAML Validation (Release/Backport)"
FEATURE_BRANCH_CHECK_NAME = "YAML Validation (Feature Branch)"
ATTRIBUTION_LINE = "_This comment was posted by the repository automation workflow._"

_HOW_TO_FIX_STEPS = (
    "1. Update your PR description YAML block with valid values\n"
    "2. The workflow will automatically re-run when you edit the description"
)
_FEATURE_BRANCH_EXAMPLE = (
    "```yaml\n"
    "needs_feature_branch: true    # Valid values: true, false (case-insensitive)\n"
    "needs_feature_branch: false   # Quotes are optional: \"true\", 'false', etc.\n"
    "```"
)


def invalid_value_error(category: str, value: str, accepted: tuple[str, ...]) -> str:
    return f'❌ Invalid {category} value: "{value}". Accepted values: {", ".join(accepted)}'


def invalid_values_error(
    category: str, values: tuple[str, ...], accepted: tuple[str, ...]
) -> str:
    quoted = ", ".join(f'"{value}"' for value in values)
    return f"❌ Invalid {category} values: {quoted}. Accepted values: {', '.join(accepted)}"


def malformed_list_error(category: str, raw: str, accepted: tuple[str, ...]) -> str:
    return (
        f"❌ Invalid {category} value: {raw} is not a valid list. "
        f'Expected a list like ["1.0", "2.0"]. Accepted values: {", ".join(accepted)}'
    )


def invalid_feature_branch_error(value: str) -> str:
    return (
        f'❌ Invalid needs_feature_branch value: "{value}". '
        "Accepted values: true, false (case-insensitive, with optional quotes)"
    )


def release_backport_error_comment(
    errors: tuple[str, ...],
    *,
    accepted_releases: tuple[str, ...],
    accepted_backports: tuple[str, ...],
) -> str:
    return (
        f"## {RELEASE_BACKPORT_MARKER}\n\n"
        f"{_bullets(errors)}\n\n"
        "### How to fix:\n"
        f"{_HOW_TO_FIX_STEPS}\n\n"
        "### Valid YAML format:\n"
        f"{_release_backport_example(accepted_releases, accepted_backports)}\n\n"
        f"{ATTRIBUTION_LINE}"
    )


def release_backport_failure_output(
    errors: tuple[str, ...],
    *,
    accepted_releases: tuple[str, ...],
    accepted_backports: tuple[str, ...],
) -> CheckRunOutput:
    return CheckRunOutput(
        title="YAML Validation Failed",
        summary=f"Found {len(errors)} validation error(s) in PR description YAML block.",
        text=(
            f"{_bullets(errors)}\n\n"
            "**How to fix:**\n"
            f"{_HOW_TO_FIX_STEPS}\n\n"
            "**Valid YAML format:**\n"
            f"{_release_backport_example(accepted_releases, accepted_backports)}"
        ),
    )


def release_backport_success_output(labels: tuple[str, ...]) -> CheckRunOutput:
    if not labels:
        return CheckRunOutput(
            title="No YAML Validation Required",
            summary="No release/backport labels to add - validation skipped.",
            text=(
                "This PR does not require any release/backport labels based on the "
                "YAML configuration."
            ),
        )
    label_lines = "\n".join(f"- `{label}`" for label in labels)
    return CheckRunOutput(
        title="YAML Validation Successful",
        summary=f"Successfully validated YAML and added {len(labels)} label(s).",
        text=(
            f"**Labels added:**\n{label_lines}\n\n"
            "**YAML validation passed** - all values are within accepted ranges."
        ),
    )


def label_assignment_failed_output(error: str) -> CheckRunOutput:
    return CheckRunOutput(
        title="Label Assignment Failed",
        summary="YAML validation passed but failed to add labels.",
        text=f"**Error:** {error}",
    )


def feature_branch_error_comment(error: str) -> str:
    return (
        f"## {FEATURE_BRANCH_MARKER}\n\n"
        f"- {error}\n\n"
        "### How to fix:\n"
        f"{_HOW_TO_FIX_STEPS}\n\n"
        "### Valid YAML format:\n"
        f"{_FEATURE_BRANCH_EXAMPLE}\n\n"
        f"{ATTRIBUTION_LINE}"
    )


def feature_branch_failure_output(error: str) -> CheckRunOutput:
    return CheckRunOutput(
        title="YAML Validation Failed",
        summary="Found validation error in PR description YAML block.",
        text=(
            f"- {error}\n\n"
            "**How to fix:**\n"
            f"{_HOW_TO_FIX_STEPS}\n\n"
            "**Valid YAML format:**\n"
            f"{_FEATURE_BRANCH_EXAMPLE}"
        ),
    )


FEATURE_BRANCH_ALREADY_PRESENT = CheckRunOutput(
    title="Feature Branch Label Already Present",
    summary="Feature-branch label already exists on this PR - skipping automatic assignment.",
    text=(
        "This PR already has the feature-branch label. Automatic assignment is skipped "
        "to preserve manual labeling."
    ),
)
FEATURE_BRANCH_NOT_REQUESTED = CheckRunOutput(
    title="No YAML Validation Required",
    summary="No needs_feature_branch field found in YAML code blocks - validation skipped.",
    text="This PR does not contain any needs_feature_branch field that needs validation.",
)
FEATURE_BRANCH_ADDED = CheckRunOutput(
    title="YAML Validation Successful",
    summary="Successfully validated YAML and added feature-branch label.",
    text=(
        "**Label added:**\n- `feature-branch`\n\n"
        "**YAML validation passed** - needs_feature_branch value is valid."
    ),
)
FEATURE_BRANCH_NOT_NEEDED = CheckRunOutput(
    title="YAML Validation Successful",
    summary="Successfully validated YAML - no feature-branch label needed.",
    text="**YAML validation passed** - needs_feature_branch is false or empty, no label added.",
)


def workflow_execution_failed_output(error: str) -> CheckRunOutput:
    return CheckRunOutput(
        title="Workflow Execution Failed",
        summary="An unexpected error occurred during workflow execution.",
        text=(
            f"**Error:** {error}\n\n"
            "**Troubleshooting:**\n"
            "Check the workflow logs for detailed error information."
        ),
    )


def _bullets(lines: tuple[str, ...]) -> str:
    return "\n".join(f"- {line}" for line in lines)


def _release_backport_example(
    accepted_releases: tuple[str, ...], accepted_backports: tuple[str, ...]
) -> str:
    return (
        "```yaml\n"
        f"release: 1.5    # Valid releases: {', '.join(accepted_releases)}\n"
        f"backport: 1.4   # Valid backports: {', '.join(accepted_backports)}\n"
        "```"
    )
