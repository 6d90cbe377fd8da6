from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from typing import cast
from urllib.parse import urlencode

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
from repokeeper.observability import log_event, log_warning_event
from repokeeper.shell import run


LOGGER = logging.getLogger("repokeeper.github_gateway")
_PAGE_SIZE = 100


class GitHubApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LabelPermissionError(GitHubApiError):
    """Label mutation was forbidden for the configured token."""


class LabelDefinitionError(GitHubApiError):
    """Requested labels are not defined in the repository."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    token: str | None = None
    dry_run: bool = False

    def add_labels(self, target_number: int, names: tuple[str, ...]) -> LabelAddResult:
        requested = tuple(dict.fromkeys(names))
        if not requested:
            return LabelAddResult(added=(), skipped=())
        if self.dry_run:
            log_event(
                LOGGER,
                "dry_run_add_labels",
                target_number=target_number,
                labels=", ".join(requested),
            )
            return LabelAddResult(added=requested, skipped=())

        current = self.get_labels(target_number)
        missing = tuple(label for label in requested if label not in current)
        skipped = tuple(label for label in requested if label in current)
        if not missing:
            log_event(
                LOGGER,
                "labels_already_present",
                target_number=target_number,
                labels=", ".join(skipped),
            )
            return LabelAddResult(added=(), skipped=skipped)

        path = f"/repos/{self.owner}/{self.name}/issues/{target_number}/labels"
        try:
            self._api_json("POST", path, payload={"labels": list(missing)})
        except GitHubApiError as exc:
            return self._handle_label_error(exc, target_number, missing, skipped)

        log_event(
            LOGGER,
            "labels_added",
            target_number=target_number,
            labels=", ".join(missing),
        )
        return LabelAddResult(added=missing, skipped=skipped)

    def get_labels(self, target_number: int) -> tuple[str, ...]:
        path = f"/repos/{self.owner}/{self.name}/issues/{target_number}/labels"
        labels: list[str] = []
        for item in self._api_list(path):
            name = item.get("name")
            if isinstance(name, str):
                labels.append(name)
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_labels",
            target_number=target_number,
            count=len(labels),
        )
        return tuple(labels)

    def has_labels(self, target_number: int, patterns: tuple[str, ...]) -> dict[str, bool]:
        current = self.get_labels(target_number)
        return {
            pattern: any(matches_pattern(label, pattern) for label in current)
            for pattern in patterns
        }

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        snapshot = parse_pull_request(self._api_json("GET", path))
        log_event(LOGGER, "github_read", endpoint="pull_request", pr_number=snapshot.number)
        return snapshot

    def find_pull_request_by_branch(self, branch: str) -> PullRequestSnapshot | None:
        query = urlencode(
            {
                "head": f"{self.owner}:{branch}",
                "state": "all",
                "sort": "updated",
                "direction": "desc",
                "per_page": str(_PAGE_SIZE),
            }
        )
        payload = self._api_json("GET", f"/repos/{self.owner}/{self.name}/pulls?{query}")
        if not isinstance(payload, list):
            raise GitHubApiError(
                "Unexpected GitHub response: expected list for pull request lookup"
            )
        # GitHub ignores a head filter it cannot resolve and lists every PR instead.
        found = next(
            (pr for pr in map(parse_pull_request, payload) if pr.head_ref == branch), None
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_lookup_by_branch",
            branch=branch,
            found=found is not None,
            pr_number=found.number if found else None,
        )
        return found

    def list_open_pull_requests(self) -> tuple[PullRequestSnapshot, ...]:
        path = f"/repos/{self.owner}/{self.name}/pulls"
        items = self._api_list(path, {"state": "open"})
        pulls = tuple(parse_pull_request(item) for item in items)
        log_event(LOGGER, "github_read", endpoint="open_pull_requests", count=len(pulls))
        return pulls

    def create_check_run(self, name: str, head_sha: str, details_url: str) -> CheckRunHandle:
        if self.dry_run:
            log_event(LOGGER, "dry_run_create_check_run", name=name, head_sha=head_sha)
            return CheckRunHandle(check_run_id=None, name=name)

        payload = self._api_json(
            "POST",
            f"/repos/{self.owner}/{self.name}/check-runs",
            payload={
                "name": name,
                "head_sha": head_sha,
                "status": "in_progress",
                "started_at": _utc_now_iso(),
                "details_url": details_url,
            },
        )
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for check run")
        handle = CheckRunHandle(
            check_run_id=_as_int(payload_obj.get("id"), field="id"), name=name
        )
        log_event(
            LOGGER,
            "check_run_created",
            check_run_id=handle.check_run_id,
            name=name,
            head_sha=head_sha,
        )
        return handle

    def update_check_run(
        self,
        handle: CheckRunHandle,
        *,
        status: str,
        conclusion: str,
        output: CheckRunOutput,
    ) -> None:
        if self.dry_run or handle.check_run_id is None:
            log_event(
                LOGGER,
                "dry_run_update_check_run",
                name=handle.name,
                conclusion=conclusion,
                title=output.title,
            )
            return

        self._api_json(
            "PATCH",
            f"/repos/{self.owner}/{self.name}/check-runs/{handle.check_run_id}",
            payload={
                "status": status,
                "conclusion": conclusion,
                "completed_at": _utc_now_iso(),
                "output": {
                    "title": output.title,
                    "summary": output.summary,
                    "text": output.text,
                },
            },
        )
        log_event(
            LOGGER,
            "check_run_completed",
            check_run_id=handle.check_run_id,
            name=handle.name,
            conclusion=conclusion,
        )

    def create_comment(self, target_number: int, body: str) -> None:
        if self.dry_run:
            log_event(LOGGER, "dry_run_create_comment", target_number=target_number)
            return
        self._api_json(
            "POST",
            f"/repos/{self.owner}/{self.name}/issues/{target_number}/comments",
            payload={"body": body},
        )
        log_event(LOGGER, "comment_posted", target_number=target_number)

    def list_comments(self, target_number: int) -> tuple[IssueComment, ...]:
        path = f"/repos/{self.owner}/{self.name}/issues/{target_number}/comments"
        comments = tuple(
            IssueComment(
                comment_id=_as_int(item.get("id"), field="id"),
                body=_as_string(item.get("body")),
                created_at=_as_string(item.get("created_at")),
            )
            for item in self._api_list(path)
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_comments",
            target_number=target_number,
            count=len(comments),
        )
        return comments

    def delete_comment(self, comment_id: int) -> None:
        if self.dry_run:
            log_event(LOGGER, "dry_run_delete_comment", comment_id=comment_id)
            return
        try:
            self._api_json(
                "DELETE", f"/repos/{self.owner}/{self.name}/issues/comments/{comment_id}"
            )
        except GitHubApiError as exc:
            if exc.status_code != 404:
                raise
            log_event(LOGGER, "comment_already_deleted", comment_id=comment_id)
            return
        log_event(LOGGER, "comment_deleted", comment_id=comment_id)

    def cleanup_comments(self, target_number: int, marker: str) -> int:
        """Delete every comment containing ``marker``; failures are logged, not raised."""
        try:
            matching = [
                comment for comment in self.list_comments(target_number) if marker in comment.body
            ]
            for comment in matching:
                self.delete_comment(comment.comment_id)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "comment_cleanup_failed",
                target_number=target_number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return 0
        if matching:
            log_event(
                LOGGER,
                "comments_cleaned_up",
                target_number=target_number,
                count=len(matching),
            )
        return len(matching)

    def list_commits(self, pr_number: int) -> tuple[CommitSnapshot, ...]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/commits"
        items = self._best_effort_list(path, endpoint="pull_request_commits", number=pr_number)
        commits: list[CommitSnapshot] = []
        for item in items:
            commit_obj = _as_object_dict(item.get("commit"))
            committer_obj = _as_object_dict(commit_obj.get("committer")) if commit_obj else None
            commits.append(
                CommitSnapshot(
                    sha=_as_string(item.get("sha")),
                    committed_at=_as_optional_str(committer_obj.get("date"))
                    if committer_obj
                    else None,
                )
            )
        return tuple(commits)

    def list_review_comments(self, pr_number: int) -> tuple[ReviewCommentSnapshot, ...]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/comments"
        items = self._best_effort_list(path, endpoint="review_comments", number=pr_number)
        return tuple(
            ReviewCommentSnapshot(
                comment_id=_as_int(item.get("id"), field="id"),
                created_at=_as_string(item.get("created_at")),
            )
            for item in items
        )

    def list_reviews(self, pr_number: int) -> tuple[ReviewSnapshot, ...]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/reviews"
        items = self._best_effort_list(path, endpoint="reviews", number=pr_number)
        return tuple(
            ReviewSnapshot(
                review_id=_as_int(item.get("id"), field="id"),
                submitted_at=_as_optional_str(item.get("submitted_at")),
            )
            for item in items
        )

    def list_timeline_events(self, target_number: int) -> tuple[TimelineEvent, ...]:
        path = f"/repos/{self.owner}/{self.name}/issues/{target_number}/timeline"
        items = self._best_effort_list(path, endpoint="timeline", number=target_number)
        return tuple(
            TimelineEvent(
                event=_as_string(item.get("event")),
                created_at=_as_optional_str(item.get("created_at")),
            )
            for item in items
        )

    def _handle_label_error(
        self,
        exc: GitHubApiError,
        target_number: int,
        labels: tuple[str, ...],
        skipped: tuple[str, ...],
    ) -> LabelAddResult:
        joined = ", ".join(labels)
        if exc.status_code == 403:
            raise LabelPermissionError(
                f"Permission denied: Unable to add labels [{joined}] to #{target_number}. "
                "Repository administrators should add a CUSTOM_GITHUB_TOKEN secret with "
                "appropriate permissions.",
                status_code=403,
            ) from exc
        if exc.status_code != 422:
            raise GitHubApiError(
                f"Unexpected error adding labels [{joined}] to #{target_number}: {exc}",
                status_code=exc.status_code,
            ) from exc

        # 422 means either a concurrent run attached the labels first, or the
        # repository has no such labels. Only the current label set can tell.
        current = self.get_labels(target_number)
        if all(label in current for label in labels):
            log_event(
                LOGGER,
                "labels_already_present",
                target_number=target_number,
                labels=joined,
            )
            return LabelAddResult(added=(), skipped=skipped + labels)
        raise LabelDefinitionError(
            f"Failed to add labels [{joined}] to #{target_number}: One or more labels don't "
            "exist in the repository.",
            status_code=422,
        ) from exc

    def _best_effort_list(
        self, path: str, *, endpoint: str, number: int
    ) -> list[dict[str, object]]:
        try:
            items = self._api_list(path)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "github_read_degraded",
                endpoint=endpoint,
                number=number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return []
        log_event(LOGGER, "github_read", endpoint=endpoint, number=number, count=len(items))
        return items

    def _api_list(
        self, path: str, params: dict[str, str] | None = None
    ) -> list[dict[str, object]]:
        items: list[dict[str, object]] = []
        page = 1
        while True:
            query = urlencode({**(params or {}), "per_page": str(_PAGE_SIZE), "page": str(page)})
            payload = self._api_json("GET", f"{path}?{query}")
            if not isinstance(payload, list):
                raise GitHubApiError(f"Unexpected GitHub response: expected list for {path}")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is not None:
                    items.append(item_obj)
            if len(payload) < _PAGE_SIZE:
                return items
            page += 1

    def _api_json(
        self, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        method_upper = method.upper()
        cmd = ["gh", "api", "--method", method_upper, "--include", path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        try:
            proc = run(
                cmd,
                input_text=stdin_payload,
                env={"GH_TOKEN": self.token} if self.token else None,
            )
        except OSError as exc:
            raise GitHubApiError(f"Unable to run gh CLI for {method_upper} {path}: {exc}") from exc
        raw = proc.stdout

        try:
            status_code, _headers, body = _parse_http_response(raw)
        except GitHubApiError as exc:
            stderr_preview = _preview_for_log(proc.stderr)
            log_warning_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                exit_code=proc.returncode,
                raw_preview=_preview_for_log(raw),
                stderr_preview=stderr_preview,
            )
            if proc.returncode != 0:
                raise GitHubApiError(
                    f"gh api {method_upper} {path} exited with code {proc.returncode}: "
                    f"{stderr_preview}"
                ) from exc
            raise
        if status_code < 200 or status_code >= 300:
            message = body.strip() or "<empty>"
            log_warning_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                status_code=status_code,
                raw_preview=_preview_for_log(body),
            )
            raise GitHubApiError(
                f"GitHub API {method_upper} {path} failed with status {status_code}: {message}",
                status_code=status_code,
            )
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except ValueError as exc:
            raise GitHubApiError(
                f"Unexpected GitHub response: invalid JSON from {method_upper} {path}",
                status_code=status_code,
            ) from exc


def parse_pull_request(payload: object) -> PullRequestSnapshot:
    payload_obj = _as_object_dict(payload)
    if payload_obj is None:
        raise GitHubApiError("Unexpected GitHub response: expected object for pull request")
    head = _as_object_dict(payload_obj.get("head"))
    if head is None:
        raise GitHubApiError("Unexpected GitHub response: missing pull request head")

    state = _as_string(payload_obj.get("state")).strip().lower()
    labels: list[str] = []
    labels_obj = payload_obj.get("labels")
    if isinstance(labels_obj, list):
        for entry in labels_obj:
            entry_obj = _as_object_dict(entry)
            if entry_obj is None:
                continue
            label = entry_obj.get("name")
            if isinstance(label, str):
                labels.append(label)

    return PullRequestSnapshot(
        number=_as_int(payload_obj.get("number"), field="number"),
        title=_as_string(payload_obj.get("title")),
        body=_as_string(payload_obj.get("body")),
        draft=payload_obj.get("draft") is True,
        head_sha=_as_string(head.get("sha")),
        head_ref=_as_string(head.get("ref")),
        state="closed" if state == "closed" else "open",
        created_at=_as_string(payload_obj.get("created_at")),
        updated_at=_as_string(payload_obj.get("updated_at")),
        labels=tuple(labels),
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise GitHubApiError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")
