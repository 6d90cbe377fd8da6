from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import cast

from repokeeper.github_gateway import parse_pull_request
from repokeeper.models import PullRequestSnapshot


@dataclass(frozen=True)
class IssueEvent:
    action: str
    issue_number: int
    label_name: str | None = None


@dataclass(frozen=True)
class PullRequestEvent:
    action: str
    pull_request: PullRequestSnapshot
    label_name: str | None = None


@dataclass(frozen=True)
class WorkflowRunEvent:
    name: str
    head_branch: str | None
    conclusion: str | None


@dataclass(frozen=True)
class ScheduleEvent:
    pass


@dataclass(frozen=True)
class UnsupportedEvent:
    event_name: str


AutomationEvent = (
    IssueEvent | PullRequestEvent | WorkflowRunEvent | ScheduleEvent | UnsupportedEvent
)


@dataclass(frozen=True)
class EventContext:
    event_name: str
    event: AutomationEvent
    run_id: str = ""


class EventPayloadError(ValueError):
    pass


def load_event_context(
    event_name: str, event_path: Path | None, *, run_id: str = ""
) -> EventContext:
    payload: dict[str, object] = {}
    if event_path is not None:
        with event_path.open(encoding="utf-8") as fh:
            raw = json.load(fh)
        if not isinstance(raw, dict):
            raise EventPayloadError(f"Event payload in {event_path} must be a JSON object")
        payload = cast(dict[str, object], raw)
    return EventContext(
        event_name=event_name,
        event=parse_event(event_name, payload),
        run_id=run_id,
    )


def parse_event(event_name: str, payload: dict[str, object]) -> AutomationEvent:
    action = payload.get("action")
    action_str = action if isinstance(action, str) else ""

    if event_name == "issues":
        issue = _require_object(payload, "issue")
        number = issue.get("number")
        if isinstance(number, bool) or not isinstance(number, int):
            raise EventPayloadError("issues event payload is missing issue.number")
        return IssueEvent(action=action_str, issue_number=number, label_name=_label_name(payload))
    if event_name in {"pull_request", "pull_request_target"}:
        return PullRequestEvent(
            action=action_str,
            pull_request=parse_pull_request(_require_object(payload, "pull_request")),
            label_name=_label_name(payload),
        )
    if event_name == "workflow_run":
        workflow_run = _require_object(payload, "workflow_run")
        return WorkflowRunEvent(
            name=_optional_str(workflow_run.get("name")) or "",
            head_branch=_optional_str(workflow_run.get("head_branch")),
            conclusion=_optional_str(workflow_run.get("conclusion")),
        )
    if event_name == "schedule":
        return ScheduleEvent()
    return UnsupportedEvent(event_name=event_name)


def _require_object(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise EventPayloadError(f"Event payload is missing the {key!r} object")
    return cast(dict[str, object], value)


def _label_name(payload: dict[str, object]) -> str | None:
    label = payload.get("label")
    if not isinstance(label, dict):
        return None
    return _optional_str(label.get("name"))


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None
