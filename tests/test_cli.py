from __future__ import annotations

import json
from pathlib import Path

import pytest

from repokeeper import cli
from repokeeper.config import AppConfig
from repokeeper.events import EventContext, IssueEvent
from repokeeper.models import AutomationResult


def test_build_parser_supports_run_flags() -> None:
    parsed = cli.build_parser().parse_args(
        [
            "run",
            "--config",
            "cfg.toml",
            "--event-name",
            "issues",
            "--dry-run",
            "--accepted-releases",
            "1.5,1.6",
            "--enable-feature-branch",
            "--stale-days",
            "7",
            "-v",
        ]
    )

    assert parsed.command == "run"
    assert parsed.config == Path("cfg.toml")
    assert parsed.event_name == "issues"
    assert parsed.dry_run is True
    assert parsed.accepted_releases == "1.5,1.6"
    assert parsed.accepted_backports is None
    assert parsed.enable_feature_branch is True
    assert parsed.stale_days == 7
    assert parsed.verbose == "high"


def test_build_parser_verbose_levels() -> None:
    parser = cli.build_parser()

    assert parser.parse_args(["run"]).verbose is None
    assert parser.parse_args(["run", "--verbose", "low"]).verbose == "low"
    with pytest.raises(SystemExit):
        parser.parse_args(["run", "--verbose", "loud"])


class _FakeAutomation:
    instances: list[_FakeAutomation] = []

    def __init__(self, config: AppConfig, *, github: object) -> None:
        self.config = config
        self.github = github
        self.contexts: list[EventContext] = []
        _FakeAutomation.instances.append(self)

    def run(self, context: EventContext) -> AutomationResult:
        self.contexts.append(context)
        return AutomationResult(
            labels_added=("triage",),
            actions=("Added triage label to issue #3",),
            features_enabled=("triage",),
        )


def _env(tmp_path: Path, **extra: str) -> dict[str, str]:
    event_path = tmp_path / "event.json"
    event_path.write_text(
        json.dumps({"action": "opened", "issue": {"number": 3}}), encoding="utf-8"
    )
    env = {
        "GITHUB_REPOSITORY": "acme/widgets",
        "GITHUB_TOKEN": "tok",
        "GITHUB_EVENT_NAME": "issues",
        "GITHUB_EVENT_PATH": str(event_path),
        "GITHUB_RUN_ID": "77",
    }
    env.update(extra)
    return env


def test_main_runs_automation_and_writes_outputs(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    output_path = tmp_path / "github_output"
    for key, value in _env(tmp_path, GITHUB_OUTPUT=str(output_path)).items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("CUSTOM_GITHUB_TOKEN", raising=False)
    monkeypatch.chdir(tmp_path)
    _FakeAutomation.instances = []
    monkeypatch.setattr(cli, "RepositoryAutomation", _FakeAutomation)

    cli.main(["run", "--dry-run", "--accepted-backports", "1.4"])

    automation = _FakeAutomation.instances[0]
    assert automation.config.repo.full_name == "acme/widgets"
    assert automation.config.options.dry_run is True
    assert automation.config.options.accepted_backports == ("1.4",)
    assert automation.github.dry_run is True
    assert automation.github.token == "tok"
    context = automation.contexts[0]
    assert context.event == IssueEvent(action="opened", issue_number=3)
    assert context.run_id == "77"

    printed = json.loads(capsys.readouterr().out)
    assert printed["labels_added"] == ["triage"]
    assert printed["summary"] == "Completed 1 action(s): Added triage label to issue #3"
    assert output_path.read_text(encoding="utf-8") == (
        "labels-added=triage\n"
        "summary=Completed 1 action(s): Added triage label to issue #3\n"
    )


def test_main_logs_and_reraises_failures(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    for key, value in _env(tmp_path).items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("CUSTOM_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    monkeypatch.chdir(tmp_path)

    class _Exploding(_FakeAutomation):
        def run(self, context: EventContext) -> AutomationResult:
            raise RuntimeError("kaboom")

    monkeypatch.setattr(cli, "RepositoryAutomation", _Exploding)

    with pytest.raises(RuntimeError, match="kaboom"):
        cli.main(["run", "--verbose"])

    stderr = capsys.readouterr().err
    assert "event=automation_failed" in stderr
    assert "error=kaboom" in stderr


def test_write_action_outputs_appends(tmp_path: Path) -> None:
    path = tmp_path / "out"
    path.write_text("existing=1\n", encoding="utf-8")

    cli.write_action_outputs(path, AutomationResult())

    assert path.read_text(encoding="utf-8") == (
        "existing=1\nlabels-added=\nsummary=No actions needed\n"
    )
