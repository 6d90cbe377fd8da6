from __future__ import annotations

import argparse
from collections.abc import Mapping
import json
import logging
import os
from pathlib import Path

from repokeeper.config import AppConfig, apply_overrides, load_config
from repokeeper.events import load_event_context
from repokeeper.github_gateway import GitHubGateway
from repokeeper.models import AutomationResult
from repokeeper.observability import configure_logging, log_warning_event
from repokeeper.orchestrator import RepositoryAutomation


LOGGER = logging.getLogger("repokeeper.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repokeeper")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Run the label automations for one repository event"
    )
    run_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="TOML config file (default: repokeeper.toml when present)",
    )
    run_parser.add_argument(
        "--event-name",
        default=None,
        help="Triggering event name (default: $GITHUB_EVENT_NAME)",
    )
    run_parser.add_argument(
        "--event-path",
        type=Path,
        default=None,
        help="Path to the event payload JSON (default: $GITHUB_EVENT_PATH)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log intended mutations without calling the GitHub API",
    )
    run_parser.add_argument(
        "--accepted-releases",
        default=None,
        help="Comma-separated release values accepted in PR YAML",
    )
    run_parser.add_argument(
        "--accepted-backports",
        default=None,
        help="Comma-separated backport values accepted in PR YAML",
    )
    run_parser.add_argument(
        "--enable-feature-branch",
        action="store_true",
        help="Apply the feature-branch label from needs_feature_branch",
    )
    run_parser.add_argument(
        "--stale-days",
        type=int,
        default=None,
        help="Mark open PRs stale after this many days without activity",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        default=None,
        choices=("low", "high"),
        help="Enable runtime logging to stderr (low or high, default high)",
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "run":
        _cmd_run(args, env=os.environ)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_run(args: argparse.Namespace, *, env: Mapping[str, str]) -> None:
    config = _resolve_config(args, env=env)
    event_name = args.event_name or env.get("GITHUB_EVENT_NAME", "")
    event_path = args.event_path
    if event_path is None and env.get("GITHUB_EVENT_PATH"):
        event_path = Path(env["GITHUB_EVENT_PATH"])

    github = GitHubGateway(
        config.repo.owner,
        config.repo.repo,
        token=config.options.github_token,
        dry_run=config.options.dry_run,
    )
    try:
        context = load_event_context(event_name, event_path, run_id=env.get("GITHUB_RUN_ID", ""))
        result = RepositoryAutomation(config, github=github).run(context)
    except Exception as exc:
        log_warning_event(
            LOGGER,
            "automation_failed",
            event_name=event_name,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise

    print(json.dumps(result.to_dict(), indent=2, sort_keys=True))
    output_path = env.get("GITHUB_OUTPUT")
    if output_path:
        write_action_outputs(Path(output_path), result)


def _resolve_config(args: argparse.Namespace, *, env: Mapping[str, str]) -> AppConfig:
    config = load_config(args.config, env=env)
    return apply_overrides(
        config,
        dry_run=bool(args.dry_run),
        accepted_releases=args.accepted_releases,
        accepted_backports=args.accepted_backports,
        enable_feature_branch=bool(args.enable_feature_branch),
        stale_days=args.stale_days,
    )


def write_action_outputs(path: Path, result: AutomationResult) -> None:
    """Append the step outputs in the GITHUB_OUTPUT ``key=value`` format."""
    with path.open("a", encoding="utf-8") as fh:
        fh.write(f"labels-added={','.join(result.labels_added)}\n")
        fh.write(f"summary={result.summary}\n")
