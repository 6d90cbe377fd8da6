from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
import tomllib
from typing import cast


DEFAULT_CONFIG_PATH = Path("repokeeper.toml")
_TOKEN_ENV_VARS = ("CUSTOM_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")


@dataclass(frozen=True)
class RepositoryRef:
    owner: str
    repo: str
    default_branch: str = "main"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class RunOptions:
    github_token: str | None
    dry_run: bool = False
    accepted_releases: tuple[str, ...] = ()
    accepted_backports: tuple[str, ...] = ()
    enable_feature_branch: bool = False
    stale_days: int | None = None
    settle_delay_seconds: int = 10
    # Existing labels match on the category prefix alone, so repos that already use
    # names like "release-notes-needed" will see them treated as release labels.
    label_separator: str = "-"

    @property
    def release_labeling_enabled(self) -> bool:
        return bool(self.accepted_releases)

    @property
    def backport_labeling_enabled(self) -> bool:
        return bool(self.accepted_backports)


@dataclass(frozen=True)
class AppConfig:
    repo: RepositoryRef
    options: RunOptions


@dataclass(frozen=True)
class EnabledFeatures:
    release_labeling: bool
    backport_labeling: bool
    feature_branch: bool
    stale_detection: bool
    triage: bool = True

    @property
    def label_automation(self) -> bool:
        return self.release_labeling or self.backport_labeling or self.feature_branch

    @property
    def names(self) -> tuple[str, ...]:
        flags = (
            ("triage", self.triage),
            ("release_labeling", self.release_labeling),
            ("backport_labeling", self.backport_labeling),
            ("feature_branch", self.feature_branch),
            ("stale_detection", self.stale_detection),
        )
        return tuple(name for name, enabled in flags if enabled)


def detect_features(options: RunOptions, *, is_schedule: bool) -> EnabledFeatures:
    return EnabledFeatures(
        release_labeling=options.release_labeling_enabled,
        backport_labeling=options.backport_labeling_enabled,
        feature_branch=options.enable_feature_branch,
        stale_detection=options.stale_days is not None or is_schedule,
    )


class ConfigError(ValueError):
    pass


def load_config(
    path: Path | None,
    *,
    env: Mapping[str, str],
) -> AppConfig:
    """Load settings from an optional TOML file, filling gaps from the environment.

    ``path=None`` means "use ``repokeeper.toml`` if it exists". An explicit path
    that does not exist is an error.
    """
    data: dict[str, object] = {}
    if path is None:
        if DEFAULT_CONFIG_PATH.exists():
            data = _read_toml(DEFAULT_CONFIG_PATH)
    else:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        data = _read_toml(path)

    repo_data = _optional_table(data, "repo") or {}
    automation_data = _optional_table(data, "automation") or {}

    env_owner, env_repo = _split_repository(env.get("GITHUB_REPOSITORY", ""))
    repo = RepositoryRef(
        owner=_str_with_default(repo_data, "owner", env_owner),
        repo=_str_with_default(repo_data, "name", env_repo),
        default_branch=_non_empty_str_with_default(repo_data, "default_branch", "main"),
    )

    options = RunOptions(
        github_token=_token_from_env(env),
        dry_run=_bool_with_default(automation_data, "dry_run", False),
        accepted_releases=_accepted_values(automation_data, "accepted_releases"),
        accepted_backports=_accepted_values(automation_data, "accepted_backports"),
        enable_feature_branch=_bool_with_default(automation_data, "enable_feature_branch", False),
        stale_days=_optional_int(automation_data, "stale_days"),
        settle_delay_seconds=_int_with_default(automation_data, "settle_delay_seconds", 10),
        label_separator=_non_empty_str_with_default(automation_data, "label_separator", "-"),
    )
    if options.settle_delay_seconds < 0:
        raise ConfigError("automation.settle_delay_seconds must be >= 0")

    return AppConfig(repo=repo, options=options)


def apply_overrides(
    config: AppConfig,
    *,
    dry_run: bool = False,
    accepted_releases: str | None = None,
    accepted_backports: str | None = None,
    enable_feature_branch: bool = False,
    stale_days: int | None = None,
) -> AppConfig:
    options = config.options
    if dry_run:
        options = replace(options, dry_run=True)
    if accepted_releases is not None:
        options = replace(options, accepted_releases=parse_accepted_values(accepted_releases))
    if accepted_backports is not None:
        options = replace(options, accepted_backports=parse_accepted_values(accepted_backports))
    if enable_feature_branch:
        options = replace(options, enable_feature_branch=True)
    if stale_days is not None:
        options = replace(options, stale_days=stale_days)
    return replace(config, options=options)


def validate_settings(config: AppConfig) -> None:
    if not config.repo.owner or not config.repo.repo:
        raise ConfigError("Repository owner and name are required")
    if not config.options.github_token:
        raise ConfigError("GitHub token is required")
    if config.options.stale_days is not None and config.options.stale_days < 1:
        raise ConfigError("Stale detection days must be 1 or greater")


def parse_accepted_values(raw: str | list[object] | tuple[object, ...]) -> tuple[str, ...]:
    if isinstance(raw, str):
        items: list[object] = list(raw.split(","))
    else:
        items = list(raw)
    values: list[str] = []
    for item in items:
        if not isinstance(item, str):
            raise ConfigError("accepted values must be strings")
        value = item.strip()
        if value and value not in values:
            values.append(value)
    return tuple(values)


def _read_toml(path: Path) -> dict[str, object]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def _split_repository(full_name: str) -> tuple[str, str]:
    owner, _, repo = full_name.strip().partition("/")
    return owner, repo


def _token_from_env(env: Mapping[str, str]) -> str | None:
    for name in _TOKEN_ENV_VARS:
        token = env.get(name, "").strip()
        if token:
            return token
    return None


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value.strip()


def _non_empty_str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _optional_int(data: dict[str, object], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer if provided")
    return value


def _accepted_values(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, str | list):
        raise ConfigError(f"{key} must be a list of strings or a comma-separated string")
    return parse_accepted_values(cast(str | list[object], value))
