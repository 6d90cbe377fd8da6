from __future__ import annotations

from pathlib import Path

import pytest

from repokeeper.config import (
    AppConfig,
    ConfigError,
    RepositoryRef,
    RunOptions,
    apply_overrides,
    detect_features,
    load_config,
    parse_accepted_values,
    validate_settings,
)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "repokeeper.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_reads_tables(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[repo]
owner = "acme"
name = "widgets"
default_branch = "trunk"

[automation]
dry_run = true
accepted_releases = ["1.5", " 1.6 ", "1.5", ""]
accepted_backports = "1.4, 1.3"
enable_feature_branch = true
stale_days = 14
settle_delay_seconds = 0
label_separator = " "
""",
    )

    cfg = load_config(path, env={"GITHUB_TOKEN": "tok"})

    assert cfg.repo == RepositoryRef(owner="acme", repo="widgets", default_branch="trunk")
    assert cfg.repo.full_name == "acme/widgets"
    assert cfg.options == RunOptions(
        github_token="tok",
        dry_run=True,
        accepted_releases=("1.5", "1.6"),
        accepted_backports=("1.4", "1.3"),
        enable_feature_branch=True,
        stale_days=14,
        settle_delay_seconds=0,
        label_separator=" ",
    )


def test_load_config_defaults_from_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    cfg = load_config(
        None,
        env={
            "GITHUB_REPOSITORY": "octo/repo",
            "GITHUB_TOKEN": "plain",
            "CUSTOM_GITHUB_TOKEN": "custom",
        },
    )

    assert cfg.repo == RepositoryRef(owner="octo", repo="repo")
    assert cfg.options.github_token == "custom"
    assert cfg.options.accepted_releases == ()
    assert cfg.options.stale_days is None
    assert cfg.options.settle_delay_seconds == 10


def test_load_config_missing_explicit_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(tmp_path / "nope.toml", env={})


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("repo = 1\n", r"\[repo\] must be a TOML table"),
        ("[automation]\ndry_run = \"yes\"\n", "dry_run must be a boolean"),
        ("[automation]\nstale_days = true\n", "stale_days must be an integer"),
        ("[automation]\naccepted_releases = 3\n", "accepted_releases must be a list"),
        ("[automation]\naccepted_releases = [1]\n", "accepted values must be strings"),
        ("[automation]\nsettle_delay_seconds = -1\n", "settle_delay_seconds must be >= 0"),
        ("[automation]\nlabel_separator = \"\"\n", "label_separator must be a non-empty"),
    ],
)
def test_load_config_type_errors(tmp_path: Path, body: str, message: str) -> None:
    path = _write(tmp_path, body)

    with pytest.raises(ConfigError, match=message):
        load_config(path, env={})


def test_apply_overrides_replaces_only_given_values() -> None:
    cfg = AppConfig(
        repo=RepositoryRef(owner="o", repo="r"),
        options=RunOptions(github_token="t", accepted_releases=("1.0",), stale_days=5),
    )

    untouched = apply_overrides(cfg)
    overridden = apply_overrides(
        cfg,
        dry_run=True,
        accepted_releases="2.0,2.1",
        accepted_backports="",
        enable_feature_branch=True,
        stale_days=3,
    )

    assert untouched == cfg
    assert overridden.options.dry_run is True
    assert overridden.options.accepted_releases == ("2.0", "2.1")
    assert overridden.options.accepted_backports == ()
    assert overridden.options.enable_feature_branch is True
    assert overridden.options.stale_days == 3


@pytest.mark.parametrize(
    ("cfg", "message"),
    [
        (
            AppConfig(repo=RepositoryRef(owner="", repo="r"), options=RunOptions("t")),
            "Repository owner and name are required",
        ),
        (
            AppConfig(repo=RepositoryRef(owner="o", repo="r"), options=RunOptions(None)),
            "GitHub token is required",
        ),
        (
            AppConfig(
                repo=RepositoryRef(owner="o", repo="r"),
                options=RunOptions("t", stale_days=0),
            ),
            "Stale detection days must be 1 or greater",
        ),
    ],
)
def test_validate_settings_rejects(cfg: AppConfig, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        validate_settings(cfg)


def test_parse_accepted_values_trims_and_dedupes() -> None:
    assert parse_accepted_values(" 1.5 , ,1.6,1.5") == ("1.5", "1.6")
    assert parse_accepted_values(["a", " b "]) == ("a", "b")
    assert parse_accepted_values("") == ()


def test_detect_features() -> None:
    quiet = detect_features(RunOptions("t"), is_schedule=False)
    scheduled = detect_features(RunOptions("t"), is_schedule=True)
    everything = detect_features(
        RunOptions(
            "t",
            accepted_releases=("1",),
            accepted_backports=("2",),
            enable_feature_branch=True,
            stale_days=3,
        ),
        is_schedule=False,
    )

    assert quiet.names == ("triage",)
    assert quiet.label_automation is False
    assert scheduled.names == ("triage", "stale_detection")
    assert everything.label_automation is True
    assert everything.names == (
        "triage",
        "release_labeling",
        "backport_labeling",
        "feature_branch",
        "stale_detection",
    )
