from __future__ import annotations

from collections.abc import Mapping
import os
import subprocess


def run(
    argv: list[str],
    *,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``argv`` with captured output; non-zero exits are left to the caller."""
    return subprocess.run(
        argv,
        input=input_text,
        env={**os.environ, **env} if env else None,
        text=True,
        capture_output=True,
        check=False,
    )
