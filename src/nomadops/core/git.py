"""Small wrapper around the git CLI used to derive image tags locally."""

from __future__ import annotations

import subprocess
from pathlib import Path

from nomadops.core.errors import ConfigError


def _git(args: list[str], cwd: Path | None = None) -> str:
    """Run a git command and return its stripped stdout."""
    try:
        out = subprocess.check_output(
            ["git", *args],
            cwd=cwd,
            text=True,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise ConfigError("git executable not found") from exc
    except subprocess.CalledProcessError as exc:
        raise ConfigError(f"git {' '.join(args)} failed: {(exc.stderr or '').strip()}") from exc
    return out.strip()


def head_sha(cwd: Path | None = None) -> str:
    """Return the full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd)


def current_ref(cwd: Path | None = None) -> str:
    """
    Return the full ref of HEAD.

    A checked-out branch gives ``refs/heads/<branch>``; a detached HEAD
    that is exactly on a tag gives ``refs/tags/<tag>``; any other detached
    HEAD gives an empty string.
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    if branch != "HEAD":
        return f"refs/heads/{branch}"
    try:
        tag = _git(["describe", "--tags", "--exact-match"], cwd)
    except ConfigError:
        return ""
    return f"refs/tags/{tag}"
