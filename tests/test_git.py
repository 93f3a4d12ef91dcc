import subprocess

import pytest

from nomadops.core import git
from nomadops.core.errors import ConfigError


def _fake_git(answers: dict):
    def check_output(cmd, **kwargs):
        key = " ".join(cmd[1:])
        answer = answers[key]
        if isinstance(answer, Exception):
            raise answer
        return answer + "\n"

    return check_output


def test_current_ref_on_branch(monkeypatch):
    monkeypatch.setattr(git.subprocess, "check_output", _fake_git({"rev-parse --abbrev-ref HEAD": "main"}))

    assert git.current_ref() == "refs/heads/main"


def test_current_ref_on_detached_tag(monkeypatch):
    answers = {
        "rev-parse --abbrev-ref HEAD": "HEAD",
        "describe --tags --exact-match": "v1.4.0",
    }
    monkeypatch.setattr(git.subprocess, "check_output", _fake_git(answers))

    assert git.current_ref() == "refs/tags/v1.4.0"


def test_current_ref_detached_without_tag(monkeypatch):
    answers = {
        "rev-parse --abbrev-ref HEAD": "HEAD",
        "describe --tags --exact-match": subprocess.CalledProcessError(128, "git", stderr="no tag"),
    }
    monkeypatch.setattr(git.subprocess, "check_output", _fake_git(answers))

    assert git.current_ref() == ""


def test_head_sha_outside_repository(monkeypatch):
    answers = {"rev-parse HEAD": subprocess.CalledProcessError(128, "git", stderr="not a git repository")}
    monkeypatch.setattr(git.subprocess, "check_output", _fake_git(answers))

    with pytest.raises(ConfigError, match="not a git repository"):
        git.head_sha()
