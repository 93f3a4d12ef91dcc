import json
import subprocess
from pathlib import Path

import pytest

from nomadops.core.adapters import buildx
from nomadops.core.adapters.buildx import BuildxBackend
from nomadops.core.errors import BuildError
from nomadops.core.models import BuildRequest

DIGEST = "sha256:" + "b" * 64


def _request(tmp_path: Path, **kwargs) -> BuildRequest:
    values = {
        "source_path": tmp_path,
        "dockerfile_path": Path("Dockerfile"),
        "image_name": "ghcr.io/org/app",
        "tags": ("sha-abc1234", "latest"),
        "platforms": frozenset({"linux/amd64", "linux/arm64"}),
    }
    values.update(kwargs)
    return BuildRequest(**values)


def _fake_run(returncode: int = 0, stderr: str = "", digest: str | None = DIGEST, calls=None):
    def run(cmd, **kwargs):
        if calls is not None:
            calls.append(cmd)
        if digest is not None and returncode == 0:
            metadata = Path(cmd[cmd.index("--metadata-file") + 1])
            metadata.write_text(json.dumps({"containerimage.digest": digest}))
        return subprocess.CompletedProcess(cmd, returncode, stdout="", stderr=stderr)

    return run


def test_command_builds_all_platforms_in_one_invocation(tmp_path):
    request = _request(tmp_path, build_args={"VERSION": "1"}, labels={"team": "ops"})

    cmd = BuildxBackend(builder="multi").command(request, tmp_path / "m.json", tmp_path)

    assert cmd[:5] == ["docker", "buildx", "build", "--builder", "multi"]
    assert cmd[cmd.index("--platform") + 1] == "linux/amd64,linux/arm64"
    assert [cmd[i + 1] for i, v in enumerate(cmd) if v == "--tag"] == [
        "ghcr.io/org/app:sha-abc1234",
        "ghcr.io/org/app:latest",
    ]
    assert "VERSION=1" in cmd
    assert "team=ops" in cmd
    assert "--push" in cmd
    assert cmd[-1] == str(tmp_path)


def test_command_without_push_writes_oci_archive(tmp_path):
    cmd = BuildxBackend().command(_request(tmp_path, push=False), tmp_path / "m.json", tmp_path)

    assert "--push" not in cmd
    assert cmd[cmd.index("--output") + 1] == f"type=oci,dest={tmp_path / 'image.tar'}"


def test_build_reads_digest_from_metadata(tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(buildx.subprocess, "run", _fake_run(calls=calls))

    result = BuildxBackend().build(_request(tmp_path))

    assert len(calls) == 1
    assert result.image_reference == "ghcr.io/org/app:sha-abc1234"
    assert result.digest == DIGEST
    assert result.pushed is True


def test_build_without_digest_is_backend_failure(tmp_path, monkeypatch):
    monkeypatch.setattr(buildx.subprocess, "run", _fake_run(digest=None))

    with pytest.raises(BuildError) as excinfo:
        BuildxBackend().build(_request(tmp_path))

    assert excinfo.value.reason == BuildError.BACKEND_FAILURE


def test_build_push_denied(tmp_path, monkeypatch):
    stderr = "ERROR: failed to push ghcr.io/org/app:latest: denied: permission_denied\n"
    monkeypatch.setattr(buildx.subprocess, "run", _fake_run(returncode=1, stderr=stderr))

    with pytest.raises(BuildError) as excinfo:
        BuildxBackend().build(_request(tmp_path))

    assert excinfo.value.reason == BuildError.PUSH_DENIED
    assert "permission_denied" in excinfo.value.message


def test_build_platform_failure_names_platform(tmp_path, monkeypatch):
    stderr = (
        "#12 [linux/arm64 3/4] RUN make\n"
        "ERROR: failed to solve: process \"/bin/sh -c make\" did not complete successfully\n"
        "------\n > [linux/arm64 3/4] RUN make:\n"
    )
    monkeypatch.setattr(buildx.subprocess, "run", _fake_run(returncode=1, stderr=stderr))

    with pytest.raises(BuildError) as excinfo:
        BuildxBackend().build(_request(tmp_path))

    assert excinfo.value.reason == BuildError.PLATFORM_FAILURE
    assert excinfo.value.details["platform"] == "linux/arm64"


def test_build_other_failure_is_backend_failure(tmp_path, monkeypatch):
    stderr = "ERROR: failed to read dockerfile: syntax error\n"
    monkeypatch.setattr(buildx.subprocess, "run", _fake_run(returncode=1, stderr=stderr))

    with pytest.raises(BuildError) as excinfo:
        BuildxBackend().build(_request(tmp_path))

    assert excinfo.value.reason == BuildError.BACKEND_FAILURE
    assert excinfo.value.message == "ERROR: failed to read dockerfile: syntax error"


def test_build_missing_docker_executable(tmp_path, monkeypatch):
    def run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(buildx.subprocess, "run", run)

    with pytest.raises(BuildError, match="executable not found"):
        BuildxBackend().build(_request(tmp_path))
