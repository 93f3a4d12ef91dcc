from __future__ import annotations

import json
import re
import subprocess
import tempfile
from pathlib import Path

from nomadops.core.errors import BuildError
from nomadops.core.models import BuildRequest, BuildResult

_PUSH_DENIED_MARKERS = ("denied", "unauthorized", "insufficient_scope", "authentication required")
_PLATFORM_RE = re.compile(r"\[((?:linux|windows|darwin)/[A-Za-z0-9_/.-]+?)(?:\s|\])")
_DIGEST_KEY = "containerimage.digest"
_DOCKER_HINT = "Install Docker with the buildx plugin and ensure the daemon is running."


class BuildxBackend:
    """Image backend that shells out to ``docker buildx build``."""

    def __init__(
        self,
        *,
        docker: str = "docker",
        builder: str | None = None,
        timeout: float = 3600,
    ):
        """
        Create a buildx backend.

        Args:
            docker: Docker CLI executable.
            builder: Optional buildx builder instance name.
            timeout: Maximum seconds for one build invocation.
        """
        self.docker = docker
        self.builder = builder
        self.timeout = timeout

    def command(self, request: BuildRequest, metadata_file: Path, output_dir: Path) -> list[str]:
        """Return the buildx command line for a request."""
        cmd = [self.docker, "buildx", "build"]
        if self.builder:
            cmd.extend(["--builder", self.builder])
        cmd.extend(["--platform", ",".join(sorted(request.platforms))])
        cmd.extend(["--file", str(request.dockerfile)])
        for ref in request.references:
            cmd.extend(["--tag", ref])
        for key, value in sorted(request.build_args.items()):
            cmd.extend(["--build-arg", f"{key}={value}"])
        for key, value in sorted(request.labels.items()):
            cmd.extend(["--label", f"{key}={value}"])
        cmd.extend(["--metadata-file", str(metadata_file)])
        if request.push:
            cmd.append("--push")
        else:
            cmd.extend(["--output", f"type=oci,dest={output_dir / 'image.tar'}"])
        cmd.append(str(request.source_path))
        return cmd

    def build(self, request: BuildRequest) -> BuildResult:
        """Build all platforms in a single buildx invocation."""
        with tempfile.TemporaryDirectory(prefix="nomadops-build-") as tmp:
            tmp_dir = Path(tmp)
            metadata_file = tmp_dir / "metadata.json"
            cmd = self.command(request, metadata_file, tmp_dir)
            try:
                proc = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except FileNotFoundError as exc:
                raise BuildError(
                    BuildError.BACKEND_FAILURE,
                    f"{self.docker} executable not found",
                    details={"hint": _DOCKER_HINT},
                ) from exc
            except subprocess.TimeoutExpired as exc:
                raise BuildError(
                    BuildError.BACKEND_FAILURE,
                    f"Build timed out after {self.timeout:g}s",
                ) from exc

            if proc.returncode != 0:
                raise _classify_failure(request, proc.stderr or proc.stdout or "")

            digest = _read_digest(metadata_file)

        references = request.references
        return BuildResult(
            image_reference=references[0],
            tags=references,
            digest=digest,
            pushed=request.push,
        )


def _read_digest(metadata_file: Path) -> str:
    """Return the manifest digest written by buildx."""
    try:
        metadata = json.loads(metadata_file.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise BuildError(
            BuildError.BACKEND_FAILURE,
            "Build metadata file is missing or unreadable",
        ) from exc
    digest = metadata.get(_DIGEST_KEY)
    if not isinstance(digest, str) or not digest.startswith("sha256:"):
        raise BuildError(
            BuildError.BACKEND_FAILURE,
            f"Build metadata has no {_DIGEST_KEY}",
        )
    return digest


def _last_error_line(output: str) -> str:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    for line in reversed(lines):
        if line.startswith("ERROR"):
            return line
    return lines[-1] if lines else "docker buildx build failed"


def _classify_failure(request: BuildRequest, output: str) -> BuildError:
    """Map buildx output to a BuildError reason."""
    message = _last_error_line(output)
    lower = output.lower()
    if request.push and any(marker in lower for marker in _PUSH_DENIED_MARKERS):
        return BuildError(
            BuildError.PUSH_DENIED,
            message,
            details={"image": request.image_name},
        )
    match = _PLATFORM_RE.search(message) or _PLATFORM_RE.search(output)
    if match and match.group(1) in request.platforms:
        return BuildError(
            BuildError.PLATFORM_FAILURE,
            message,
            details={"platform": match.group(1)},
        )
    return BuildError(BuildError.BACKEND_FAILURE, message)
