"""Image build logic.

This module validates build inputs, derives image tags from a git ref and
delegates the actual build to an ImageBackend. Backends live in
``nomadops.core.adapters``; the functions here hold the rules that must
apply whichever backend is used.
"""

from __future__ import annotations

import re
from typing import Protocol

from nomadops.core.errors import BuildError
from nomadops.core.logging import get_logger
from nomadops.core.models import BuildRequest, BuildResult

log = get_logger(__name__)

_SHORT_SHA_LEN = 7
_VERSION_TAG_RE = re.compile(r"^v?(\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.-]+)?)$")
_INVALID_TAG_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")
_MAX_TAG_LEN = 128


class ImageBackend(Protocol):
    """Interface for building (and optionally pushing) images."""

    def build(self, request: BuildRequest) -> BuildResult:
        """Build the request for all platforms and return the result."""
        ...


def build_image(backend: ImageBackend, request: BuildRequest) -> BuildResult:
    """
    Validate a build request and run it on the given backend.

    Inputs are checked before the backend is invoked so a missing build
    context or Dockerfile never reaches the build tool.

    Args:
        backend: Image backend used to run the build.
        request: The build request.

    Returns:
        The BuildResult produced by the backend.

    Raises:
        BuildError: If the inputs are invalid or the backend fails.
    """
    if not request.source_path.is_dir():
        raise BuildError(
            BuildError.MISSING_SOURCE,
            f"Build context not found: {request.source_path}",
        )
    if not request.dockerfile.is_file():
        raise BuildError(
            BuildError.MISSING_DOCKERFILE,
            f"Dockerfile not found: {request.dockerfile}",
        )
    if not request.tags:
        raise BuildError(BuildError.BACKEND_FAILURE, "No image tags requested")
    if not request.platforms:
        raise BuildError(BuildError.BACKEND_FAILURE, "No target platforms requested")

    log.info(
        "build.started",
        image=request.image_name,
        tags=list(request.tags),
        platforms=sorted(request.platforms),
        push=request.push,
    )
    result = backend.build(request)
    if not result.image_reference or not result.digest:
        raise BuildError(
            BuildError.BACKEND_FAILURE,
            "Backend did not report an image reference and digest",
        )
    log.info(
        "build.finished",
        image_reference=result.image_reference,
        digest=result.digest,
        pushed=result.pushed,
    )
    return result


def sanitize_tag(value: str) -> str:
    """Return value as a valid image tag (``[A-Za-z0-9_.-]``, max 128 chars)."""
    tag = _INVALID_TAG_CHARS.sub("-", value).strip("-.")
    return tag[:_MAX_TAG_LEN]


def compute_tags(ref: str, sha: str, *, default_branch: str = "main") -> tuple[str, ...]:
    """
    Derive image tags from a git ref and commit.

    Rules:
      - ``sha-<short sha>`` is always first, so deployments pin a
        unique reference.
      - ``refs/heads/<branch>``: the sanitized branch name, plus
        ``latest`` on the default branch.
      - ``refs/tags/v1.2.3``: ``1.2.3`` and ``latest``.
      - ``refs/tags/<other>``: the sanitized tag name.

    Args:
        ref: Full git ref (``refs/heads/main``) or a bare branch name.
        sha: Commit SHA.
        default_branch: Branch that receives the ``latest`` tag.

    Returns:
        Ordered, de-duplicated tags.
    """
    sha = sha.strip()
    if not sha:
        raise ValueError("sha must not be empty")

    tags = [f"sha-{sha[:_SHORT_SHA_LEN]}"]

    if ref.startswith("refs/tags/"):
        name = ref[len("refs/tags/"):]
        match = _VERSION_TAG_RE.match(name)
        if match:
            tags.append(match.group(1).replace("+", "-"))
            tags.append("latest")
        else:
            tags.append(sanitize_tag(name))
    elif ref:
        branch = ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref
        if not ref.startswith("refs/pull/"):
            tags.append(sanitize_tag(branch))
        if branch == default_branch:
            tags.append("latest")

    seen: set[str] = set()
    ordered = []
    for tag in tags:
        if tag and tag not in seen:
            seen.add(tag)
            ordered.append(tag)
    return tuple(ordered)
