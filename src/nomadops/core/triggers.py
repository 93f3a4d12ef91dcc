"""Mapping from CI events to pipeline invocations.

A CI system triggers the pipeline on pushes, tags and manual dispatches.
This module turns those events into an explicit PipelineInvocation: which
environment (if any) to deploy to, whether to push the image and which
tags to build. The pipeline itself stays the same for every trigger.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Collection, Mapping

from nomadops.core.builder import compute_tags
from nomadops.core.errors import ConfigError


@dataclass(frozen=True)
class PipelineInvocation:
    """
    What to do for one triggering event.

    Attributes:
        event: Name of the triggering event.
        ref: Git ref that triggered the pipeline.
        sha: Commit SHA.
        environment: Environment to deploy to, or None for build only.
        push: Whether the built image is pushed.
        tags: Image tags to build.
    """

    event: str
    ref: str
    sha: str
    environment: str | None
    push: bool
    tags: tuple[str, ...]


def resolve_trigger(
    event_name: str,
    ref: str,
    sha: str,
    *,
    environments: Collection[str],
    inputs: Mapping[str, str] | None = None,
    default_branch: str = "main",
    branch_environment: str = "staging",
    tag_environment: str = "production",
) -> PipelineInvocation:
    """
    Resolve a CI event to a pipeline invocation.

    Rules:
      - ``push`` to the default branch deploys to ``branch_environment``.
      - ``push`` of a ``v*`` tag deploys to ``tag_environment``.
      - ``push`` to any other branch or tag builds and pushes only.
      - ``workflow_dispatch`` deploys to ``inputs["environment"]``.
      - ``pull_request`` builds without pushing or deploying.

    Raises:
        ConfigError: For unsupported events or unknown environments.
    """
    inputs = inputs or {}
    tags = compute_tags(ref, sha, default_branch=default_branch)

    if event_name == "pull_request":
        return PipelineInvocation(event_name, ref, sha, None, False, tags)

    if event_name == "push":
        environment = None
        if ref == f"refs/heads/{default_branch}":
            environment = branch_environment
        elif ref.startswith("refs/tags/v"):
            environment = tag_environment
        if environment is not None and environment not in environments:
            raise ConfigError(f"Trigger targets unknown environment '{environment}'")
        return PipelineInvocation(event_name, ref, sha, environment, True, tags)

    if event_name == "workflow_dispatch":
        environment = inputs.get("environment")
        if not environment:
            raise ConfigError("workflow_dispatch requires an 'environment' input")
        if environment not in environments:
            known = ", ".join(sorted(environments)) or "none"
            raise ConfigError(f"Unknown environment '{environment}' (known: {known})")
        return PipelineInvocation(event_name, ref, sha, environment, True, tags)

    raise ConfigError(f"Unsupported trigger event: {event_name or '<empty>'}")


def from_github_env(environ: Mapping[str, str] | None = None) -> dict:
    """
    Read trigger facts from GitHub Actions environment variables.

    Returns a dict with ``event_name``, ``ref``, ``sha`` and ``inputs``
    suitable for ``resolve_trigger(**facts, environments=...)``.
    """
    environ = os.environ if environ is None else environ
    event_name = environ.get("GITHUB_EVENT_NAME", "")
    ref = environ.get("GITHUB_REF", "")
    sha = environ.get("GITHUB_SHA", "")
    if not (event_name and sha):
        raise ConfigError("GITHUB_EVENT_NAME and GITHUB_SHA must be set")

    inputs: dict[str, str] = {}
    event_path = environ.get("GITHUB_EVENT_PATH")
    if event_path and Path(event_path).exists():
        with open(event_path, "r", encoding="utf-8") as handle:
            event = json.load(handle)
        inputs = {str(k): str(v) for k, v in (event.get("inputs") or {}).items()}

    return {"event_name": event_name, "ref": ref, "sha": sha, "inputs": inputs}
